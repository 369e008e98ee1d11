from datetime import datetime

from homecheff.extensions import db


class DeliveryProfile(db.Model):
    __tablename__ = "delivery_profiles"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    total_deliveries = db.Column(db.Integer, nullable=False, default=0)
    total_earnings_cents = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "user_id": int(self.user_id),
            "is_active": bool(self.is_active),
            "total_deliveries": int(self.total_deliveries or 0),
            "total_earnings_cents": int(self.total_earnings_cents or 0),
        }


class DeliveryOrder(db.Model):
    __tablename__ = "delivery_orders"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    delivery_profile_id = db.Column(db.Integer, db.ForeignKey("delivery_profiles.id"), nullable=True, index=True)

    # PENDING | ACCEPTED | PICKED_UP | DELIVERED | CANCELLED
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    delivery_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    picked_up_at = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)
    actual_delivery_time = db.Column(db.Integer, nullable=True)  # minutes

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    order = db.relationship("Order", lazy="joined")

    def to_dict(self, *, include_order: bool = False):
        out = {
            "id": int(self.id),
            "order_id": int(self.order_id),
            "delivery_profile_id": int(self.delivery_profile_id) if self.delivery_profile_id is not None else None,
            "status": self.status or "PENDING",
            "delivery_fee_cents": int(self.delivery_fee_cents or 0),
            "notes": self.notes or "",
            "picked_up_at": self.picked_up_at.isoformat() if self.picked_up_at else None,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "actual_delivery_time": self.actual_delivery_time,
        }
        if include_order and self.order is not None:
            out["order"] = self.order.to_dict()
        return out


class DeliveryCountdown(db.Model):
    __tablename__ = "delivery_countdowns"

    id = db.Column(db.Integer, primary_key=True)
    delivery_order_id = db.Column(
        db.Integer, db.ForeignKey("delivery_orders.id"), nullable=False, unique=True, index=True
    )
    status = db.Column(db.String(16), nullable=False, default="running")  # running | stopped
    estimated_minutes = db.Column(db.Integer, nullable=True)
    started_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    stopped_at = db.Column(db.DateTime, nullable=True)
    actual_minutes = db.Column(db.Integer, nullable=True)
