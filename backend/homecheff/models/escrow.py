from datetime import datetime

from homecheff.extensions import db


class PaymentEscrow(db.Model):
    __tablename__ = "payment_escrows"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    seller_id = db.Column(db.Integer, nullable=False, index=True)

    # Seller payout, already net of platform fee and pass-through costs.
    amount_cents = db.Column(db.Integer, nullable=False, default=0)
    payout_trigger = db.Column(db.String(16), nullable=False, default="DELIVERED")  # SHIPPED | DELIVERED
    current_status = db.Column(db.String(24), nullable=False, default="held", index=True)

    payout_attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    paid_out_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "order_id": int(self.order_id),
            "seller_id": int(self.seller_id),
            "amount_cents": int(self.amount_cents or 0),
            "payout_trigger": self.payout_trigger or "",
            "current_status": self.current_status or "",
            "payout_attempts": int(self.payout_attempts or 0),
            "last_error": self.last_error or "",
            "paid_out_at": self.paid_out_at.isoformat() if self.paid_out_at else None,
        }


class Payout(db.Model):
    """Append-only payout ledger. Rows are never updated."""

    __tablename__ = "payouts"

    id = db.Column(db.Integer, primary_key=True)
    to_user_id = db.Column(db.Integer, nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    transaction_id = db.Column(db.Integer, nullable=False, index=True)
    kind = db.Column(db.String(24), nullable=False, default="product_sale")  # product_sale | delivery_fee
    # One row per released escrow and one per completed delivery order.
    escrow_id = db.Column(db.Integer, nullable=True, unique=True)
    delivery_order_id = db.Column(db.Integer, nullable=True, unique=True)
    provider_ref = db.Column(db.String(120), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "to_user_id": int(self.to_user_id),
            "amount_cents": int(self.amount_cents),
            "transaction_id": int(self.transaction_id),
            "kind": self.kind or "",
            "escrow_id": int(self.escrow_id) if self.escrow_id is not None else None,
            "delivery_order_id": int(self.delivery_order_id) if self.delivery_order_id is not None else None,
            "provider_ref": self.provider_ref or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
