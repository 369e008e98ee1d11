from datetime import datetime

from homecheff.extensions import db


class ShippingLabel(db.Model):
    __tablename__ = "shipping_labels"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    ectaro_ship_label_id = db.Column(db.String(120), nullable=True, index=True)
    tracking_number = db.Column(db.String(120), nullable=True)
    pdf_url = db.Column(db.String(1024), nullable=True)
    carrier = db.Column(db.String(64), nullable=False, default="PostNL")
    status = db.Column(db.String(24), nullable=False, default="generated")  # generated | shipped
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "order_id": int(self.order_id),
            "label_id": self.ectaro_ship_label_id or "",
            "tracking_number": self.tracking_number or "",
            "pdf_url": self.pdf_url or "",
            "carrier": self.carrier or "",
            "status": self.status or "generated",
            "price_cents": int(self.price_cents or 0),
        }
