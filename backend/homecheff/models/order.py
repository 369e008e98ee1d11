from datetime import datetime

from homecheff.extensions import db


class OrderStatus:
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class DeliveryMode:
    PICKUP = "PICKUP"
    DELIVERY = "DELIVERY"
    SHIPPING = "SHIPPING"
    BOTH = "BOTH"


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(40), nullable=True, unique=True, index=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(24), nullable=False, default=OrderStatus.PENDING, index=True)
    delivery_mode = db.Column(db.String(16), nullable=False, default=DeliveryMode.PICKUP)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    # Set once checkout has been paid.
    stripe_session_id = db.Column(db.String(255), nullable=True, index=True)

    # Normalized carrier status (free text for forward compatibility)
    shipping_status = db.Column(db.String(40), nullable=True)
    shipping_label_id = db.Column(db.String(120), nullable=True, index=True)
    shipping_label_cost_cents = db.Column(db.Integer, nullable=True)
    shipping_tracking_number = db.Column(db.String(120), nullable=True)
    shipped_at = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = db.relationship("OrderItem", lazy="select", order_by="OrderItem.id")

    @property
    def is_paid(self) -> bool:
        return bool((self.stripe_session_id or "").strip())

    def display_number(self) -> str:
        num = (self.order_number or "").strip()
        if num:
            return num
        return f"HC-{int(self.id):06d}"

    def seller_user_id(self) -> int | None:
        for item in self.items or []:
            product = item.product
            if product is None:
                continue
            seller_id = product.seller_user_id()
            if seller_id is not None:
                return seller_id
        return None

    def to_dict(self):
        return {
            "id": int(self.id),
            "order_number": self.display_number(),
            "buyer_id": int(self.buyer_id),
            "status": self.status or OrderStatus.PENDING,
            "delivery_mode": self.delivery_mode or DeliveryMode.PICKUP,
            "total_amount_cents": int(self.total_amount_cents or 0),
            "shipping_status": self.shipping_status or "",
            "shipping_tracking_number": self.shipping_tracking_number or "",
            "shipped_at": self.shipped_at.isoformat() if self.shipped_at else None,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "items": [i.to_dict() for i in (self.items or [])],
        }


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Snapshot at purchase time; later product price changes never reach here.
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", lazy="joined")

    def to_dict(self):
        return {
            "id": int(self.id),
            "product_id": int(self.product_id),
            "title": self.product.title if self.product is not None else "",
            "price_cents": int(self.price_cents or 0),
            "quantity": int(self.quantity or 1),
        }
