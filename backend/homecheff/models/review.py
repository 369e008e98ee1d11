from datetime import datetime

from homecheff.extensions import db


class ProductReview(db.Model):
    __tablename__ = "product_reviews"
    __table_args__ = (
        db.UniqueConstraint("product_id", "buyer_id", name="uq_product_review_buyer"),
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, nullable=True, index=True)
    order_item_id = db.Column(db.Integer, nullable=True, index=True)

    # 0 while the row is still a placeholder waiting for the buyer.
    rating = db.Column(db.Integer, nullable=False, default=0)
    title = db.Column(db.String(200), nullable=True)
    comment = db.Column(db.Text, nullable=True)
    is_verified = db.Column(db.Boolean, nullable=False, default=False)

    review_token = db.Column(db.String(96), nullable=True, unique=True, index=True)
    consumed_review_token = db.Column(db.String(96), nullable=True, index=True)
    review_token_expires = db.Column(db.DateTime, nullable=True)
    review_submitted_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    product = db.relationship("Product", lazy="joined")
    buyer = db.relationship("User", lazy="joined")
    images = db.relationship("ReviewImage", lazy="select", order_by="ReviewImage.sort_order")

    @property
    def is_submitted(self) -> bool:
        return self.review_submitted_at is not None

    def token_expired(self, now: datetime | None = None) -> bool:
        if self.review_token_expires is None:
            return False
        return (now or datetime.utcnow()) > self.review_token_expires

    def to_dict(self):
        buyer = self.buyer
        return {
            "id": int(self.id),
            "product_id": int(self.product_id),
            "buyer": {
                "id": int(buyer.id),
                "name": buyer.name or "",
                "username": buyer.username or "",
            } if buyer is not None else None,
            "order_id": int(self.order_id) if self.order_id is not None else None,
            "rating": int(self.rating or 0),
            "title": self.title or "",
            "comment": self.comment or "",
            "is_verified": bool(self.is_verified),
            "images": [i.to_dict() for i in (self.images or [])],
            "review_submitted_at": self.review_submitted_at.isoformat() if self.review_submitted_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ReviewImage(db.Model):
    __tablename__ = "review_images"

    id = db.Column(db.Integer, primary_key=True)
    review_id = db.Column(db.Integer, db.ForeignKey("product_reviews.id"), nullable=False, index=True)
    url = db.Column(db.Text, nullable=False)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self):
        return {"id": int(self.id), "url": self.url, "sort_order": int(self.sort_order or 0)}
