from datetime import datetime

from homecheff.extensions import db


class SellerProfile(db.Model):
    __tablename__ = "seller_profiles"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    display_name = db.Column(db.String(160), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "user_id": int(self.user_id),
            "display_name": self.display_name or "",
        }


class WorkplacePhoto(db.Model):
    __tablename__ = "workplace_photos"

    id = db.Column(db.Integer, primary_key=True)
    seller_profile_id = db.Column(db.Integer, db.ForeignKey("seller_profiles.id"), nullable=False, index=True)
    file_url = db.Column(db.String(1024), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)


class Product(db.Model):
    __tablename__ = "products"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    # Owned through a seller profile; older listings point at the user directly.
    seller_profile_id = db.Column(db.Integer, db.ForeignKey("seller_profiles.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    seller_profile = db.relationship("SellerProfile", lazy="joined")
    images = db.relationship("ProductImage", lazy="select", order_by="ProductImage.sort_order")

    def seller_user_id(self) -> int | None:
        if self.seller_profile is not None:
            return int(self.seller_profile.user_id)
        if self.user_id is not None:
            return int(self.user_id)
        return None

    def cover_image_url(self) -> str | None:
        for img in self.images or []:
            if (img.file_url or "").strip():
                return img.file_url
        return None

    def to_dict(self):
        return {
            "id": int(self.id),
            "title": self.title or "",
            "price_cents": int(self.price_cents or 0),
            "seller_user_id": self.seller_user_id(),
            "image": self.cover_image_url(),
        }


class ProductImage(db.Model):
    __tablename__ = "product_images"

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    file_url = db.Column(db.String(1024), nullable=False)
    sort_order = db.Column(db.Integer, nullable=False, default=0)


class Favorite(db.Model):
    __tablename__ = "favorites"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
