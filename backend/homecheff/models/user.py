from datetime import datetime

from werkzeug.security import generate_password_hash, check_password_hash

from homecheff.extensions import db


ADMIN_ROLES = ("admin", "superadmin")


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False, default="")
    username = db.Column(db.String(64), unique=True, index=True, nullable=True)
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)

    password_hash = db.Column(db.String(255), nullable=False, default="")

    # user | buyer | seller | delivery | admin | superadmin
    role = db.Column(db.String(32), nullable=False, default="user")

    # Connected payout destination (Stripe Connect account id)
    stripe_connect_account_id = db.Column(db.String(120), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def set_password(self, raw_password: str) -> None:
        self.password_hash = generate_password_hash(raw_password)

    def check_password(self, raw_password: str) -> bool:
        return check_password_hash(self.password_hash, raw_password)

    @property
    def is_admin(self) -> bool:
        return (self.role or "").strip().lower() in ADMIN_ROLES

    @property
    def display_name(self) -> str:
        return (self.name or self.username or "").strip()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name or "",
            "username": self.username or "",
            "email": self.email,
            "role": self.role or "user",
            "has_payout_destination": bool((self.stripe_connect_account_id or "").strip()),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
