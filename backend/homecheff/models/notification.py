import json
from datetime import datetime

from homecheff.extensions import db


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # REVIEW_REQUEST | REVIEW_RECEIVED | DELIVERY_PICKED_UP | DELIVERY_COMPLETED | SHIPPING_LABEL_READY ...
    kind = db.Column(db.String(40), nullable=False, default="GENERAL", index=True)
    channel = db.Column(db.String(32), nullable=False, default="in_app")  # in_app | push | email
    title = db.Column(db.String(160), nullable=True)
    message = db.Column(db.Text, nullable=False, default="")
    urgent = db.Column(db.Boolean, nullable=False, default=False)

    status = db.Column(db.String(24), nullable=False, default="queued")  # queued | sent | failed

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    read_at = db.Column(db.DateTime, nullable=True)

    meta = db.Column(db.Text, nullable=True)  # JSON string

    def meta_dict(self) -> dict:
        raw = (self.meta or "").strip()
        if not raw:
            return {}
        try:
            data = json.loads(raw)
            return data if isinstance(data, dict) else {}
        except Exception:
            return {}

    def set_meta(self, meta: dict | None) -> None:
        try:
            self.meta = json.dumps(meta or {}, separators=(",", ":"), default=str)
        except Exception:
            self.meta = "{}"

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "kind": self.kind or "GENERAL",
            "channel": self.channel or "in_app",
            "title": self.title or "",
            "message": self.message or "",
            "urgent": bool(self.urgent),
            "status": self.status or "queued",
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "meta": self.meta_dict(),
        }
