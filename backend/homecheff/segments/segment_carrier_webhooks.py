from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from homecheff.extensions import db
from homecheff.services.shipping_reconciler import process_carrier_webhook

webhooks_bp = Blueprint("webhooks_bp", __name__, url_prefix="/api/webhooks")

_WEBHOOKS_INIT_DONE = False


@webhooks_bp.before_app_request
def _ensure_tables_once():
    global _WEBHOOKS_INIT_DONE
    if _WEBHOOKS_INIT_DONE:
        return
    try:
        db.create_all()
    except Exception:
        current_app.logger.exception("webhooks_create_all_failed")
    _WEBHOOKS_INIT_DONE = True


@webhooks_bp.post("/<carrier>")
def carrier_webhook(carrier: str):
    raw = request.get_data() or b""
    carrier = (carrier or "").strip().lower()
    signature = request.headers.get(f"X-{carrier}-Signature") or request.headers.get("X-Signature")
    try:
        body, status = process_carrier_webhook(carrier, raw, signature)
    except Exception as e:
        try:
            db.session.rollback()
        except Exception:
            pass
        current_app.logger.exception("carrier_webhook_route_failed carrier=%s", carrier)
        return jsonify({"error": "Webhook processing failed", "details": str(e)}), 500
    return jsonify(body), int(status)
