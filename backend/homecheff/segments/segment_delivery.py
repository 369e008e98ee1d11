from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from homecheff.extensions import db
from homecheff.services.delivery_service import accept_delivery_order, update_delivery_status
from homecheff.services.errors import ServiceError
from homecheff.utils.jwt_utils import get_current_user

delivery_bp = Blueprint("delivery_bp", __name__, url_prefix="/api/delivery")

_DELIVERY_INIT_DONE = False


@delivery_bp.before_app_request
def _ensure_tables_once():
    global _DELIVERY_INIT_DONE
    if _DELIVERY_INIT_DONE:
        return
    try:
        db.create_all()
    except Exception:
        current_app.logger.exception("delivery_create_all_failed")
    _DELIVERY_INIT_DONE = True


@delivery_bp.post("/orders/<int:delivery_order_id>/accept")
def accept_order(delivery_order_id: int):
    u = get_current_user()
    if not u:
        return jsonify({"error": "Niet ingelogd"}), 401
    payload = request.get_json(silent=True) or {}
    estimated = payload.get("estimatedMinutes", payload.get("estimated_minutes"))
    try:
        estimated = int(estimated) if estimated is not None else None
    except (TypeError, ValueError):
        estimated = None
    try:
        row = accept_delivery_order(u, delivery_order_id, estimated_minutes=estimated)
    except ServiceError as e:
        body, status = e.to_response()
        return jsonify(body), status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("delivery_accept_failed delivery_order_id=%s", delivery_order_id)
        return jsonify({"error": "Er is een fout opgetreden bij het accepteren van de bestelling"}), 500
    return jsonify({"success": True, "order": row.to_dict(include_order=True)}), 200


@delivery_bp.post("/orders/<int:delivery_order_id>/update-status")
def update_status(delivery_order_id: int):
    u = get_current_user()
    if not u:
        return jsonify({"error": "Niet ingelogd"}), 401
    payload = request.get_json(silent=True) or {}
    notes = payload.get("notes")
    if notes is not None and not isinstance(notes, str):
        notes = str(notes)
    try:
        row = update_delivery_status(u, delivery_order_id, payload.get("status"), notes)
    except ServiceError as e:
        body, status = e.to_response()
        return jsonify(body), status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("delivery_status_update_failed delivery_order_id=%s", delivery_order_id)
        return jsonify({"error": "Er is een fout opgetreden bij het updaten van de bestelling"}), 500
    return jsonify({"success": True, "order": row.to_dict(include_order=True)}), 200
