from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from homecheff.extensions import db
from homecheff.models import PaymentEscrow
from homecheff.services.errors import ServiceError
from homecheff.services.escrow_service import EscrowStatus
from homecheff.services.payout_service import retry_scheduled_payout
from homecheff.services.user_deletion_service import delete_user_as_admin
from homecheff.utils.jwt_utils import get_current_user

admin_bp = Blueprint("admin_bp", __name__, url_prefix="/api/admin")

_ADMIN_INIT_DONE = False


@admin_bp.before_app_request
def _ensure_tables_once():
    global _ADMIN_INIT_DONE
    if _ADMIN_INIT_DONE:
        return
    try:
        db.create_all()
    except Exception:
        current_app.logger.exception("admin_create_all_failed")
    _ADMIN_INIT_DONE = True


def _require_admin():
    u = get_current_user()
    if not u:
        return None, (jsonify({"error": "Niet ingelogd"}), 401)
    if not u.is_admin:
        return None, (jsonify({"error": "Geen admin rechten"}), 403)
    return u, None


@admin_bp.delete("/users/<int:user_id>")
def delete_user(user_id: int):
    admin, err = _require_admin()
    if err:
        return err
    try:
        counts = delete_user_as_admin(admin, user_id)
    except ServiceError as e:
        body, status = e.to_response()
        return jsonify(body), status
    except Exception:
        current_app.logger.exception("admin_delete_user_failed user_id=%s", user_id)
        return jsonify({"error": "Er is een fout opgetreden bij het verwijderen van de gebruiker"}), 500
    return jsonify({"success": True, "message": "Gebruiker succesvol verwijderd", "deleted": counts}), 200


@admin_bp.get("/escrows")
def list_escrows():
    _admin, err = _require_admin()
    if err:
        return err
    status = (request.args.get("status") or EscrowStatus.PAYOUT_SCHEDULED).strip().lower()
    try:
        limit = max(1, min(int(request.args.get("limit") or 50), 200))
    except (TypeError, ValueError):
        limit = 50
    q = PaymentEscrow.query
    if status != "all":
        q = q.filter(PaymentEscrow.current_status == status)
    rows = q.order_by(PaymentEscrow.updated_at.asc()).limit(limit).all()
    return jsonify({"ok": True, "items": [r.to_dict() for r in rows]}), 200


@admin_bp.post("/escrows/<int:escrow_id>/retry-payout")
def retry_payout(escrow_id: int):
    _admin, err = _require_admin()
    if err:
        return err
    escrow = db.session.get(PaymentEscrow, int(escrow_id))
    if escrow is None:
        return jsonify({"error": "Escrow niet gevonden"}), 404
    if escrow.current_status != EscrowStatus.PAYOUT_SCHEDULED:
        return jsonify({"error": "Escrow staat niet klaar voor uitbetaling", "status": escrow.current_status}), 409
    payout = retry_scheduled_payout(escrow)
    db.session.refresh(escrow)
    return jsonify({
        "ok": payout is not None,
        "escrow": escrow.to_dict(),
        "payout": payout.to_dict() if payout is not None else None,
    }), 200
