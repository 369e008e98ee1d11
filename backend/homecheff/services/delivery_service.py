"""Delivery-partner order lifecycle.

PENDING -> ACCEPTED -> PICKED_UP -> DELIVERED, with CANCELLED reachable from
any non-terminal state. Status only moves forward; re-sending the current
status is accepted and changes nothing but the notes.
"""
from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func, update

from homecheff.extensions import db
from homecheff.models import (
    Conversation,
    ConversationParticipant,
    DeliveryOrder,
    DeliveryProfile,
    Order,
    OrderStatus,
    User,
)
from homecheff.services import countdown_service
from homecheff.services.errors import ConflictError, NotFoundError, ValidationError
from homecheff.services.escrow_service import PayoutTrigger
from homecheff.services.payout_service import delivery_fee_split, trigger_delivery_payout, trigger_escrow_payouts
from homecheff.services.review_service import send_review_requests
from homecheff.utils.events import log_event
from homecheff.utils.notify import send_delivery_completed, send_delivery_picked_up


class DeliveryStatus:
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    PICKED_UP = "PICKED_UP"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"

    UPDATABLE = (ACCEPTED, PICKED_UP, DELIVERED, CANCELLED)
    TERMINAL = (DELIVERED, CANCELLED)

    ORDER = {PENDING: 0, ACCEPTED: 1, PICKED_UP: 2, DELIVERED: 3, CANCELLED: 3}


def can_transition(current: str, target: str) -> bool:
    current = current or DeliveryStatus.PENDING
    if current == target:
        return True
    if current in DeliveryStatus.TERMINAL:
        return False
    if target == DeliveryStatus.CANCELLED:
        return True
    return DeliveryStatus.ORDER.get(target, -1) > DeliveryStatus.ORDER.get(current, -1)


def _profile_for(user: User) -> DeliveryProfile:
    profile = DeliveryProfile.query.filter_by(user_id=int(user.id)).first()
    if profile is None:
        raise NotFoundError("Geen bezorger profiel gevonden")
    return profile


def _open_delivery_conversation(order: Order, deliverer_id: int) -> Conversation | None:
    existing = Conversation.query.filter_by(order_id=int(order.id)).first()
    if existing is not None:
        convo = existing
    else:
        convo = Conversation(order_id=int(order.id), title=f"Bezorging {order.display_number()}")
        db.session.add(convo)
        db.session.flush()
    for uid in {int(order.buyer_id), int(deliverer_id)}:
        if ConversationParticipant.query.filter_by(conversation_id=int(convo.id), user_id=uid).first() is None:
            db.session.add(ConversationParticipant(conversation_id=int(convo.id), user_id=uid))
    return convo


def accept_delivery_order(user: User, delivery_order_id: int, *, estimated_minutes: int | None = None) -> DeliveryOrder:
    profile = _profile_for(user)
    if not profile.is_active:
        raise ValidationError("Je bezorger profiel is niet actief")
    delivery_order = db.session.get(DeliveryOrder, int(delivery_order_id))
    if delivery_order is None:
        raise NotFoundError("Bezorgopdracht niet gevonden")
    if delivery_order.delivery_profile_id is not None and int(delivery_order.delivery_profile_id) == int(profile.id):
        return delivery_order

    result = db.session.execute(
        update(DeliveryOrder)
        .where(DeliveryOrder.id == int(delivery_order.id))
        .where(DeliveryOrder.status == DeliveryStatus.PENDING)
        .where(DeliveryOrder.delivery_profile_id.is_(None))
        .values(status=DeliveryStatus.ACCEPTED, delivery_profile_id=int(profile.id), updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    if int(result.rowcount or 0) != 1:
        db.session.rollback()
        raise ValidationError("Deze bestelling is al geaccepteerd door een andere bezorger")

    try:
        countdown_service.start_countdown(int(delivery_order.id), estimated_minutes, commit=False)
        order = db.session.get(Order, int(delivery_order.order_id))
        if order is not None:
            _open_delivery_conversation(order, int(user.id))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    db.session.refresh(delivery_order)

    current_app.logger.info(
        "delivery_order_accepted delivery_order_id=%s profile_id=%s", delivery_order.id, profile.id
    )
    log_event(
        "delivery_order_accepted",
        actor_user_id=int(user.id),
        subject_type="delivery_order",
        subject_id=int(delivery_order.id),
        idempotency_key=f"delivery_accepted:{int(delivery_order.id)}",
    )
    return delivery_order


def _all_delivered(order_id: int) -> bool:
    rows = DeliveryOrder.query.filter_by(order_id=int(order_id)).all()
    return bool(rows) and all((r.status or "") == DeliveryStatus.DELIVERED for r in rows)


def _promote_order_if_complete(order_id: int) -> bool:
    """Mark the parent order DELIVERED once every delivery order is.

    Returns True only for the call that performed the promotion, so the
    review fan-out runs once per order.
    """
    if not _all_delivered(order_id):
        return False
    now = datetime.utcnow()
    result = db.session.execute(
        update(Order)
        .where(Order.id == int(order_id))
        .where(Order.status != OrderStatus.DELIVERED)
        .values(status=OrderStatus.DELIVERED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if int(result.rowcount or 0) != 1:
        db.session.rollback()
        return False
    db.session.execute(
        update(Order)
        .where(Order.id == int(order_id))
        .where(Order.delivered_at.is_(None))
        .values(delivered_at=now)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return True


def update_delivery_status(user: User, delivery_order_id: int, status: str, notes: str | None = None) -> DeliveryOrder:
    status = (status or "").strip().upper()
    if status not in DeliveryStatus.UPDATABLE:
        raise ValidationError("Ongeldige status")
    profile = _profile_for(user)

    delivery_order = DeliveryOrder.query.filter_by(
        id=int(delivery_order_id), delivery_profile_id=int(profile.id)
    ).first()
    if delivery_order is None:
        raise NotFoundError("Bezorgopdracht niet gevonden")

    current = delivery_order.status or DeliveryStatus.PENDING
    if not can_transition(current, status):
        raise ConflictError(f"Status kan niet van {current} naar {status}")

    if notes is not None:
        delivery_order.notes = notes
    if current == status:
        db.session.add(delivery_order)
        db.session.commit()
        return delivery_order

    now = datetime.utcnow()
    result = db.session.execute(
        update(DeliveryOrder)
        .where(DeliveryOrder.id == int(delivery_order.id))
        .where(DeliveryOrder.status == current)
        .values(status=status, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if int(result.rowcount or 0) != 1:
        db.session.rollback()
        db.session.refresh(delivery_order)
        if delivery_order.status == status:
            return delivery_order
        raise ConflictError(f"Status kan niet van {delivery_order.status} naar {status}")

    delivery_order.status = status
    if status == DeliveryStatus.PICKED_UP:
        delivery_order.picked_up_at = now
    elif status == DeliveryStatus.DELIVERED:
        delivery_order.delivered_at = now
        delivery_order.actual_delivery_time = countdown_service.calculate_actual_delivery_time(int(delivery_order.id))
        countdown_service.stop_countdown(
            int(delivery_order.id), delivery_order.actual_delivery_time, commit=False
        )
        partner_cents, _platform = delivery_fee_split(int(delivery_order.delivery_fee_cents or 0))
        # Incremented in SQL; concurrent deliveries by one rider must all count.
        db.session.execute(
            update(DeliveryProfile)
            .where(DeliveryProfile.id == int(profile.id))
            .values(
                total_deliveries=func.coalesce(DeliveryProfile.total_deliveries, 0) + 1,
                total_earnings_cents=func.coalesce(DeliveryProfile.total_earnings_cents, 0) + partner_cents,
            )
            .execution_options(synchronize_session=False)
        )
    elif status == DeliveryStatus.CANCELLED:
        countdown_service.stop_countdown(int(delivery_order.id), commit=False)

    db.session.add(delivery_order)
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "delivery_status_updated delivery_order_id=%s from=%s to=%s", delivery_order.id, current, status
    )
    _after_transition(user, delivery_order, profile, status)
    return delivery_order


def _after_transition(user: User, delivery_order: DeliveryOrder, profile: DeliveryProfile, status: str) -> None:
    order = db.session.get(Order, int(delivery_order.order_id))
    if order is None:
        return
    seller_id = order.seller_user_id()

    if status == DeliveryStatus.PICKED_UP:
        send_delivery_picked_up(
            buyer_id=int(order.buyer_id),
            seller_id=seller_id,
            deliverer_id=int(user.id),
            order_id=int(order.id),
            order_number=order.display_number(),
        )
    elif status == DeliveryStatus.DELIVERED:
        send_delivery_completed(
            buyer_id=int(order.buyer_id),
            seller_id=seller_id,
            deliverer_id=int(user.id),
            order_id=int(order.id),
            order_number=order.display_number(),
            delivery_fee_cents=int(delivery_order.delivery_fee_cents or 0),
        )
        trigger_delivery_payout(delivery_order, profile)
        log_event(
            "delivery_order_delivered",
            actor_user_id=int(user.id),
            subject_type="delivery_order",
            subject_id=int(delivery_order.id),
            idempotency_key=f"delivery_delivered:{int(delivery_order.id)}",
            metadata={"order_id": int(order.id), "actual_minutes": delivery_order.actual_delivery_time},
        )
        if _promote_order_if_complete(int(order.id)):
            db.session.refresh(order)
            current_app.logger.info("order_delivered order_id=%s", order.id)
            trigger_escrow_payouts(order, PayoutTrigger.DELIVERED)
            send_review_requests(order)
