"""Escrow release and delivery-partner payouts.

A seller escrow is released at most once. The guard is the compare-and-swap
in ``claim_escrow``: the escrow is moved ``held -> payout_scheduled`` before
any money moves, so a replayed or concurrent webhook finds nothing to claim.
If the transfer call fails the escrow simply stays in ``payout_scheduled``
for reconciliation; it never returns to ``held``.
"""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy.exc import IntegrityError

from homecheff.extensions import db
from homecheff.integrations.common import (
    IntegrationDisabledError,
    IntegrationMisconfiguredError,
    config_bool,
)
from homecheff.integrations.payments.base import PayoutDestination
from homecheff.integrations.payments.factory import build_payout_destination
from homecheff.models import DeliveryOrder, DeliveryProfile, Order, PaymentEscrow, Payout, User
from homecheff.services.escrow_service import (
    EscrowStatus,
    PayoutTrigger,
    claim_escrow,
    escrows_for_order,
    record_payout_error,
)
from homecheff.utils.events import log_event

DELIVERY_PARTNER_SHARE = Decimal("0.88")

KIND_PRODUCT_SALE = "product_sale"
KIND_DELIVERY_FEE = "delivery_fee"


def delivery_fee_split(fee_cents: int) -> tuple[int, int]:
    """Return (partner_cents, platform_cents) for a delivery fee."""
    fee = int(fee_cents or 0)
    if fee <= 0:
        return 0, 0
    partner = int((Decimal(fee) * DELIVERY_PARTNER_SHARE).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return partner, fee - partner


def _currency() -> str:
    return (current_app.config.get("PAYOUT_CURRENCY") or "eur").strip().lower()


def _destination() -> PayoutDestination | None:
    try:
        return build_payout_destination(current_app.config)
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        current_app.logger.warning("payout_destination_unavailable err=%s", e)
        return None


def _transfer_idempotency_key(escrow: PaymentEscrow) -> str:
    return f"escrow_{int(escrow.id)}_transfer"


def _existing_payout(*, escrow_id: int | None, delivery_order_id: int | None) -> Payout | None:
    if escrow_id is not None:
        return Payout.query.filter_by(escrow_id=int(escrow_id)).first()
    if delivery_order_id is not None:
        return Payout.query.filter_by(delivery_order_id=int(delivery_order_id)).first()
    return None


def _append_payout(
    *,
    to_user_id: int,
    amount_cents: int,
    order_id: int,
    kind: str,
    provider_ref: str | None,
    escrow_id: int | None = None,
    delivery_order_id: int | None = None,
) -> Payout | None:
    """Append a ledger row keyed by the escrow or delivery order it settles."""
    existing = _existing_payout(escrow_id=escrow_id, delivery_order_id=delivery_order_id)
    if existing is not None:
        return existing
    row = Payout(
        to_user_id=int(to_user_id),
        amount_cents=int(amount_cents),
        transaction_id=int(order_id),
        kind=kind,
        escrow_id=escrow_id,
        delivery_order_id=delivery_order_id,
        provider_ref=provider_ref,
    )
    db.session.add(row)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return _existing_payout(escrow_id=escrow_id, delivery_order_id=delivery_order_id)
    return row


def _release_preconditions(escrow: PaymentEscrow | None, event: str) -> User | None:
    if escrow is None or (escrow.current_status or "") != EscrowStatus.HELD:
        return None
    if (escrow.payout_trigger or "").upper() != event:
        return None
    seller = db.session.get(User, int(escrow.seller_id))
    if seller is None or not (seller.stripe_connect_account_id or "").strip():
        current_app.logger.warning(
            "payout_skipped_no_destination escrow_id=%s seller_id=%s", escrow.id, escrow.seller_id
        )
        return None
    if int(escrow.amount_cents or 0) <= 0:
        current_app.logger.info("payout_skipped_zero_amount escrow_id=%s", escrow.id)
        return None
    return seller


def _complete_transfer(escrow: PaymentEscrow, order_id: int, seller: User, destination: PayoutDestination) -> Payout | None:
    amount = int(escrow.amount_cents)
    try:
        transfer = destination.create_transfer(
            amount_cents=amount,
            currency=_currency(),
            destination=seller.stripe_connect_account_id.strip(),
            transfer_group=f"order_{int(order_id)}",
            metadata={"orderId": int(order_id), "type": KIND_PRODUCT_SALE, "escrowId": int(escrow.id)},
            idempotency_key=_transfer_idempotency_key(escrow),
        )
    except Exception as e:
        current_app.logger.error("payout_transfer_failed escrow_id=%s order_id=%s err=%s", escrow.id, order_id, e)
        record_payout_error(escrow, str(e))
        log_event(
            "payout_transfer_failed",
            subject_type="escrow",
            subject_id=int(escrow.id),
            severity="ERROR",
            metadata={"order_id": int(order_id), "attempt": int(escrow.payout_attempts or 0), "error": str(e)},
        )
        return None

    claim_escrow(
        escrow,
        from_status=EscrowStatus.PAYOUT_SCHEDULED,
        to_status=EscrowStatus.PAID_OUT,
        reason=f"transfer:{transfer.id}",
    )
    payout = _append_payout(
        to_user_id=int(seller.id),
        amount_cents=amount,
        order_id=int(order_id),
        kind=KIND_PRODUCT_SALE,
        provider_ref=transfer.id,
        escrow_id=int(escrow.id),
    )
    current_app.logger.info(
        "payout_released escrow_id=%s order_id=%s amount_cents=%s transfer=%s", escrow.id, order_id, amount, transfer.id
    )
    log_event(
        "payout_released",
        actor_user_id=None,
        subject_type="escrow",
        subject_id=int(escrow.id),
        idempotency_key=f"payout_released:{int(escrow.id)}",
        metadata={"order_id": int(order_id), "amount_cents": amount, "transfer_id": transfer.id},
    )
    return payout


def release_escrow(escrow: PaymentEscrow, order: Order, *, event: str) -> Payout | None:
    """Release one escrow for ``event``. Silent no-op when any precondition fails."""
    seller = _release_preconditions(escrow, event)
    if seller is None:
        return None
    destination = _destination()
    if destination is None:
        return None

    claimed = claim_escrow(
        escrow,
        from_status=EscrowStatus.HELD,
        to_status=EscrowStatus.PAYOUT_SCHEDULED,
        reason=f"order_{event.lower()}",
    )
    if not claimed:
        current_app.logger.info("payout_claim_lost escrow_id=%s order_id=%s", escrow.id, order.id)
        return None
    return _complete_transfer(escrow, int(order.id), seller, destination)


def trigger_escrow_payouts(order: Order, event: str) -> list[Payout]:
    if event not in PayoutTrigger.ALL:
        raise ValueError(f"unknown payout trigger {event}")
    order_id = int(order.id)
    payouts = []
    for escrow in escrows_for_order(order_id):
        if (escrow.payout_trigger or "").upper() != event:
            continue
        payout = release_escrow(escrow, order, event=event)
        if payout is not None:
            payouts.append(payout)
    return payouts


def retry_scheduled_payout(escrow: PaymentEscrow) -> Payout | None:
    """Re-issue the transfer of an escrow stuck in ``payout_scheduled``.

    The attempt counter is part of the claim so two reconcilers never retry
    the same attempt, and the transfer reuses the escrow's idempotency key so
    the provider collapses it onto a transfer that already went through.
    """
    if escrow is None or (escrow.current_status or "") != EscrowStatus.PAYOUT_SCHEDULED:
        return None
    order = db.session.get(Order, int(escrow.order_id))
    seller = db.session.get(User, int(escrow.seller_id))
    if order is None or seller is None or not (seller.stripe_connect_account_id or "").strip():
        current_app.logger.warning("payout_retry_skipped escrow_id=%s", escrow.id)
        return None
    destination = _destination()
    if destination is None:
        return None
    claimed = claim_escrow(
        escrow,
        from_status=EscrowStatus.PAYOUT_SCHEDULED,
        to_status=EscrowStatus.PAYOUT_SCHEDULED,
        reason="payout_retry",
        expected_attempts=int(escrow.payout_attempts or 0),
    )
    if not claimed:
        return None
    return _complete_transfer(escrow, int(order.id), seller, destination)


def trigger_delivery_payout(delivery_order: DeliveryOrder, profile: DeliveryProfile) -> Payout | None:
    """Record the delivery partner's cut of a completed delivery.

    Money only moves when DELIVERY_PAYOUT_TRANSFERS_ENABLED is on and the
    partner has a connected account; otherwise the ledger row is the payout.
    """
    partner_cents, platform_cents = delivery_fee_split(int(delivery_order.delivery_fee_cents or 0))
    if partner_cents <= 0:
        return None
    order_id = int(delivery_order.order_id)
    existing = _existing_payout(escrow_id=None, delivery_order_id=int(delivery_order.id))
    if existing is not None:
        return existing

    provider_ref = None
    if config_bool(current_app.config, "DELIVERY_PAYOUT_TRANSFERS_ENABLED", False):
        partner = db.session.get(User, int(profile.user_id))
        destination = _destination()
        account = (getattr(partner, "stripe_connect_account_id", None) or "").strip()
        if destination is not None and account:
            try:
                transfer = destination.create_transfer(
                    amount_cents=partner_cents,
                    currency=_currency(),
                    destination=account,
                    transfer_group=f"order_{order_id}",
                    metadata={"deliveryOrderId": int(delivery_order.id), "type": KIND_DELIVERY_FEE},
                    idempotency_key=f"delivery_{int(delivery_order.id)}_transfer",
                )
                provider_ref = transfer.id
            except Exception as e:
                current_app.logger.error(
                    "delivery_payout_transfer_failed delivery_order_id=%s err=%s", delivery_order.id, e
                )
                return None

    payout = _append_payout(
        to_user_id=int(profile.user_id),
        amount_cents=partner_cents,
        order_id=order_id,
        kind=KIND_DELIVERY_FEE,
        provider_ref=provider_ref,
        delivery_order_id=int(delivery_order.id),
    )
    current_app.logger.info(
        "delivery_payout_recorded delivery_order_id=%s partner_cents=%s platform_cents=%s",
        delivery_order.id,
        partner_cents,
        platform_cents,
    )
    return payout
