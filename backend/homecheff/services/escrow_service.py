from __future__ import annotations

import json
from datetime import datetime

from sqlalchemy import update

from homecheff.extensions import db
from homecheff.models import EscrowTransition, PaymentEscrow


class EscrowStatus:
    HELD = "held"
    PAYOUT_SCHEDULED = "payout_scheduled"
    PAID_OUT = "paid_out"

    ALLOWED = {
        HELD: {PAYOUT_SCHEDULED, PAID_OUT},
        PAYOUT_SCHEDULED: {PAYOUT_SCHEDULED, PAID_OUT},
        PAID_OUT: set(),
    }


class PayoutTrigger:
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"

    ALL = (SHIPPED, DELIVERED)


def _record_transition(
    escrow_id: int,
    order_id: int,
    from_status: str,
    to_status: str,
    *,
    reason: str = "",
    actor_type: str = "system",
    metadata: dict | None = None,
) -> None:
    db.session.add(
        EscrowTransition(
            escrow_id=int(escrow_id),
            order_id=int(order_id),
            from_status=from_status,
            to_status=to_status,
            actor_type=actor_type[:32],
            reason=(reason or "")[:240],
            metadata_json=json.dumps(metadata or {}, default=str)[:4000],
            created_at=datetime.utcnow(),
        )
    )


def claim_escrow(
    escrow: PaymentEscrow,
    *,
    from_status: str,
    to_status: str,
    reason: str = "",
    expected_attempts: int | None = None,
    actor_type: str = "system",
) -> bool:
    """Atomically move an escrow between states.

    Issues a single conditional UPDATE guarded on the current status (and on
    the attempt counter when given). Returns True only for the caller whose
    UPDATE matched the row; every concurrent competitor gets False.
    """
    if to_status not in EscrowStatus.ALLOWED.get(from_status, set()):
        raise ValueError(f"invalid_escrow_transition {from_status}->{to_status}")

    now = datetime.utcnow()
    stmt = (
        update(PaymentEscrow)
        .where(PaymentEscrow.id == int(escrow.id))
        .where(PaymentEscrow.current_status == from_status)
    )
    if expected_attempts is not None:
        stmt = stmt.where(PaymentEscrow.payout_attempts == int(expected_attempts))
    values = {"current_status": to_status, "updated_at": now}
    if to_status == EscrowStatus.PAYOUT_SCHEDULED:
        values["payout_attempts"] = PaymentEscrow.payout_attempts + 1
    if to_status == EscrowStatus.PAID_OUT:
        values["paid_out_at"] = now
    stmt = stmt.values(**values).execution_options(synchronize_session=False)

    try:
        result = db.session.execute(stmt)
        if int(result.rowcount or 0) != 1:
            db.session.rollback()
            return False
        _record_transition(
            escrow.id,
            escrow.order_id,
            from_status,
            to_status,
            reason=reason,
            actor_type=actor_type,
            metadata={"attempt": expected_attempts},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    db.session.refresh(escrow)
    return True


def record_payout_error(escrow: PaymentEscrow, error: str) -> None:
    try:
        db.session.execute(
            update(PaymentEscrow)
            .where(PaymentEscrow.id == int(escrow.id))
            .values(last_error=(error or "")[:2000], updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    db.session.refresh(escrow)


def escrows_for_order(order_id: int) -> list[PaymentEscrow]:
    return PaymentEscrow.query.filter_by(order_id=int(order_id)).order_by(PaymentEscrow.id.asc()).all()
