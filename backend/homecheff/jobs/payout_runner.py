from __future__ import annotations

from datetime import datetime

from flask import current_app

from homecheff.extensions import db
from homecheff.models import PaymentEscrow
from homecheff.services.escrow_service import EscrowStatus
from homecheff.services.payout_service import retry_scheduled_payout
from homecheff.utils.job_runs import record_job_run


def _now():
    return datetime.utcnow()


def run_payout_reconciliation(*, limit: int = 100) -> dict:
    """Retry transfers for escrows stuck in payout_scheduled.

    Oldest first. Each retry reuses the escrow's transfer idempotency key, so
    an escrow whose earlier transfer did go through settles without a second
    transfer.
    """
    started_at = _now()
    processed = 0
    paid = 0
    skipped = 0
    errors = 0

    rows = (
        PaymentEscrow.query.filter_by(current_status=EscrowStatus.PAYOUT_SCHEDULED)
        .order_by(PaymentEscrow.updated_at.asc(), PaymentEscrow.id.asc())
        .limit(int(limit))
        .all()
    )

    for escrow in rows:
        processed += 1
        try:
            payout = retry_scheduled_payout(escrow)
            if payout is not None:
                paid += 1
            else:
                skipped += 1
        except Exception:
            errors += 1
            db.session.rollback()
            current_app.logger.exception("payout_reconcile_failed escrow_id=%s", escrow.id)

    result = {
        "ok": True,
        "processed": processed,
        "paid": paid,
        "skipped": skipped,
        "errors": errors,
        "ts": _now().isoformat(),
    }
    record_job_run(
        job_name="payout_reconciliation",
        ok=errors == 0,
        started_at=started_at,
        processed=processed,
        error=None if errors == 0 else f"errors={errors}",
    )
    current_app.logger.info(
        "payout_reconcile_done processed=%s paid=%s skipped=%s errors=%s", processed, paid, skipped, errors
    )
    return result
