from __future__ import annotations

import os
import time

from celery import shared_task
from flask import current_app

from homecheff.jobs.payout_runner import run_payout_reconciliation

MAX_BACKOFF_SECONDS = 900


def _backoff(retries: int) -> int:
    return min(MAX_BACKOFF_SECONDS, 5 * 2 ** max(0, int(retries)))


def _batch_size() -> int:
    try:
        size = int((os.getenv("PAYOUT_RECONCILE_LIMIT") or "100").strip())
    except ValueError:
        size = 100
    return max(1, min(size, 500))


@shared_task(bind=True, name="homecheff.tasks.payout_tasks.reconcile_scheduled_payouts", max_retries=3)
def reconcile_scheduled_payouts(self, *, trace_id: str = ""):
    """Retry transfers for escrows parked in payout_scheduled."""
    started = time.perf_counter()
    limit = _batch_size()
    try:
        result = run_payout_reconciliation(limit=limit)
    except Exception as exc:
        retries = int(self.request.retries or 0)
        if retries >= int(self.max_retries or 0):
            current_app.logger.error("payout_reconcile_task_failed trace_id=%s err=%s", trace_id, exc)
            raise
        countdown = _backoff(retries)
        current_app.logger.warning(
            "payout_reconcile_task_retry trace_id=%s attempt=%s countdown=%s err=%s",
            trace_id,
            retries + 1,
            countdown,
            exc,
        )
        raise self.retry(exc=exc, countdown=countdown)

    current_app.logger.info(
        "payout_reconcile_task_done trace_id=%s limit=%s processed=%s paid=%s errors=%s ms=%s",
        trace_id,
        limit,
        result["processed"],
        result["paid"],
        result["errors"],
        int((time.perf_counter() - started) * 1000),
    )
    return result
