"""Celery wiring for background payout work.

Tasks run inside the Flask app context of the app that built the worker, so
they share its config, database session and logger.
"""
from __future__ import annotations

import os

from celery import Celery
from celery.signals import task_failure, task_retry

RECONCILE_TASK = "homecheff.tasks.payout_tasks.reconcile_scheduled_payouts"
MIN_RECONCILE_INTERVAL_SECONDS = 60

_observers_connected = False


def _redis_url() -> str:
    return (os.getenv("REDIS_URL") or "").strip()


def _broker_url() -> str:
    return (os.getenv("CELERY_BROKER_URL") or "").strip() or _redis_url() or "redis://localhost:6379/0"


def _reconcile_interval() -> float:
    try:
        seconds = int((os.getenv("PAYOUT_RECONCILE_INTERVAL_SECONDS") or "600").strip())
    except ValueError:
        seconds = 600
    return float(max(seconds, MIN_RECONCILE_INTERVAL_SECONDS))


def beat_schedule() -> dict:
    return {
        "payout-reconciliation-runner": {
            "task": RECONCILE_TASK,
            "schedule": _reconcile_interval(),
            "kwargs": {"trace_id": "beat"},
        },
    }


def _connect_observers(flask_app) -> None:
    global _observers_connected
    if _observers_connected:
        return
    log = flask_app.logger

    @task_failure.connect(weak=False)
    def _task_failed(sender=None, task_id=None, exception=None, kwargs=None, **_extra):
        log.error(
            "celery_task_failed task=%s task_id=%s trace_id=%s err=%s",
            getattr(sender, "name", ""),
            task_id,
            (kwargs or {}).get("trace_id", ""),
            exception,
        )

    @task_retry.connect(weak=False)
    def _task_retrying(request=None, reason=None, **_extra):
        log.warning(
            "celery_task_retry task=%s task_id=%s retries=%s reason=%s",
            getattr(request, "task", ""),
            getattr(request, "id", ""),
            getattr(request, "retries", 0),
            reason,
        )

    _observers_connected = True


def create_celery_app(flask_app) -> Celery:
    broker = _broker_url()
    celery = Celery(
        flask_app.import_name,
        broker=broker,
        backend=(os.getenv("CELERY_RESULT_BACKEND") or "").strip() or _redis_url() or broker,
    )
    celery.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        enable_utc=True,
        timezone="UTC",
        # A payout retry must not be lost when a worker dies mid-run.
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        task_track_started=True,
        broker_connection_retry_on_startup=True,
        beat_schedule=beat_schedule(),
    )

    class AppContextTask(celery.Task):
        def __call__(self, *args, **kwargs):
            with flask_app.app_context():
                return self.run(*args, **kwargs)

    celery.Task = AppContextTask
    celery.autodiscover_tasks(["homecheff.tasks"], related_name="payout_tasks")
    _connect_observers(flask_app)
    return celery
