from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError

from homecheff.extensions import db
from homecheff.models import PlatformEvent
from homecheff.utils.observability import get_request_id


def _jsonable(value):
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def _existing(key: str | None) -> PlatformEvent | None:
    if not key:
        return None
    return PlatformEvent.query.filter_by(idempotency_key=key).first()


def log_event(
    event_type: str,
    *,
    actor_user_id: int | None = None,
    subject_type: str | None = None,
    subject_id: int | str | None = None,
    severity: str = "INFO",
    idempotency_key: str | None = None,
    metadata: dict | None = None,
) -> PlatformEvent | None:
    """Append a domain event (payout released, delivery completed, user deleted...).

    The row is committed on its own, so call this only after the change it
    describes has been committed. An event with an ``idempotency_key`` is
    written once; replays get the stored row back. Failures are logged and
    never raised.
    """
    key = (idempotency_key or "").strip()[:180] or None
    try:
        found = _existing(key)
        if found is not None:
            return found
        row = PlatformEvent(
            event_type=(event_type or "unknown")[:80],
            actor_user_id=actor_user_id,
            subject_type=(subject_type or None) and subject_type[:80],
            subject_id=None if subject_id is None else str(subject_id)[:120],
            request_id=get_request_id()[:80] or None,
            idempotency_key=key,
            severity=(severity or "INFO").upper()[:16],
            metadata_json=json.dumps(_jsonable(metadata or {}), separators=(",", ":"), ensure_ascii=False),
        )
        db.session.add(row)
        db.session.commit()
        return row
    except IntegrityError:
        db.session.rollback()
        return _existing(key)
    except Exception as e:
        db.session.rollback()
        if has_app_context():
            current_app.logger.warning("platform_event_failed type=%s err=%s", event_type, e)
        return None
