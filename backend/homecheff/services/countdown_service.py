from __future__ import annotations

import math
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from homecheff.extensions import db
from homecheff.models import DeliveryCountdown

RUNNING = "running"
STOPPED = "stopped"


def get_countdown(delivery_order_id: int) -> DeliveryCountdown | None:
    return DeliveryCountdown.query.filter_by(delivery_order_id=int(delivery_order_id)).first()


def start_countdown(delivery_order_id: int, estimated_minutes: int | None = None, *, commit: bool = True) -> DeliveryCountdown:
    """Start the delivery timer. A second start keeps the first one."""
    existing = get_countdown(delivery_order_id)
    if existing is not None:
        return existing
    row = DeliveryCountdown(
        delivery_order_id=int(delivery_order_id),
        status=RUNNING,
        estimated_minutes=int(estimated_minutes) if estimated_minutes is not None else None,
        started_at=datetime.utcnow(),
    )
    db.session.add(row)
    if commit:
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            return get_countdown(delivery_order_id)
    return row


def calculate_actual_delivery_time(delivery_order_id: int, now: datetime | None = None) -> int | None:
    """Elapsed whole minutes of a running countdown, or None when none ran."""
    row = get_countdown(delivery_order_id)
    if row is None or row.started_at is None:
        return None
    if row.status == STOPPED:
        return row.actual_minutes
    elapsed = ((now or datetime.utcnow()) - row.started_at).total_seconds()
    return max(0, int(math.floor(elapsed / 60)))


def stop_countdown(delivery_order_id: int, actual_minutes: int | None = None, *, commit: bool = True) -> DeliveryCountdown | None:
    row = get_countdown(delivery_order_id)
    if row is None or row.status == STOPPED:
        return row
    now = datetime.utcnow()
    if actual_minutes is None:
        actual_minutes = calculate_actual_delivery_time(delivery_order_id, now=now)
    row.status = STOPPED
    row.stopped_at = now
    row.actual_minutes = actual_minutes
    db.session.add(row)
    if commit:
        db.session.commit()
    return row
