"""Carrier webhook processing: shipping status, labels and the payouts they trigger."""
from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime

from flask import current_app

from homecheff.extensions import db
from homecheff.models import Order, OrderStatus, ShippingLabel, WebhookEvent
from homecheff.services.escrow_service import PayoutTrigger
from homecheff.services.payout_service import trigger_escrow_payouts
from homecheff.utils.events import log_event
from homecheff.utils.notify import send_shipping_label_ready
from homecheff.utils.observability import get_request_id


class ShippingStatus:
    LABEL_CREATED = "label_created"
    SHIPPED = "shipped"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    FAILED = "failed"


_CARRIER_STATUS_MAP = {
    "label_created": ShippingStatus.LABEL_CREATED,
    "created": ShippingStatus.LABEL_CREATED,
    "shipped": ShippingStatus.SHIPPED,
    "in_transit": ShippingStatus.IN_TRANSIT,
    "in transit": ShippingStatus.IN_TRANSIT,
    "out_for_delivery": ShippingStatus.OUT_FOR_DELIVERY,
    "out for delivery": ShippingStatus.OUT_FOR_DELIVERY,
    "delivered": ShippingStatus.DELIVERED,
    "failed": ShippingStatus.FAILED,
    "exception": ShippingStatus.FAILED,
}

# Label rows only distinguish "still at the seller" from "handed to the carrier".
_LABEL_SHIPPED_STATUSES = {"shipped", "in_transit", "out_for_delivery", "delivered", "failed"}

STATUS_EVENTS = ("shipment.status_changed", "shipment.delivered", "shipment.shipped")
LABEL_EVENTS = ("label.created",)

# Events whose type already says what happened; their body may omit ``status``.
_EVENT_IMPLIED_STATUS = {
    "shipment.shipped": ShippingStatus.SHIPPED,
    "shipment.delivered": ShippingStatus.DELIVERED,
}


@dataclass(frozen=True)
class NormalizedStatus:
    known: str | None
    raw: str

    @property
    def value(self) -> str:
        return self.known if self.known is not None else self.raw


def normalize_carrier_status(raw) -> NormalizedStatus:
    text = str(raw or "").strip()
    if not text:
        return NormalizedStatus(ShippingStatus.LABEL_CREATED, "")
    return NormalizedStatus(_CARRIER_STATUS_MAP.get(text.lower()), text)


def status_for_event(event_type: str, raw_status) -> NormalizedStatus | None:
    """Status carried by a shipment event, or None when it carries none.

    An explicit ``status`` wins; otherwise the event type may imply one.
    """
    if str(raw_status or "").strip():
        return normalize_carrier_status(raw_status)
    implied = _EVENT_IMPLIED_STATUS.get((event_type or "").strip().lower())
    if implied is None:
        return None
    return NormalizedStatus(implied, implied)


def label_status_for(normalized: NormalizedStatus) -> str:
    return "shipped" if normalized.value.lower() in _LABEL_SHIPPED_STATUSES else "generated"


def verify_carrier_signature(raw_body: bytes, signature: str | None, secret: str) -> bool:
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode("utf-8"), raw_body or b"", hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


def _event_data(event: dict) -> dict:
    """Carrier fields sit at the top level; some senders nest them under ``data``."""
    data = event.get("data")
    if isinstance(data, dict):
        return {**event, **data}
    return dict(event)


def _label_ref(data: dict):
    return data.get("shipment_id") or data.get("label_id") or data.get("labelId")


def _parse_timestamp(value) -> datetime | None:
    text = str(value or "").strip()
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = (parsed - parsed.utcoffset()).replace(tzinfo=None)
    return parsed


def _ref(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def resolve_order_for_event(label_id, order_ref) -> Order | None:
    label_id = _ref(label_id)
    order_ref = _ref(order_ref)
    if label_id:
        label = ShippingLabel.query.filter_by(ectaro_ship_label_id=label_id).first()
        if label is not None:
            order = db.session.get(Order, int(label.order_id))
            if order is not None:
                return order
        order = Order.query.filter_by(shipping_label_id=label_id).first()
        if order is not None:
            return order
    if order_ref:
        if order_ref.isdigit():
            order = db.session.get(Order, int(order_ref))
            if order is not None:
                return order
        return Order.query.filter_by(order_number=order_ref).first()
    return None


def handle_shipment_status_update(event: dict) -> Order | None:
    data = _event_data(event)
    label_id = _label_ref(data)
    order = resolve_order_for_event(label_id, data.get("order_id") or data.get("orderId") or data.get("order_number"))
    if order is None:
        current_app.logger.warning("carrier_webhook_order_not_found label_id=%s", label_id)
        return None

    event_type = _ref(event.get("type") or event.get("event"))
    normalized = status_for_event(event_type, data.get("status"))
    if normalized is None:
        current_app.logger.info("carrier_status_missing order_id=%s type=%s", order.id, event_type)
    elif normalized.known is None:
        current_app.logger.info("carrier_status_passthrough order_id=%s status=%s", order.id, normalized.raw)
    now = datetime.utcnow()

    became_shipped = False
    became_delivered = False
    if normalized is not None:
        order.shipping_status = normalized.value
        if normalized.known == ShippingStatus.SHIPPED and order.shipped_at is None:
            order.shipped_at = now
            order.status = OrderStatus.SHIPPED
            became_shipped = True
        elif normalized.known == ShippingStatus.DELIVERED and order.delivered_at is None:
            order.delivered_at = _parse_timestamp(data.get("delivered_at")) or now
            order.status = OrderStatus.DELIVERED
            became_delivered = True

    tracking = _ref(data.get("tracking_number") or data.get("trackingNumber"))
    if tracking and not order.shipping_tracking_number:
        order.shipping_tracking_number = tracking

    if label_id:
        label = ShippingLabel.query.filter_by(ectaro_ship_label_id=_ref(label_id)).first()
        if label is not None:
            if normalized is not None:
                label.status = label_status_for(normalized)
            if tracking and not label.tracking_number:
                label.tracking_number = tracking
            db.session.add(label)

    db.session.add(order)
    db.session.commit()

    if became_shipped:
        trigger_escrow_payouts(order, PayoutTrigger.SHIPPED)
    if became_delivered:
        trigger_escrow_payouts(order, PayoutTrigger.DELIVERED)
    if became_shipped or became_delivered:
        log_event(
            "order_shipping_status_changed",
            subject_type="order",
            subject_id=int(order.id),
            metadata={"shipping_status": order.shipping_status, "status": order.status},
        )
    return order


def handle_label_created(event: dict) -> ShippingLabel | None:
    data = _event_data(event)
    label_id = _ref(_label_ref(data))
    order_ref = _ref(data.get("order_id") or data.get("orderId") or data.get("order_number"))
    order = None
    if label_id:
        order = Order.query.filter_by(shipping_label_id=label_id).first()
    if order is None and order_ref:
        order = resolve_order_for_event(None, order_ref)
    if order is None:
        current_app.logger.warning("carrier_label_order_not_found label_id=%s order_ref=%s", label_id, order_ref)
        return None

    try:
        price_cents = int(round(float(data.get("price") or 0) * 100))
    except (TypeError, ValueError):
        price_cents = 0
    tracking = _ref(data.get("tracking_number") or data.get("trackingNumber"))

    order.shipping_status = ShippingStatus.LABEL_CREATED
    order.shipping_label_cost_cents = price_cents
    if label_id and not order.shipping_label_id:
        order.shipping_label_id = label_id
    if tracking and not order.shipping_tracking_number:
        order.shipping_tracking_number = tracking

    label = None
    if label_id:
        label = ShippingLabel.query.filter_by(ectaro_ship_label_id=label_id).first()
    if label is None:
        label = ShippingLabel(order_id=int(order.id), ectaro_ship_label_id=label_id or None)
    label.tracking_number = tracking or label.tracking_number
    label.pdf_url = _ref(data.get("pdf_url") or data.get("pdfUrl")) or label.pdf_url
    label.carrier = _ref(data.get("carrier")) or label.carrier or "PostNL"
    label.status = "generated"
    label.price_cents = price_cents

    db.session.add(order)
    db.session.add(label)
    db.session.commit()

    seller_id = order.seller_user_id()
    if seller_id:
        send_shipping_label_ready(
            seller_id,
            order_id=int(order.id),
            order_number=order.display_number(),
            tracking_number=tracking,
        )
    return label


def _record_webhook_event(
    carrier: str,
    *,
    event_type: str | None,
    reference: str | None,
    raw_body: bytes,
    status: str,
    signature_verified: bool,
    error: str | None = None,
) -> None:
    try:
        db.session.add(
            WebhookEvent(
                provider=(carrier or "unknown")[:32],
                event_type=(event_type or None) and event_type[:64],
                reference=(reference or None) and reference[:128],
                status=status,
                signature_verified=bool(signature_verified),
                processed_at=datetime.utcnow(),
                request_id=(get_request_id() or "")[:64] or None,
                payload_hash=hashlib.sha256(raw_body or b"").hexdigest(),
                error=(error or None) and error[:2000],
            )
        )
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.warning("webhook_event_record_failed carrier=%s err=%s", carrier, e)


def process_carrier_webhook(carrier: str, raw_body: bytes, signature: str | None) -> tuple[dict, int]:
    carrier = (carrier or "").strip().lower()
    secret = (current_app.config.get("ECTAROSHIP_WEBHOOK_SECRET") or "").strip()
    verified = False
    if secret:
        if not verify_carrier_signature(raw_body, signature, secret):
            current_app.logger.warning("carrier_webhook_signature_invalid carrier=%s", carrier)
            _record_webhook_event(
                carrier, event_type=None, reference=None, raw_body=raw_body, status="rejected", signature_verified=False
            )
            return {"error": "Invalid signature"}, 401
        verified = True
    else:
        current_app.logger.warning("carrier_webhook_signature_unverified carrier=%s", carrier)

    try:
        event = json.loads((raw_body or b"").decode("utf-8"))
        if not isinstance(event, dict):
            raise ValueError("payload is not an object")
    except (UnicodeDecodeError, ValueError) as e:
        current_app.logger.error("carrier_webhook_parse_failed carrier=%s err=%s", carrier, e)
        _record_webhook_event(
            carrier, event_type=None, reference=None, raw_body=raw_body, status="failed",
            signature_verified=verified, error=str(e),
        )
        return {"error": "Webhook processing failed", "details": str(e)}, 500

    event_type = _ref(event.get("type") or event.get("event"))
    data = _event_data(event)
    reference = _ref(_label_ref(data) or data.get("order_id") or data.get("orderId"))

    try:
        if event_type in STATUS_EVENTS:
            result = handle_shipment_status_update(event)
        elif event_type in LABEL_EVENTS:
            result = handle_label_created(event)
        else:
            current_app.logger.info("carrier_webhook_unhandled carrier=%s type=%s", carrier, event_type)
            result = None
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception("carrier_webhook_failed carrier=%s type=%s", carrier, event_type)
        _record_webhook_event(
            carrier, event_type=event_type, reference=reference, raw_body=raw_body, status="failed",
            signature_verified=verified, error=str(e),
        )
        return {"error": "Webhook processing failed", "details": str(e)}, 500

    _record_webhook_event(
        carrier,
        event_type=event_type,
        reference=reference,
        raw_body=raw_body,
        status="processed" if result is not None else "ignored",
        signature_verified=verified,
    )
    return {"received": True}, 200
