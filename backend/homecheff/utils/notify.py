"""In-app notifications for order, delivery and review events.

Every sender here is fire-and-forget: failures are logged and swallowed so a
notification problem never aborts the state transition that triggered it.
Call these after the primary change has been committed.
"""
from __future__ import annotations

from flask import current_app

from homecheff.extensions import db
from homecheff.models import Notification


def queue_notification(
    user_id: int | None,
    *,
    kind: str,
    title: str,
    message: str,
    channel: str = "in_app",
    urgent: bool = False,
    meta: dict | None = None,
) -> Notification | None:
    if not user_id:
        return None
    try:
        n = Notification(
            user_id=int(user_id),
            kind=(kind or "GENERAL")[:40],
            channel=channel,
            title=(title or "")[:160],
            message=message or "",
            urgent=bool(urgent),
            status="queued",
        )
        n.set_meta(meta)
        db.session.add(n)
        db.session.commit()
        return n
    except Exception as e:
        try:
            db.session.rollback()
        except Exception:
            pass
        current_app.logger.warning("notification_queue_failed user_id=%s kind=%s err=%s", user_id, kind, e)
        return None


def send_shipping_label_ready(seller_id: int, *, order_id: int, order_number: str, tracking_number: str = ""):
    return queue_notification(
        seller_id,
        kind="SHIPPING_LABEL_READY",
        title="Verzendlabel klaar",
        message=f"Het verzendlabel voor bestelling {order_number} staat klaar.",
        meta={"orderId": order_id, "orderNumber": order_number, "trackingNumber": tracking_number},
    )


def send_delivery_picked_up(*, buyer_id: int, seller_id: int | None, deliverer_id: int, order_id: int, order_number: str):
    meta = {"orderId": order_id, "orderNumber": order_number, "delivererId": deliverer_id}
    queue_notification(
        buyer_id,
        kind="DELIVERY_PICKED_UP",
        title="Bestelling opgehaald",
        message=f"Je bestelling {order_number} is opgehaald en onderweg.",
        meta=meta,
    )
    if seller_id and int(seller_id) != int(buyer_id):
        queue_notification(
            seller_id,
            kind="DELIVERY_PICKED_UP",
            title="Bestelling opgehaald",
            message=f"Bestelling {order_number} is opgehaald door de bezorger.",
            meta=meta,
        )


def send_delivery_completed(
    *,
    buyer_id: int,
    seller_id: int | None,
    deliverer_id: int,
    order_id: int,
    order_number: str,
    delivery_fee_cents: int = 0,
):
    meta = {"orderId": order_id, "orderNumber": order_number, "delivererId": deliverer_id}
    queue_notification(
        buyer_id,
        kind="DELIVERY_COMPLETED",
        title="Bestelling bezorgd",
        message=f"Je bestelling {order_number} is bezorgd.",
        urgent=True,
        meta=meta,
    )
    if seller_id and int(seller_id) != int(buyer_id):
        queue_notification(
            seller_id,
            kind="DELIVERY_COMPLETED",
            title="Bestelling bezorgd",
            message=f"Bestelling {order_number} is bezorgd bij de klant.",
            meta=meta,
        )
    queue_notification(
        deliverer_id,
        kind="DELIVERY_COMPLETED",
        title="Bezorging voltooid",
        message=f"Bezorging van bestelling {order_number} voltooid.",
        meta={**meta, "deliveryFeeCents": int(delivery_fee_cents or 0)},
    )


def send_review_request(buyer_id: int, *, order_id: int, order_number: str, product_id: int, product_title: str, review_token: str, link: str):
    return queue_notification(
        buyer_id,
        kind="REVIEW_REQUEST",
        channel="push",
        title=f"Review verzoek: {product_title}",
        message=(
            "Je bestelling is voltooid! Help andere gebruikers door een review "
            f"achter te laten voor {product_title}."
        ),
        meta={
            "type": "REVIEW_REQUEST",
            "orderId": order_id,
            "orderNumber": order_number,
            "productId": product_id,
            "productTitle": product_title,
            "reviewToken": review_token,
            "link": link,
        },
    )


def send_review_received(seller_id: int | None, *, review_id: int, product_id: int, product_title: str, buyer_name: str, rating: int):
    return queue_notification(
        seller_id,
        kind="REVIEW_RECEIVED",
        title="Nieuwe review ontvangen!",
        message=f"{buyer_name or 'Een klant'} heeft een {int(rating)}-sterren review achtergelaten voor {product_title}",
        meta={
            "reviewId": review_id,
            "productId": product_id,
            "rating": int(rating),
            "link": f"/verkoper/products/{product_id}",
        },
    )
