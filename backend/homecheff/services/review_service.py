"""Product reviews: placeholder minting, review-request fan-out and submission."""
from __future__ import annotations

import secrets
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from homecheff.extensions import db
from homecheff.models import Order, OrderItem, Product, ProductReview, ReviewImage, User
from homecheff.services.errors import (
    ConflictError,
    GoneError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from homecheff.utils.email import review_url, send_review_request_email
from homecheff.utils.events import log_event
from homecheff.utils.notify import send_review_received, send_review_request

MAX_DATA_IMAGE_BYTES = 2 * 1024 * 1024
MAX_URL_IMAGE_BYTES = 500 * 1024

SORT_OPTIONS = ("newest", "oldest", "highest", "lowest")


def generate_review_token() -> str:
    return secrets.token_urlsafe(32)


def default_token_expiry(now: datetime | None = None) -> datetime:
    try:
        days = int(current_app.config.get("REVIEW_TOKEN_TTL_DAYS") or 30)
    except (TypeError, ValueError):
        days = 30
    return (now or datetime.utcnow()) + timedelta(days=days)


def filter_review_images(images) -> list[str]:
    """Keep non-empty string URLs within the size limits; drop everything else."""
    if images is None:
        return []
    if not isinstance(images, list):
        raise ValidationError("Images must be an array")
    kept = []
    for img in images:
        if not isinstance(img, str) or not img.strip():
            continue
        limit = MAX_DATA_IMAGE_BYTES if img.startswith("data:image/") else MAX_URL_IMAGE_BYTES
        if len(img.encode("utf-8")) > limit:
            current_app.logger.info("review_image_dropped size=%s limit=%s", len(img), limit)
            continue
        kept.append(img)
    return kept


def _parse_rating(value) -> int:
    try:
        rating = int(value)
    except (TypeError, ValueError):
        raise ValidationError("Invalid rating")
    if isinstance(value, float) and value != rating:
        raise ValidationError("Invalid rating")
    if rating < 1 or rating > 5:
        raise ValidationError("Invalid rating")
    return rating


def _parse_comment(value) -> str:
    comment = (value or "").strip() if isinstance(value, str) else ""
    if not comment:
        raise ValidationError("Comment is required")
    return comment


def _replace_images(review: ProductReview, urls: list[str]) -> None:
    ReviewImage.query.filter_by(review_id=int(review.id)).delete(synchronize_session=False)
    for idx, url in enumerate(urls):
        db.session.add(ReviewImage(review_id=int(review.id), url=url, sort_order=idx))


def issue_review_tokens(order: Order) -> list[ProductReview]:
    """Create a placeholder review per order item the buyer has not reviewed yet."""
    created = []
    for item in order.items or []:
        existing = ProductReview.query.filter_by(product_id=int(item.product_id), buyer_id=int(order.buyer_id)).first()
        if existing is not None:
            continue
        review = ProductReview(
            product_id=int(item.product_id),
            buyer_id=int(order.buyer_id),
            order_id=int(order.id),
            order_item_id=int(item.id),
            rating=0,
            comment="",
            is_verified=False,
            review_token=generate_review_token(),
            review_token_expires=default_token_expiry(),
        )
        db.session.add(review)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            continue
        created.append(review)
    return created


def send_review_requests(order: Order) -> int:
    """Email and notify the buyer once per reviewable item. Returns requests sent."""
    issue_review_tokens(order)
    buyer = db.session.get(User, int(order.buyer_id))
    if buyer is None:
        return 0
    now = datetime.utcnow()
    sent = 0
    for item in order.items or []:
        review = ProductReview.query.filter_by(product_id=int(item.product_id), buyer_id=int(buyer.id)).first()
        if review is None or not review.review_token or review.is_submitted or review.token_expired(now):
            continue
        product = item.product
        title = product.title if product is not None else ""
        seller = None
        seller_id = product.seller_user_id() if product is not None else None
        if seller_id:
            seller = db.session.get(User, seller_id)
        try:
            send_review_request_email(
                email=buyer.email,
                buyer_name=buyer.display_name,
                order_number=order.display_number(),
                product_title=title,
                review_token=review.review_token,
                seller_name=seller.display_name if seller is not None else "de verkoper",
                product_image=product.cover_image_url() if product is not None else None,
            )
        except Exception as e:
            current_app.logger.warning(
                "review_request_email_failed order_id=%s product_id=%s err=%s", order.id, item.product_id, e
            )
        notification = send_review_request(
            int(buyer.id),
            order_id=int(order.id),
            order_number=order.display_number(),
            product_id=int(item.product_id),
            product_title=title,
            review_token=review.review_token,
            link=review_url(review.review_token),
        )
        if notification is not None:
            sent += 1
    current_app.logger.info("review_requests_sent order_id=%s count=%s", order.id, sent)
    return sent


def _review_for_token(token: str) -> ProductReview:
    token = (token or "").strip()
    if not token:
        raise NotFoundError("Review niet gevonden")
    review = ProductReview.query.filter_by(review_token=token).first()
    if review is None:
        if ProductReview.query.filter_by(consumed_review_token=token).first() is not None:
            raise ConflictError("Deze review is al ingediend")
        raise NotFoundError("Review niet gevonden")
    if review.is_submitted:
        raise ConflictError("Deze review is al ingediend")
    if review.token_expired():
        raise GoneError("Deze review link is verlopen")
    return review


def get_review_by_token(token: str) -> dict:
    review = _review_for_token(token)
    product = review.product
    order = db.session.get(Order, int(review.order_id)) if review.order_id is not None else None
    seller = None
    if product is not None and product.seller_user_id():
        seller = db.session.get(User, product.seller_user_id())
    return {
        "review_id": int(review.id),
        "product": product.to_dict() if product is not None else None,
        "order_number": order.display_number() if order is not None else None,
        "seller_name": seller.display_name if seller is not None else "",
        "expires_at": review.review_token_expires.isoformat() if review.review_token_expires else None,
    }


def _notify_seller(review: ProductReview) -> None:
    product = review.product
    if product is None:
        return
    buyer = review.buyer
    send_review_received(
        product.seller_user_id(),
        review_id=int(review.id),
        product_id=int(product.id),
        product_title=product.title or "",
        buyer_name=buyer.display_name if buyer is not None else "",
        rating=int(review.rating),
    )


def submit_review_with_token(token: str, *, rating, title=None, comment=None, images=None) -> ProductReview:
    rating = _parse_rating(rating)
    comment = _parse_comment(comment)
    urls = filter_review_images(images)
    review = _review_for_token(token)

    now = datetime.utcnow()
    result = db.session.execute(
        update(ProductReview)
        .where(ProductReview.id == int(review.id))
        .where(ProductReview.review_token == review.review_token)
        .where(ProductReview.review_submitted_at.is_(None))
        .values(
            rating=rating,
            title=(title or "").strip()[:200] or None,
            comment=comment,
            review_submitted_at=now,
            is_verified=True,
            consumed_review_token=review.review_token,
            review_token=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if int(result.rowcount or 0) != 1:
        db.session.rollback()
        raise ConflictError("Deze review is al ingediend")
    try:
        _replace_images(review, urls)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    db.session.refresh(review)

    _notify_seller(review)
    log_event(
        "review_submitted",
        actor_user_id=int(review.buyer_id),
        subject_type="product_review",
        subject_id=int(review.id),
        idempotency_key=f"review_submitted:{int(review.id)}",
        metadata={"product_id": int(review.product_id), "rating": rating, "via": "token"},
    )
    return review


def _purchase_for(user: User, product_id: int) -> Order | None:
    return (
        Order.query.join(OrderItem, OrderItem.order_id == Order.id)
        .filter(Order.buyer_id == int(user.id))
        .filter(OrderItem.product_id == int(product_id))
        .filter(Order.stripe_session_id.isnot(None))
        .filter(Order.stripe_session_id != "")
        .order_by(Order.id.desc())
        .first()
    )


def submit_product_review(user: User, product_id: int, payload: dict) -> ProductReview:
    payload = payload if isinstance(payload, dict) else {}
    rating = _parse_rating(payload.get("rating"))
    comment = _parse_comment(payload.get("comment"))
    urls = filter_review_images(payload.get("images"))
    title = payload.get("title")
    title = title.strip()[:200] or None if isinstance(title, str) else None

    product = db.session.get(Product, int(product_id))
    if product is None:
        raise NotFoundError("Product not found")
    order = _purchase_for(user, int(product.id))
    if order is None:
        raise PermissionDenied("You must purchase this product before you can review it")

    review = ProductReview.query.filter_by(product_id=int(product.id), buyer_id=int(user.id)).first()
    if review is not None and review.is_submitted:
        raise ValidationError("You have already reviewed this product")

    now = datetime.utcnow()
    if review is None:
        item = next((i for i in order.items or [] if int(i.product_id) == int(product.id)), None)
        review = ProductReview(
            product_id=int(product.id),
            buyer_id=int(user.id),
            order_id=int(order.id),
            order_item_id=int(item.id) if item is not None else None,
        )
        db.session.add(review)
    elif review.review_token:
        review.consumed_review_token = review.review_token
        review.review_token = None

    review.rating = rating
    review.title = title
    review.comment = comment
    review.is_verified = True
    review.review_submitted_at = now
    try:
        db.session.flush()
        _replace_images(review, urls)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError("You have already reviewed this product")
    except Exception:
        db.session.rollback()
        raise
    db.session.refresh(review)

    _notify_seller(review)
    log_event(
        "review_submitted",
        actor_user_id=int(user.id),
        subject_type="product_review",
        subject_id=int(review.id),
        idempotency_key=f"review_submitted:{int(review.id)}",
        metadata={"product_id": int(product.id), "rating": rating, "via": "product"},
    )
    return review


def list_product_reviews(product_id: int, *, sort_by: str = "newest", filter_by: str = "all") -> list[ProductReview]:
    product = db.session.get(Product, int(product_id))
    if product is None:
        raise NotFoundError("Product not found")
    q = ProductReview.query.filter(ProductReview.product_id == int(product.id)).filter(
        ProductReview.review_submitted_at.isnot(None)
    )
    filter_by = (filter_by or "all").strip().lower()
    if filter_by == "all":
        q = q.filter(ProductReview.rating > 0)
    else:
        try:
            q = q.filter(ProductReview.rating == int(filter_by))
        except ValueError:
            raise ValidationError("Invalid filter")
    reviews = q.all()

    sort_by = (sort_by or "newest").strip().lower()
    if sort_by not in SORT_OPTIONS:
        sort_by = "newest"
    if sort_by in ("highest", "lowest"):
        reviews.sort(key=lambda r: int(r.rating or 0), reverse=sort_by == "highest")
    else:
        reviews.sort(key=lambda r: r.review_submitted_at or r.created_at, reverse=sort_by == "newest")
    return reviews
