"""Hard deletion of a user and everything that hangs off them.

The steps run in table order inside one transaction: children always come
before their parents so no foreign key is ever left dangling. The ids the
later steps need are read once, up front, because earlier steps delete the
rows that would otherwise be used to find them.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from flask import current_app
from sqlalchemy import or_

from homecheff.extensions import db
from homecheff.models import (
    AnalyticsEvent,
    Conversation,
    ConversationParticipant,
    DeliveryCountdown,
    DeliveryOrder,
    DeliveryProfile,
    Favorite,
    Follow,
    Message,
    Notification,
    Order,
    OrderItem,
    PaymentEscrow,
    Product,
    ProductImage,
    ProductReview,
    ReviewImage,
    SellerProfile,
    ShippingLabel,
    User,
    WorkplacePhoto,
)
from homecheff.services.errors import NotFoundError
from homecheff.utils.events import log_event


def _ids(query) -> list[int]:
    return [int(row[0]) for row in query.all()]


@dataclass
class DeletionContext:
    user_id: int
    order_ids: list[int] = field(default_factory=list)
    conversation_ids: list[int] = field(default_factory=list)
    direct_product_ids: list[int] = field(default_factory=list)
    seller_profile_ids: list[int] = field(default_factory=list)
    profile_product_ids: list[int] = field(default_factory=list)
    delivery_profile_ids: list[int] = field(default_factory=list)
    delivery_order_ids: list[int] = field(default_factory=list)
    review_ids: list[int] = field(default_factory=list)

    @property
    def product_ids(self) -> list[int]:
        return sorted(set(self.direct_product_ids) | set(self.profile_product_ids))

    @classmethod
    def snapshot(cls, user_id: int) -> "DeletionContext":
        uid = int(user_id)
        ctx = cls(user_id=uid)
        ctx.order_ids = _ids(db.session.query(Order.id).filter(Order.buyer_id == uid))
        ctx.conversation_ids = _ids(
            db.session.query(ConversationParticipant.conversation_id)
            .filter(ConversationParticipant.user_id == uid)
            .distinct()
        )
        ctx.direct_product_ids = _ids(db.session.query(Product.id).filter(Product.user_id == uid))
        ctx.seller_profile_ids = _ids(db.session.query(SellerProfile.id).filter(SellerProfile.user_id == uid))
        ctx.profile_product_ids = _ids(
            db.session.query(Product.id).filter(Product.seller_profile_id.in_(ctx.seller_profile_ids))
        )
        ctx.delivery_profile_ids = _ids(db.session.query(DeliveryProfile.id).filter(DeliveryProfile.user_id == uid))
        ctx.delivery_order_ids = _ids(db.session.query(DeliveryOrder.id).filter(DeliveryOrder.order_id.in_(ctx.order_ids)))
        ctx.review_ids = _ids(
            db.session.query(ProductReview.id).filter(
                or_(ProductReview.buyer_id == uid, ProductReview.product_id.in_(ctx.product_ids))
            )
        )
        return ctx


@dataclass(frozen=True)
class DeletionStep:
    """One bulk statement. ``detach`` turns the delete into an UPDATE of those values."""

    name: str
    model: Any
    criterion: Callable[[DeletionContext], Any]
    detach: dict | None = None


DELETION_STEPS: tuple[DeletionStep, ...] = (
    DeletionStep("analytics_events", AnalyticsEvent, lambda c: AnalyticsEvent.user_id == c.user_id),
    DeletionStep("review_images", ReviewImage, lambda c: ReviewImage.review_id.in_(c.review_ids)),
    DeletionStep("buyer_reviews", ProductReview, lambda c: ProductReview.buyer_id == c.user_id),
    DeletionStep("order_items", OrderItem, lambda c: OrderItem.order_id.in_(c.order_ids)),
    DeletionStep("payment_escrows", PaymentEscrow, lambda c: PaymentEscrow.order_id.in_(c.order_ids)),
    DeletionStep("shipping_labels", ShippingLabel, lambda c: ShippingLabel.order_id.in_(c.order_ids)),
    DeletionStep(
        "delivery_countdowns", DeliveryCountdown, lambda c: DeliveryCountdown.delivery_order_id.in_(c.delivery_order_ids)
    ),
    DeletionStep("delivery_orders", DeliveryOrder, lambda c: DeliveryOrder.id.in_(c.delivery_order_ids)),
    DeletionStep("orders", Order, lambda c: Order.id.in_(c.order_ids)),
    DeletionStep(
        "messages",
        Message,
        lambda c: or_(Message.conversation_id.in_(c.conversation_ids), Message.sender_id == c.user_id),
    ),
    DeletionStep(
        "conversation_participants",
        ConversationParticipant,
        lambda c: or_(
            ConversationParticipant.conversation_id.in_(c.conversation_ids),
            ConversationParticipant.user_id == c.user_id,
        ),
    ),
    DeletionStep("conversations", Conversation, lambda c: Conversation.id.in_(c.conversation_ids)),
    DeletionStep("follows", Follow, lambda c: or_(Follow.follower_id == c.user_id, Follow.seller_id == c.user_id)),
    DeletionStep("favorites", Favorite, lambda c: Favorite.user_id == c.user_id),
    DeletionStep("direct_product_images", ProductImage, lambda c: ProductImage.product_id.in_(c.direct_product_ids)),
    DeletionStep(
        "direct_product_reviews", ProductReview, lambda c: ProductReview.product_id.in_(c.direct_product_ids)
    ),
    DeletionStep("direct_product_favorites", Favorite, lambda c: Favorite.product_id.in_(c.direct_product_ids)),
    DeletionStep("direct_product_order_items", OrderItem, lambda c: OrderItem.product_id.in_(c.direct_product_ids)),
    DeletionStep("direct_products", Product, lambda c: Product.id.in_(c.direct_product_ids)),
    DeletionStep(
        "workplace_photos", WorkplacePhoto, lambda c: WorkplacePhoto.seller_profile_id.in_(c.seller_profile_ids)
    ),
    DeletionStep("profile_product_images", ProductImage, lambda c: ProductImage.product_id.in_(c.profile_product_ids)),
    DeletionStep(
        "profile_product_reviews", ProductReview, lambda c: ProductReview.product_id.in_(c.profile_product_ids)
    ),
    DeletionStep("profile_product_favorites", Favorite, lambda c: Favorite.product_id.in_(c.profile_product_ids)),
    DeletionStep(
        "profile_product_order_items", OrderItem, lambda c: OrderItem.product_id.in_(c.profile_product_ids)
    ),
    DeletionStep("profile_products", Product, lambda c: Product.id.in_(c.profile_product_ids)),
    DeletionStep("seller_profiles", SellerProfile, lambda c: SellerProfile.id.in_(c.seller_profile_ids)),
    DeletionStep(
        "assigned_delivery_orders",
        DeliveryOrder,
        lambda c: DeliveryOrder.delivery_profile_id.in_(c.delivery_profile_ids),
        detach={"delivery_profile_id": None},
    ),
    DeletionStep("delivery_profiles", DeliveryProfile, lambda c: DeliveryProfile.id.in_(c.delivery_profile_ids)),
    DeletionStep("notifications", Notification, lambda c: Notification.user_id == c.user_id),
    DeletionStep("user", User, lambda c: User.id == c.user_id),
)


def _run_step(step: DeletionStep, ctx: DeletionContext) -> int:
    query = step.model.query.filter(step.criterion(ctx))
    if step.detach is not None:
        return int(query.update(step.detach, synchronize_session=False) or 0)
    return int(query.delete(synchronize_session=False) or 0)


def delete_user_cascade(user_id: int, *, steps: tuple[DeletionStep, ...] = DELETION_STEPS) -> dict[str, int]:
    """Delete the user and all dependent rows atomically.

    Returns deleted (or detached) row counts per step. Any failure rolls the
    whole deletion back and propagates.
    """
    uid = int(user_id)
    if db.session.get(User, uid) is None:
        raise NotFoundError("Gebruiker niet gevonden")

    counts: dict[str, int] = {}
    try:
        ctx = DeletionContext.snapshot(uid)
        for step in steps:
            counts[step.name] = counts.get(step.name, 0) + _run_step(step, ctx)
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("user_delete_failed user_id=%s", uid)
        raise
    db.session.expire_all()

    current_app.logger.info("user_deleted user_id=%s rows=%s", uid, sum(counts.values()))
    return counts


def delete_user_as_admin(admin: User, user_id: int) -> dict[str, int]:
    counts = delete_user_cascade(user_id)
    log_event(
        "admin_user_deleted",
        actor_user_id=int(admin.id),
        subject_type="user",
        subject_id=int(user_id),
        metadata={"counts": counts},
    )
    return counts
