from homecheff.models.user import User, ADMIN_ROLES
from homecheff.models.catalog import SellerProfile, WorkplacePhoto, Product, ProductImage, Favorite
from homecheff.models.social import Follow, AnalyticsEvent, Conversation, ConversationParticipant, Message
from homecheff.models.order import Order, OrderItem, OrderStatus, DeliveryMode
from homecheff.models.shipping import ShippingLabel
from homecheff.models.escrow import PaymentEscrow, Payout
from homecheff.models.escrow_transition import EscrowTransition
from homecheff.models.delivery import DeliveryProfile, DeliveryOrder, DeliveryCountdown
from homecheff.models.review import ProductReview, ReviewImage
from homecheff.models.notification import Notification
from homecheff.models.webhook_event import WebhookEvent
from homecheff.models.platform_event import PlatformEvent
from homecheff.models.job_run import JobRun

__all__ = [
    "User",
    "ADMIN_ROLES",
    "SellerProfile",
    "WorkplacePhoto",
    "Product",
    "ProductImage",
    "Favorite",
    "Follow",
    "AnalyticsEvent",
    "Conversation",
    "ConversationParticipant",
    "Message",
    "Order",
    "OrderItem",
    "OrderStatus",
    "DeliveryMode",
    "ShippingLabel",
    "PaymentEscrow",
    "Payout",
    "EscrowTransition",
    "DeliveryProfile",
    "DeliveryOrder",
    "DeliveryCountdown",
    "ProductReview",
    "ReviewImage",
    "Notification",
    "WebhookEvent",
    "PlatformEvent",
    "JobRun",
]
