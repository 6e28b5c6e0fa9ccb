from subgate.models.api_key import ApiKey
from subgate.models.audit_log import AuditLog
from subgate.models.content import ContentItem, ContentView
from subgate.models.creator import Creator
from subgate.models.payment import Payment
from subgate.models.platform import PlatformPlan, PlatformSubscription
from subgate.models.product import Price, Product
from subgate.models.subscription import Subscription
from subgate.models.user import User
from subgate.models.webhook import Webhook, WebhookDelivery

__all__ = [
    "ApiKey",
    "AuditLog",
    "ContentItem",
    "ContentView",
    "Creator",
    "Payment",
    "PlatformPlan",
    "PlatformSubscription",
    "Price",
    "Product",
    "Subscription",
    "User",
    "Webhook",
    "WebhookDelivery",
]
