"""Models package - exports all SQLAlchemy models."""
# Identity and catalog collaborators
from storefront.models.app_user import AppUser
from storefront.models.product import Product, is_valid_catalog_id

# Order ledger
from storefront.models.order import Order, PaymentMethod, NOT_AVAILABLE
from storefront.models.order_item import OrderItem

# Processor webhooks
from storefront.models.payment_webhook_event import PaymentWebhookEvent, WebhookEventStatus

__all__ = [
    'AppUser', 'Product', 'is_valid_catalog_id',
    'Order', 'PaymentMethod', 'NOT_AVAILABLE', 'OrderItem',
    'PaymentWebhookEvent', 'WebhookEventStatus',
]
