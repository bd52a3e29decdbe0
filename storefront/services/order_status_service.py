"""Admin status transitions for persisted orders (paid / delivered)."""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from storefront.exceptions import NotFoundError, ValidationError
from storefront.models import Order
from storefront.services import order_service
from storefront.services.email_service import send_order_status_email

logger = logging.getLogger(__name__)

# Request field -> Order attribute. Anything else in the body is rejected.
STATUS_FIELDS = {
    'isPaid': 'is_paid',
    'isDelivered': 'is_delivered',
}


@dataclass(frozen=True)
class OrderStatusUpdate:
    """Partial status update; None means "leave unchanged"."""
    is_paid: Optional[bool] = None
    is_delivered: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: Any) -> 'OrderStatusUpdate':
        if not isinstance(data, dict):
            raise ValidationError('Request body must be a JSON object')

        errors = {key: 'is not an updatable field' for key in data if key not in STATUS_FIELDS}
        values = {}
        for key, attr in STATUS_FIELDS.items():
            if key not in data:
                continue
            if not isinstance(data[key], bool):
                errors[key] = 'must be a boolean'
            else:
                values[attr] = data[key]

        if errors:
            raise ValidationError('Invalid status update', fields=errors)
        if not values:
            raise ValidationError('No status fields provided', fields={
                key: 'optional boolean' for key in STATUS_FIELDS
            })
        return cls(**values)

    def changes(self) -> Dict[str, bool]:
        return {
            attr: getattr(self, attr)
            for attr in STATUS_FIELDS.values()
            if getattr(self, attr) is not None
        }


def _apply(order: Order, update: OrderStatusUpdate, now: datetime):
    # Flag and timestamp always move together
    if update.is_paid is not None:
        order.is_paid = update.is_paid
        order.paid_at = now if update.is_paid else None
    if update.is_delivered is not None:
        order.is_delivered = update.is_delivered
        order.delivered_at = now if update.is_delivered else None


def set_order_status(session: Session, order_id, update: OrderStatusUpdate) -> Order:
    """
    Apply a status update, commit, then notify the owner.

    Setting a flag to True stamps its timestamp with the current time (again,
    if it was already set); setting it to False clears both.

    Raises:
        NotFoundError: if the order doesn't exist
    """
    order = order_service.find_by_id(session, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")

    _apply(order, update, datetime.now(timezone.utc))
    session.commit()
    logger.info(f"[ORDERS] Order {order.id} status updated: {update.changes()}")

    try:
        send_order_status_email(order, is_paid=update.is_paid, is_delivered=update.is_delivered)
    except Exception as e:
        logger.error(f"[EMAIL] Status notification for order {order.id} failed: {e}")

    return order
