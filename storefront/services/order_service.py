"""Order ledger: durable storage and read access for orders."""
import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from storefront.models import Order
from storefront.exceptions import ValidationError, ConflictError

logger = logging.getLogger(__name__)


def insert_order(session: Session, order: Order) -> Order:
    """
    Persist a new order and commit.

    Raises:
        ValidationError: if the order has no items or a negative total
        ConflictError: if another order already holds the same payment external id
    """
    errors = {}
    if not order.items:
        errors['items'] = 'must contain at least one item'
    if order.total_price is None or Decimal(str(order.total_price)) < 0:
        errors['totalPrice'] = 'must be >= 0'
    if errors:
        raise ValidationError('Invalid order', fields=errors)

    for position, item in enumerate(order.items):
        item.position = position

    try:
        session.add(order)
        session.commit()
    except IntegrityError:
        session.rollback()
        external_id = order.payment_external_id
        if external_id and find_by_external_id(session, external_id) is not None:
            logger.warning(f"[ORDERS] Duplicate order insert for payment {external_id}")
            raise ConflictError(external_id)
        raise

    logger.info(f"[ORDERS] Order {order.id} persisted ({order.payment_method.value}, total={order.total_price})")
    return order


def find_by_external_id(session: Session, external_id: str) -> Optional[Order]:
    """Idempotency lookup by payment external id (unique, indexed)."""
    if not external_id:
        return None
    return session.query(Order).filter(Order.payment_external_id == external_id).first()


def find_by_id(session: Session, order_id) -> Optional[Order]:
    try:
        order_id = int(order_id)
    except (TypeError, ValueError):
        return None
    return session.query(Order).filter(Order.id == order_id).first()


def find_by_owner(session: Session, user_id: int) -> List[Order]:
    """User's order history, newest first."""
    return (
        session.query(Order)
        .options(selectinload(Order.items))
        .filter(Order.user_id == user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def list_all(session: Session, is_paid: Optional[bool] = None, is_delivered: Optional[bool] = None) -> List[Order]:
    """Admin listing, newest first, optionally filtered by paid/delivered flags."""
    query = session.query(Order).options(selectinload(Order.items), selectinload(Order.user))
    if is_paid is not None:
        query = query.filter(Order.is_paid == is_paid)
    if is_delivered is not None:
        query = query.filter(Order.is_delivered == is_delivered)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()


def update_status(session: Session, order_id, update) -> Order:
    """Apply an OrderStatusUpdate (see order_status_service)."""
    from storefront.services.order_status_service import set_order_status
    return set_order_status(session, order_id, update)
