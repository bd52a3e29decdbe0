"""
Order reconciliation.

Turns a payment signal into exactly one persisted order. Three entry points
converge on the same ledger:

- redirect confirmation: the browser returns from checkout with a session id
- processor webhook: the processor reports a completed checkout session
- cash on delivery: the order is placed unpaid, no processor involved

The pre-check by external id only saves a processor round trip; the unique
constraint on Order.payment_external_id is what keeps redirect and webhook
from both creating an order.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.blueprints.metrics import record_reconciliation
from storefront.exceptions import (
    ConflictError, GatewayTimeoutError, InvalidItemsError, NotPaidError, ValidationError
)
from storefront.models import (
    AppUser, Order, OrderItem, PaymentMethod, PaymentWebhookEvent, WebhookEventStatus, NOT_AVAILABLE
)
from storefront.services import order_service
from storefront.services.cart_service import CartLine
from storefront.services.catalog_service import get_product_by_id, resolve_product_ref
from storefront.services.email_service import send_cod_confirmation_email, send_order_confirmation_email
from storefront.services.pricing_service import quote_cart
from storefront.services.stripe_client import CheckoutSession, SessionLineItem, normalize_session

logger = logging.getLogger(__name__)

ENTRY_REDIRECT = 'redirect'
ENTRY_WEBHOOK = 'webhook'
ENTRY_COD = 'cod'

COMPLETED_SESSION_EVENTS = (
    'checkout.session.completed',
    'checkout.session.async_payment_succeeded',
)

REQUIRED_ADDRESS_FIELDS = ('address', 'city', 'postalCode', 'country')


class ReconciliationState(str, enum.Enum):
    INITIATED = 'initiated'
    AWAITING_EXTERNAL_CONFIRMATION = 'awaiting_external_confirmation'
    RECONCILED = 'reconciled'
    REJECTED = 'rejected'
    ALREADY_RECONCILED = 'already_reconciled'
    PENDING = 'pending'


@dataclass
class ReconciliationOutcome:
    order: Optional[Order]
    state: ReconciliationState

    @property
    def created(self) -> bool:
        return self.state == ReconciliationState.RECONCILED


@dataclass
class WebhookResult:
    event_id: Optional[str]
    event_type: Optional[str]
    status: str
    outcome: Optional[ReconciliationOutcome] = None
    duplicate: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'received': True,
            'eventId': self.event_id,
            'type': self.event_type,
            'status': self.status,
        }
        if self.duplicate:
            data['duplicate'] = True
        if self.outcome is not None:
            data['state'] = self.outcome.state.value
            if self.outcome.order is not None:
                data['orderId'] = self.outcome.order.id
        return data


def _now():
    return datetime.now(timezone.utc)


def _resolve_owner(session: Session, client_reference: Optional[str], caller: Optional[AppUser]) -> Optional[AppUser]:
    """Session client reference first, then the calling user, else guest."""
    if client_reference:
        try:
            user = session.get(AppUser, int(client_reference))
        except (TypeError, ValueError):
            user = None
        if user is not None:
            return user
        logger.warning(f"[RECONCILE] Client reference {client_reference!r} does not match a user")
    return caller


def _address_fields(address: Optional[Dict[str, Any]]) -> Dict[str, str]:
    if not address:
        return {
            'address_line': NOT_AVAILABLE,
            'city': NOT_AVAILABLE,
            'postal_code': NOT_AVAILABLE,
            'country': NOT_AVAILABLE,
        }
    street = ' '.join(part for part in (address.get('line1'), address.get('line2')) if part)
    return {
        'address_line': street or NOT_AVAILABLE,
        'city': address.get('city') or NOT_AVAILABLE,
        'postal_code': address.get('postal_code') or NOT_AVAILABLE,
        'country': address.get('country') or NOT_AVAILABLE,
    }


def build_card_order(
    session: Session,
    checkout_session: CheckoutSession,
    line_items: List[SessionLineItem],
    owner: Optional[AppUser]
) -> Order:
    """Order for a paid checkout session, with amounts as the processor charged them."""
    order = Order(
        user=owner,
        payment_method=PaymentMethod.CARD,
        items_price=checkout_session.amount_subtotal,
        shipping_price=checkout_session.amount_shipping,
        total_price=checkout_session.amount_total,
        is_paid=True,
        paid_at=_now(),
        is_delivered=False,
        payment_external_id=checkout_session.session_id,
        payment_status=checkout_session.payment_status,
        payer_email=checkout_session.payer_email,
        **_address_fields(checkout_session.shipping_address)
    )
    for item in line_items:
        product_id = resolve_product_ref(session, item.product_ref)
        if product_id is None and item.product_ref:
            logger.info(f"[RECONCILE] Unresolved product reference {item.product_ref!r} stored without product")
        order.items.append(OrderItem(
            name=item.name,
            quantity=item.quantity,
            unit_price=item.unit_amount,
            product_id=product_id,
            image=item.image or '',
        ))
    return order


def confirm_session(
    session: Session,
    gateway,
    session_id: str,
    caller: Optional[AppUser] = None,
    entry_point: str = ENTRY_REDIRECT,
    checkout_session: Optional[CheckoutSession] = None
) -> ReconciliationOutcome:
    """
    Reconcile a checkout session into an order.

    Args:
        session: Database session
        gateway: Checkout gateway (StripeCheckoutClient)
        session_id: Processor checkout session id
        caller: Authenticated user making the request, if any
        entry_point: Metrics label (redirect or webhook)
        checkout_session: Session already known to the caller (webhook payload);
            retrieved from the processor when omitted

    Returns:
        ReconciliationOutcome with RECONCILED or ALREADY_RECONCILED

    Raises:
        NotPaidError: session not completed, nothing persisted
        GatewayTimeoutError: processor did not answer, outcome unknown
    """
    if not session_id or not isinstance(session_id, str):
        raise ValidationError('Session ID is required', fields={'sessionId': 'is required'})

    existing = order_service.find_by_external_id(session, session_id)
    if existing is not None:
        logger.info(f"[RECONCILE] Session {session_id} already reconciled as order {existing.id} ({entry_point})")
        record_reconciliation(entry_point, ReconciliationState.ALREADY_RECONCILED.value)
        return ReconciliationOutcome(existing, ReconciliationState.ALREADY_RECONCILED)

    try:
        if checkout_session is None:
            checkout_session = gateway.retrieve_completed_session(session_id)
        elif not checkout_session.is_complete:
            raise NotPaidError()
        line_items = gateway.list_session_line_items(session_id)
    except NotPaidError:
        logger.info(f"[RECONCILE] Session {session_id} rejected: not paid ({entry_point})")
        record_reconciliation(entry_point, ReconciliationState.REJECTED.value)
        raise
    except GatewayTimeoutError:
        logger.warning(f"[RECONCILE] Session {session_id} pending: processor timeout ({entry_point})")
        record_reconciliation(entry_point, ReconciliationState.PENDING.value)
        raise

    owner = _resolve_owner(session, checkout_session.client_reference, caller)
    order = build_card_order(session, checkout_session, line_items, owner)

    try:
        order_service.insert_order(session, order)
    except ConflictError:
        # Lost the race against the other entry point
        existing = order_service.find_by_external_id(session, session_id)
        logger.info(f"[RECONCILE] Session {session_id} reconciled concurrently as order {existing.id} ({entry_point})")
        record_reconciliation(entry_point, ReconciliationState.ALREADY_RECONCILED.value)
        return ReconciliationOutcome(existing, ReconciliationState.ALREADY_RECONCILED)

    logger.info(
        f"[RECONCILE] Session {session_id} reconciled as order {order.id} "
        f"(owner={order.user_id or 'guest'}, total={order.total_price}, {entry_point})"
    )
    record_reconciliation(entry_point, ReconciliationState.RECONCILED.value)
    try:
        send_order_confirmation_email(order)
    except Exception as e:
        logger.error(f"[EMAIL] Confirmation for order {order.id} failed: {e}")
    return ReconciliationOutcome(order, ReconciliationState.RECONCILED)


def _process_event(session: Session, gateway, event: Dict[str, Any]) -> WebhookResult:
    event_id = event.get('id')
    event_type = event.get('type')

    if event_type not in COMPLETED_SESSION_EVENTS:
        logger.info(f"[WEBHOOK] Ignoring event type {event_type}")
        return WebhookResult(event_id, event_type, WebhookEventStatus.IGNORED)

    session_data = (event.get('data') or {}).get('object') or {}
    checkout_session = normalize_session(session_data)
    if not checkout_session.session_id:
        raise ValidationError('Webhook event carries no checkout session')

    try:
        outcome = confirm_session(
            session,
            gateway,
            checkout_session.session_id,
            entry_point=ENTRY_WEBHOOK,
            checkout_session=checkout_session,
        )
    except NotPaidError:
        # Delayed payment methods complete later with async_payment_succeeded
        return WebhookResult(
            event_id, event_type, WebhookEventStatus.IGNORED,
            outcome=ReconciliationOutcome(None, ReconciliationState.REJECTED),
        )

    return WebhookResult(event_id, event_type, WebhookEventStatus.PROCESSED, outcome=outcome)


def handle_webhook_event(
    session: Session,
    gateway,
    raw_payload: bytes,
    signature_header: Optional[str]
) -> WebhookResult:
    """
    Verify and process a processor webhook (idempotent per event id).

    Nothing in the payload is read before the signature is verified.

    Raises:
        SignatureError: payload not authentic, nothing processed
        GatewayTimeoutError: processor timed out while fetching line items
    """
    event = gateway.construct_event(raw_payload, signature_header)

    event_id = event.get('id')
    event_type = event.get('type')
    session_data = (event.get('data') or {}).get('object') or {}
    resource_id = session_data.get('id')
    dedupe_key = str(event_id or f"{event_type}:{resource_id}")

    logger.info(f"[WEBHOOK] Received {event_type} ({event_id}) for {resource_id}")

    webhook_event = session.query(PaymentWebhookEvent).filter(
        PaymentWebhookEvent.dedupe_key == dedupe_key
    ).first()

    if webhook_event is not None and webhook_event.status in (WebhookEventStatus.PROCESSED, WebhookEventStatus.IGNORED):
        logger.info(f"[WEBHOOK] Event {dedupe_key} already handled ({webhook_event.status})")
        return WebhookResult(event_id, event_type, webhook_event.status, duplicate=True)

    if webhook_event is None:
        webhook_event = PaymentWebhookEvent(
            event_type=event_type or 'unknown',
            resource_id=resource_id,
            payload_json=event,
            dedupe_key=dedupe_key,
            status=WebhookEventStatus.RECEIVED,
        )
        try:
            session.add(webhook_event)
            session.commit()
        except IntegrityError:
            # Another worker is logging the same delivery; the order insert stays idempotent anyway
            session.rollback()
            webhook_event = session.query(PaymentWebhookEvent).filter(
                PaymentWebhookEvent.dedupe_key == dedupe_key
            ).first()
            if webhook_event is None:
                raise
            logger.warning(f"[WEBHOOK] Event {dedupe_key} logged concurrently")
    else:
        logger.info(f"[WEBHOOK] Reprocessing event {dedupe_key} (was {webhook_event.status})")

    try:
        result = _process_event(session, gateway, event)
    except Exception as e:
        session.rollback()
        logger.error(f"[WEBHOOK] Error processing event {dedupe_key}: {e}")
        webhook_event.status = WebhookEventStatus.FAILED
        webhook_event.error = str(e)[:500]
        session.commit()
        raise

    webhook_event.status = result.status
    webhook_event.processed_at = _now()
    webhook_event.error = None
    session.commit()
    return result


def validate_shipping_address(shipping_address: Any) -> Dict[str, str]:
    """Require every address field the courier needs."""
    address = shipping_address if isinstance(shipping_address, dict) else {}
    missing = [
        name for name in REQUIRED_ADDRESS_FIELDS
        if not isinstance(address.get(name), str) or not address.get(name).strip()
    ]
    if missing:
        raise ValidationError(
            'Shipping address is incomplete',
            fields={f'shippingAddress.{name}': 'is required' for name in missing},
        )
    return {name: address[name].strip() for name in REQUIRED_ADDRESS_FIELDS}


def place_cash_on_delivery_order(
    session: Session,
    lines: List[CartLine],
    shipping_address: Any,
    owner: Optional[AppUser],
    promo_code: Optional[str] = None
) -> Order:
    """
    Place an unpaid cash on delivery order.

    Every cart line must reference an existing catalog product; otherwise
    InvalidItemsError names the offending lines and nothing is persisted.
    """
    if not lines:
        raise ValidationError('No items in cart', fields={'items': 'must be a non-empty list'})

    address = validate_shipping_address(shipping_address)

    invalid_items = []
    resolved = []
    for index, line in enumerate(lines):
        product = get_product_by_id(session, line.product_id)
        if product is None:
            invalid_items.append({'index': index, 'name': line.name, 'productId': line.product_id})
        else:
            resolved.append((line, product))

    if invalid_items:
        logger.warning(f"[ORDERS] COD order rejected: {len(invalid_items)} invalid item(s)")
        record_reconciliation(ENTRY_COD, ReconciliationState.REJECTED.value)
        raise InvalidItemsError(invalid_items)

    totals = quote_cart(lines, promo_code)

    order = Order(
        user=owner,
        payment_method=PaymentMethod.CASH_ON_DELIVERY,
        items_price=totals['items_price'] - totals['discount'],
        shipping_price=totals['shipping_price'],
        total_price=totals['items_price'] - totals['discount'] + totals['shipping_price'],
        is_paid=False,
        is_delivered=False,
        address_line=address['address'],
        city=address['city'],
        postal_code=address['postalCode'],
        country=address['country'],
    )
    for line, product in resolved:
        order.items.append(OrderItem(
            name=line.name,
            quantity=line.quantity,
            unit_price=line.unit_price,
            product_id=product.id,
            image=line.image,
        ))

    order_service.insert_order(session, order)
    logger.info(f"[ORDERS] COD order {order.id} placed (owner={order.user_id or 'guest'}, total={order.total_price})")
    record_reconciliation(ENTRY_COD, ReconciliationState.RECONCILED.value)
    try:
        send_cod_confirmation_email(order)
    except Exception as e:
        logger.error(f"[EMAIL] COD confirmation for order {order.id} failed: {e}")
    return order
