"""Stripe Checkout client: the boundary to the external payment processor."""
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

import stripe
from flask import current_app

from storefront.exceptions import (
    GatewayError, GatewayTimeoutError, NotPaidError, NotFoundError, SignatureError
)

logger = logging.getLogger(__name__)

PAID_PAYMENT_STATUSES = ('paid', 'no_payment_required')


@dataclass(frozen=True)
class SessionLineItem:
    name: str
    unit_amount: Decimal
    quantity: int
    product_ref: Optional[str] = None
    image: str = ''


@dataclass(frozen=True)
class CheckoutSession:
    """Processor checkout session, normalized to major currency units."""
    session_id: str
    status: Optional[str]
    payment_status: Optional[str]
    amount_subtotal: Decimal
    amount_shipping: Decimal
    amount_total: Decimal
    shipping_address: Optional[Dict[str, Optional[str]]] = None
    payer_email: Optional[str] = None
    client_reference: Optional[str] = None
    line_items: List[SessionLineItem] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return self.status == 'complete' and self.payment_status in PAID_PAYMENT_STATUSES


def to_plain_dict(obj: Any) -> Dict[str, Any]:
    """Convert Stripe objects / mappings into a plain dict (best-effort)."""
    if obj is None:
        return {}
    if isinstance(obj, dict) and not isinstance(obj, stripe.StripeObject):
        return obj
    for attr in ('to_dict_recursive', 'to_dict'):
        fn = getattr(obj, attr, None)
        if callable(fn):
            return fn()
    return dict(obj)


def _from_cents(amount) -> Decimal:
    return (Decimal(int(amount or 0)) / 100).quantize(Decimal('0.01'))


def _to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def _extract_address(session_data: Dict[str, Any]) -> Optional[Dict[str, Optional[str]]]:
    """Shipping details first, then customer (billing) details."""
    candidates = [
        (session_data.get('shipping_details') or {}).get('address'),
        ((session_data.get('collected_information') or {}).get('shipping_details') or {}).get('address'),
        (session_data.get('customer_details') or {}).get('address'),
    ]
    for address in candidates:
        if address:
            return address
    return None


def normalize_session(session_data: Dict[str, Any]) -> CheckoutSession:
    """Build a CheckoutSession from a raw processor session payload."""
    session_data = to_plain_dict(session_data)
    customer_details = session_data.get('customer_details') or {}
    total_details = session_data.get('total_details') or {}
    shipping_cost = session_data.get('shipping_cost') or {}
    amount_shipping = total_details.get('amount_shipping')
    if amount_shipping is None:
        amount_shipping = shipping_cost.get('amount_total')

    return CheckoutSession(
        session_id=session_data.get('id'),
        status=session_data.get('status'),
        payment_status=session_data.get('payment_status'),
        amount_subtotal=_from_cents(session_data.get('amount_subtotal')),
        amount_shipping=_from_cents(amount_shipping),
        amount_total=_from_cents(session_data.get('amount_total')),
        shipping_address=_extract_address(session_data),
        payer_email=customer_details.get('email') or session_data.get('customer_email'),
        client_reference=session_data.get('client_reference_id'),
    )


def normalize_line_item(item_data: Dict[str, Any]) -> SessionLineItem:
    """Build a SessionLineItem from a line item with `price.product` expanded."""
    item_data = to_plain_dict(item_data)
    price = item_data.get('price') or {}
    product = price.get('product') or {}
    if not isinstance(product, dict):
        # Not expanded: only the processor's product id is available
        product = {}
    images = product.get('images') or []
    metadata = product.get('metadata') or {}

    return SessionLineItem(
        name=product.get('name') or item_data.get('description') or 'Item',
        unit_amount=_from_cents(price.get('unit_amount')),
        quantity=int(item_data.get('quantity') or 1),
        product_ref=metadata.get('productId'),
        image=images[0] if images else '',
    )


class StripeCheckoutClient:
    """Client for Stripe hosted Checkout sessions and webhook verification."""

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        """
        Initialize Stripe client.

        Args:
            api_key: Stripe secret key. If None, reads STRIPE_SECRET_KEY from app config
            webhook_secret: Endpoint signing secret. If None, reads STRIPE_WEBHOOK_SECRET
        """
        self.api_key = api_key or current_app.config.get('STRIPE_SECRET_KEY')
        self.webhook_secret = webhook_secret or current_app.config.get('STRIPE_WEBHOOK_SECRET')

    def _check_key(self):
        if not self.api_key:
            raise GatewayError("Payment processor is not configured")

    def _absolute_image_url(self, image: str) -> Optional[str]:
        if not image:
            return None
        if image.startswith(('http://', 'https://')):
            return image
        base = current_app.config.get('PUBLIC_ASSET_BASE_URL', '').rstrip('/')
        return f"{base}/{image.lstrip('/')}"

    def build_session_params(self, lines, owner_user_id=None, customer_email=None) -> Dict[str, Any]:
        """Translate cart lines into Checkout Session create parameters."""
        cfg = current_app.config
        currency = cfg.get('STORE_CURRENCY', 'usd')
        frontend = cfg.get('FRONTEND_URL', 'http://localhost:3000').rstrip('/')

        line_items = []
        for line in lines:
            image_url = self._absolute_image_url(line.image)
            product_data = {
                'name': line.name,
                'images': [image_url] if image_url else [],
                'metadata': {'productId': line.product_id or ''},
            }
            line_items.append({
                'price_data': {
                    'currency': currency,
                    'product_data': product_data,
                    'unit_amount': _to_cents(line.unit_price),
                },
                'quantity': line.quantity,
            })

        params = {
            'mode': 'payment',
            'payment_method_types': ['card'],
            'line_items': line_items,
            'shipping_address_collection': {
                'allowed_countries': cfg.get('SHIPPING_ALLOWED_COUNTRIES', ['US']),
            },
            'shipping_options': [{
                'shipping_rate_data': {
                    'type': 'fixed_amount',
                    'fixed_amount': {
                        'amount': _to_cents(Decimal(str(cfg.get('SHIPPING_FLAT_FEE', '9.99')))),
                        'currency': currency,
                    },
                    'display_name': cfg.get('SHIPPING_RATE_DISPLAY_NAME', 'Standard Shipping'),
                    'delivery_estimate': {
                        'minimum': {'unit': 'business_day', 'value': 5},
                        'maximum': {'unit': 'business_day', 'value': 7},
                    },
                },
            }],
            'success_url': f"{frontend}/checkout?success=true&session_id={{CHECKOUT_SESSION_ID}}",
            'cancel_url': f"{frontend}/cart?canceled=true",
        }

        # Stripe rejects an empty client_reference_id, so guests get no key at all
        if owner_user_id is not None:
            params['client_reference_id'] = str(owner_user_id)
        if customer_email:
            params['customer_email'] = customer_email

        return params

    def create_session(self, lines, owner_user_id=None, customer_email=None) -> Dict[str, str]:
        """
        Create a hosted Checkout Session.

        Returns:
            Dict with session_id and redirect_url

        Raises:
            GatewayError: cart empty, request rejected or processor unreachable
        """
        self._check_key()
        if not lines:
            raise GatewayError("Checkout session could not be created: cart is empty")

        params = self.build_session_params(lines, owner_user_id, customer_email)
        logger.info(f"[CHECKOUT] Creating session for {len(lines)} line(s), owner={owner_user_id or 'guest'}")

        try:
            session = stripe.checkout.Session.create(api_key=self.api_key, **params)
        except stripe.StripeError as e:
            logger.error(f"[CHECKOUT] Stripe rejected session creation: {e.user_message or str(e)}")
            raise GatewayError("Checkout session could not be created") from e

        logger.info(f"[CHECKOUT] Session created: {session.id}")
        return {'session_id': session.id, 'redirect_url': session.url}

    def retrieve_session(self, session_id: str) -> CheckoutSession:
        """Retrieve a session regardless of its status."""
        self._check_key()
        logger.info(f"[CHECKOUT] Retrieving session: {session_id}")

        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.api_key)
        except stripe.APIConnectionError as e:
            logger.error(f"[CHECKOUT] Stripe unreachable while retrieving {session_id}: {e}")
            raise GatewayTimeoutError() from e
        except stripe.InvalidRequestError as e:
            if e.http_status == 404:
                raise NotFoundError(f"Checkout session {session_id} not found") from e
            logger.error(f"[CHECKOUT] Stripe rejected retrieval of {session_id}: {e}")
            raise GatewayError("Checkout session could not be retrieved") from e
        except stripe.StripeError as e:
            logger.error(f"[CHECKOUT] Stripe error retrieving {session_id}: {e}")
            raise GatewayError("Checkout session could not be retrieved") from e

        return normalize_session(session)

    def retrieve_completed_session(self, session_id: str) -> CheckoutSession:
        """
        Retrieve a session and require it to be paid.

        Raises:
            NotPaidError: session is not complete/paid yet
        """
        checkout_session = self.retrieve_session(session_id)
        if not checkout_session.is_complete:
            logger.info(
                f"[CHECKOUT] Session {session_id} not paid: "
                f"status={checkout_session.status}, payment_status={checkout_session.payment_status}"
            )
            raise NotPaidError()
        return checkout_session

    def list_session_line_items(self, session_id: str) -> List[SessionLineItem]:
        """List line items with product data expanded (names, images, metadata)."""
        self._check_key()
        try:
            line_items = stripe.checkout.Session.list_line_items(
                session_id,
                api_key=self.api_key,
                expand=['data.price.product'],
                limit=100,
            )
            return [normalize_line_item(item) for item in line_items.auto_paging_iter()]
        except stripe.APIConnectionError as e:
            logger.error(f"[CHECKOUT] Stripe unreachable while listing items of {session_id}: {e}")
            raise GatewayTimeoutError() from e
        except stripe.StripeError as e:
            logger.error(f"[CHECKOUT] Stripe error listing items of {session_id}: {e}")
            raise GatewayError("Checkout line items could not be retrieved") from e

    def construct_event(self, payload: bytes, signature_header: Optional[str]) -> Dict[str, Any]:
        """
        Verify a webhook payload against the Stripe-Signature header.

        Fails closed: a missing secret, header or bad signature all raise SignatureError.
        """
        if not self.webhook_secret:
            logger.error("[WEBHOOK] STRIPE_WEBHOOK_SECRET not configured, rejecting event")
            raise SignatureError("Webhook secret not configured")
        if not signature_header:
            logger.warning("[WEBHOOK] Missing Stripe-Signature header")
            raise SignatureError()

        try:
            stripe.Webhook.construct_event(payload, signature_header, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"[WEBHOOK] Invalid signature: {e}")
            raise SignatureError() from e
        except ValueError as e:
            logger.warning(f"[WEBHOOK] Invalid payload: {e}")
            raise SignatureError("Invalid webhook payload") from e

        if isinstance(payload, bytes):
            payload = payload.decode('utf-8')
        return json.loads(payload)


def init_stripe(app):
    """Configure the Stripe HTTP client with a bounded timeout and register the gateway factory."""
    stripe.default_http_client = stripe.RequestsClient(timeout=app.config.get('STRIPE_TIMEOUT_SECONDS', 10))
    stripe.max_network_retries = app.config.get('STRIPE_MAX_NETWORK_RETRIES', 2)
    app.extensions['checkout_gateway_factory'] = StripeCheckoutClient


def get_checkout_gateway() -> StripeCheckoutClient:
    """Gateway for the current app (tests swap the factory for a fake)."""
    factory = current_app.extensions.get('checkout_gateway_factory', StripeCheckoutClient)
    return factory()
