"""Checkout blueprint: card checkout via Stripe, redirect confirmation and pricing preview."""
import logging
from flask import Blueprint, request, jsonify, g
from flask_wtf.csrf import generate_csrf
from storefront.database import get_session
from storefront.exceptions import NEUTRAL_CONFIRMATION_MESSAGE, StorefrontError, ValidationError
from storefront.services.cart_service import parse_cart_lines
from storefront.services.pricing_service import quote_cart
from storefront.services.reconciliation_service import ReconciliationState, confirm_session
from storefront.services.stripe_client import get_checkout_gateway

logger = logging.getLogger(__name__)

checkout_bp = Blueprint('checkout', __name__, url_prefix='/api')


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


@checkout_bp.route('/csrf-token', methods=['GET'])
def csrf_token():
    """CSRF token for the single-page frontend (sent back as X-CSRFToken)."""
    return jsonify({'csrfToken': generate_csrf()})


@checkout_bp.route('/pricing/quote', methods=['POST'])
def pricing_quote():
    """Cart totals preview: items, shipping, promo discount and grand total."""
    data = _json_body()
    lines = parse_cart_lines(data.get('items', data.get('cartItems')))
    totals = quote_cart(lines, data.get('promoCode'))

    return jsonify({
        'itemsPrice': float(totals['items_price']),
        'shippingPrice': float(totals['shipping_price']),
        'discount': float(totals['discount']),
        'grandTotal': float(totals['grand_total']),
    })


@checkout_bp.route('/stripe/checkout', methods=['POST'])
def create_checkout_session():
    """Create a hosted checkout session for the cart and return its redirect URL."""
    data = _json_body()
    lines = parse_cart_lines(data.get('items', data.get('cartItems')))

    user = g.get('user')
    result = get_checkout_gateway().create_session(
        lines,
        owner_user_id=user.id if user else None,
        customer_email=user.email if user else None,
    )

    return jsonify({
        'sessionId': result['session_id'],
        'url': result['redirect_url'],
    }), 201


@checkout_bp.route('/stripe/confirm-order', methods=['POST'])
def confirm_order():
    """
    Confirm a checkout session after the buyer is redirected back.

    Safe to call repeatedly: every call for the same session returns the same order.
    """
    data = _json_body()
    session_id = data.get('sessionId', data.get('session_id'))
    if not isinstance(session_id, str) or not session_id.strip():
        raise ValidationError('Session ID is required', fields={'sessionId': 'is required'})

    db_session = get_session()
    try:
        outcome = confirm_session(
            db_session,
            get_checkout_gateway(),
            session_id.strip(),
            caller=g.get('user'),
        )
    except ValidationError:
        raise
    except StorefrontError as e:
        logger.warning(f"[CHECKOUT] Confirmation of {session_id} failed [{e.status_code}]: {e.message}")
        body = e.to_dict()
        body['message'] = NEUTRAL_CONFIRMATION_MESSAGE
        return jsonify(body), e.status_code

    created = outcome.state == ReconciliationState.RECONCILED
    return jsonify({
        'state': outcome.state.value,
        'alreadyExists': not created,
        'order': outcome.order.to_dict(),
    }), 201 if created else 200
