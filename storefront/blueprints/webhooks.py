"""
Webhooks Blueprint for Stripe notifications.
Handles completed checkout sessions; every other event type is acknowledged.
"""

import logging
from flask import Blueprint, request, jsonify
from storefront.database import get_session
from storefront.services.reconciliation_service import handle_webhook_event
from storefront.services.stripe_client import get_checkout_gateway

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint('webhooks', __name__, url_prefix='/api/stripe')


@webhooks_bp.route('/webhook', methods=['POST'])
def stripe_webhook():
    """
    Handle Stripe webhook notifications.

    The raw body is verified against the Stripe-Signature header before it is
    parsed. Errors map through the app's error handlers: a bad signature is a
    400 and a processor timeout a 504, so Stripe redelivers per its own policy.
    """
    payload = request.get_data()
    signature = request.headers.get('Stripe-Signature')

    result = handle_webhook_event(get_session(), get_checkout_gateway(), payload, signature)

    logger.info(f"[WEBHOOK] {result.event_type} ({result.event_id}) -> {result.status}")
    return jsonify(result.to_dict()), 200
