"""
Unit tests for the Stripe Checkout client.
"""

import json
from decimal import Decimal

import pytest
import stripe

from storefront.exceptions import (
    GatewayError, GatewayTimeoutError, NotFoundError, NotPaidError, SignatureError
)
from storefront.services.cart_service import CartLine
from storefront.services.stripe_client import (
    StripeCheckoutClient, get_checkout_gateway, normalize_line_item, normalize_session
)


def cart_lines():
    return [
        CartLine(product_id='7', name='Shadow Hoodie', unit_price=Decimal('19.99'), quantity=2,
                 image='images/hoodie.png'),
        CartLine(product_id=None, name='Rune Mug', unit_price=Decimal('5.005'), quantity=1,
                 image='https://cdn.example.com/mug.png'),
    ]


class TestSessionParams:
    """Checkout Session create parameters."""

    def test_line_items(self):
        params = StripeCheckoutClient().build_session_params(cart_lines())
        hoodie, mug = params['line_items']

        assert hoodie['quantity'] == 2
        assert hoodie['price_data']['currency'] == 'usd'
        assert hoodie['price_data']['unit_amount'] == 1999
        assert hoodie['price_data']['product_data']['name'] == 'Shadow Hoodie'
        assert hoodie['price_data']['product_data']['metadata'] == {'productId': '7'}
        assert hoodie['price_data']['product_data']['images'] == ['http://localhost:5000/images/hoodie.png']
        # Half-cent rounds up
        assert mug['price_data']['unit_amount'] == 501
        assert mug['price_data']['product_data']['metadata'] == {'productId': ''}
        assert mug['price_data']['product_data']['images'] == ['https://cdn.example.com/mug.png']

    def test_session_settings(self):
        params = StripeCheckoutClient().build_session_params(cart_lines())

        assert params['mode'] == 'payment'
        assert params['payment_method_types'] == ['card']
        assert params['shipping_address_collection'] == {'allowed_countries': ['US', 'CA', 'GB']}
        rate = params['shipping_options'][0]['shipping_rate_data']
        assert rate['fixed_amount'] == {'amount': 999, 'currency': 'usd'}
        assert rate['display_name'] == 'Standard Shipping'
        assert params['success_url'] == (
            'http://localhost:3000/checkout?success=true&session_id={CHECKOUT_SESSION_ID}'
        )
        assert params['cancel_url'] == 'http://localhost:3000/cart?canceled=true'

    def test_guest_has_no_client_reference(self):
        params = StripeCheckoutClient().build_session_params(cart_lines())

        assert 'client_reference_id' not in params
        assert 'customer_email' not in params

    def test_owner_reference(self):
        params = StripeCheckoutClient().build_session_params(
            cart_lines(), owner_user_id=42, customer_email='jane@test.com'
        )

        assert params['client_reference_id'] == '42'
        assert params['customer_email'] == 'jane@test.com'


class TestCreateSession:

    def test_create_session(self, stripe_api):
        result = StripeCheckoutClient().create_session(cart_lines(), owner_user_id=5)

        assert result['session_id'].startswith('cs_test_')
        assert result['redirect_url'].endswith(result['session_id'])
        assert stripe_api.created[0]['client_reference_id'] == '5'

    def test_empty_cart(self, stripe_api):
        with pytest.raises(GatewayError):
            StripeCheckoutClient().create_session([])

        assert stripe_api.created == []

    def test_processor_rejects(self, stripe_api):
        stripe_api.errors['create'] = stripe.InvalidRequestError('Invalid currency', 'currency')

        with pytest.raises(GatewayError) as exc:
            StripeCheckoutClient().create_session(cart_lines())

        assert exc.value.status_code == 502

    def test_processor_unreachable(self, stripe_api):
        stripe_api.errors['create'] = stripe.APIConnectionError('Connection refused')

        with pytest.raises(GatewayError) as exc:
            StripeCheckoutClient().create_session(cart_lines())

        assert exc.value.status_code == 502

    def test_missing_api_key(self, stripe_api):
        client = StripeCheckoutClient()
        client.api_key = None

        with pytest.raises(GatewayError):
            client.create_session(cart_lines())

        assert stripe_api.created == []


class TestRetrieveSession:

    def test_completed_session(self, stripe_api):
        stripe_api.add_session(session_id='cs_paid', client_reference_id='9')

        checkout_session = StripeCheckoutClient().retrieve_completed_session('cs_paid')

        assert checkout_session.session_id == 'cs_paid'
        assert checkout_session.amount_subtotal == Decimal('45.00')
        assert checkout_session.amount_shipping == Decimal('9.99')
        assert checkout_session.amount_total == Decimal('54.99')
        assert checkout_session.client_reference == '9'
        assert checkout_session.payer_email == 'buyer@example.com'

    @pytest.mark.parametrize('status, payment_status', [
        ('open', 'unpaid'),
        ('complete', 'unpaid'),
        ('expired', 'unpaid'),
    ])
    def test_unpaid_session(self, stripe_api, status, payment_status):
        stripe_api.add_session(session_id='cs_unpaid', status=status, payment_status=payment_status)

        with pytest.raises(NotPaidError):
            StripeCheckoutClient().retrieve_completed_session('cs_unpaid')

    def test_no_payment_required_counts_as_paid(self, stripe_api):
        stripe_api.add_session(session_id='cs_free', payment_status='no_payment_required')

        assert StripeCheckoutClient().retrieve_completed_session('cs_free').is_complete

    def test_unknown_session(self, stripe_api):
        with pytest.raises(NotFoundError):
            StripeCheckoutClient().retrieve_completed_session('cs_missing')

    def test_timeout_is_pending(self, stripe_api):
        stripe_api.errors['retrieve'] = stripe.APIConnectionError('Request timed out')

        with pytest.raises(GatewayTimeoutError) as exc:
            StripeCheckoutClient().retrieve_completed_session('cs_any')

        assert exc.value.status_code == 504
        assert exc.value.to_dict()['state'] == 'pending'

    def test_other_stripe_error(self, stripe_api):
        stripe_api.errors['retrieve'] = stripe.AuthenticationError('Invalid API key')

        with pytest.raises(GatewayError) as exc:
            StripeCheckoutClient().retrieve_completed_session('cs_any')

        assert not isinstance(exc.value, GatewayTimeoutError)

    def test_line_items_expand_product(self, stripe_api):
        stripe_api.add_session(session_id='cs_items', line_items=[
            stripe_api.make_line_item('Shadow Hoodie', 2000, 2, product_id='7'),
        ])

        items = StripeCheckoutClient().list_session_line_items('cs_items')

        assert stripe_api.list_calls[0][1]['expand'] == ['data.price.product']
        assert items[0].name == 'Shadow Hoodie'
        assert items[0].unit_amount == Decimal('20.00')
        assert items[0].quantity == 2
        assert items[0].product_ref == '7'
        assert items[0].image == 'https://cdn.example.com/item.png'

    def test_line_items_timeout(self, stripe_api):
        stripe_api.errors['list_line_items'] = stripe.APIConnectionError('Request timed out')

        with pytest.raises(GatewayTimeoutError):
            StripeCheckoutClient().list_session_line_items('cs_items')


class TestNormalize:

    def test_shipping_address_preferred(self):
        data = {
            'id': 'cs_1',
            'shipping_details': {'address': {'line1': 'Ship St', 'city': 'A'}},
            'customer_details': {'address': {'line1': 'Bill St', 'city': 'B'}, 'email': 'a@b.com'},
        }
        assert normalize_session(data).shipping_address['line1'] == 'Ship St'

    def test_collected_information_address(self):
        data = {
            'id': 'cs_1',
            'collected_information': {'shipping_details': {'address': {'line1': 'New St'}}},
        }
        assert normalize_session(data).shipping_address == {'line1': 'New St'}

    def test_billing_address_fallback(self):
        data = {'id': 'cs_1', 'customer_details': {'address': {'line1': 'Bill St'}}}

        assert normalize_session(data).shipping_address == {'line1': 'Bill St'}

    def test_no_address(self):
        assert normalize_session({'id': 'cs_1'}).shipping_address is None

    def test_payer_email_fallback(self):
        data = {'id': 'cs_1', 'customer_details': {}, 'customer_email': 'fallback@test.com'}

        assert normalize_session(data).payer_email == 'fallback@test.com'

    def test_shipping_cost_fallback(self):
        data = {'id': 'cs_1', 'shipping_cost': {'amount_total': 999}}

        assert normalize_session(data).amount_shipping == Decimal('9.99')

    def test_unexpanded_product(self):
        item = normalize_line_item({
            'description': 'Rune Mug',
            'quantity': 1,
            'price': {'unit_amount': 500, 'product': 'prod_123'},
        })

        assert item.name == 'Rune Mug'
        assert item.product_ref is None
        assert item.image == ''


class TestConstructEvent:

    def test_valid_signature(self, sign_webhook):
        payload = json.dumps({'id': 'evt_1', 'type': 'checkout.session.completed', 'data': {'object': {}}})

        event = StripeCheckoutClient().construct_event(payload.encode(), sign_webhook(payload))

        assert event['id'] == 'evt_1'

    def test_wrong_secret(self, sign_webhook):
        payload = json.dumps({'id': 'evt_1'})

        with pytest.raises(SignatureError):
            StripeCheckoutClient().construct_event(payload.encode(), sign_webhook(payload, secret='whsec_other'))

    def test_tampered_payload(self, sign_webhook):
        payload = json.dumps({'id': 'evt_1', 'amount': 100})
        header = sign_webhook(payload)
        tampered = payload.replace('100', '1')

        with pytest.raises(SignatureError):
            StripeCheckoutClient().construct_event(tampered.encode(), header)

    def test_stale_timestamp(self, sign_webhook):
        payload = json.dumps({'id': 'evt_1'})

        with pytest.raises(SignatureError):
            StripeCheckoutClient().construct_event(payload.encode(), sign_webhook(payload, timestamp=1000))

    @pytest.mark.parametrize('header', [None, '', 'garbage'])
    def test_missing_or_malformed_header(self, header):
        with pytest.raises(SignatureError):
            StripeCheckoutClient().construct_event(b'{"id": "evt_1"}', header)

    def test_missing_secret_fails_closed(self, sign_webhook):
        payload = json.dumps({'id': 'evt_1'})
        client = StripeCheckoutClient()
        client.webhook_secret = None

        with pytest.raises(SignatureError):
            client.construct_event(payload.encode(), sign_webhook(payload))


class TestGatewayFactory:

    def test_default_gateway(self):
        assert isinstance(get_checkout_gateway(), StripeCheckoutClient)

    def test_http_client_timeout(self, app):
        assert isinstance(stripe.default_http_client, stripe.RequestsClient)
        assert stripe.max_network_retries == app.config['STRIPE_MAX_NETWORK_RETRIES']
