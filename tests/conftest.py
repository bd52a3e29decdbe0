import hashlib
import hmac
import json
import time
import uuid
from decimal import Decimal
from types import SimpleNamespace

import pytest
import stripe

from config import TestingConfig
from storefront import create_app
from storefront.database import Base, create_tables, get_session
from storefront.models import AppUser, Product


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application instance for testing (file SQLite unless TEST_DATABASE_URL is set)."""
    db_path = tmp_path_factory.mktemp('db') / 'storefront-test.db'

    class _TestConfig(TestingConfig):
        SQLALCHEMY_DATABASE_URI = TestingConfig.SQLALCHEMY_DATABASE_URI
        if SQLALCHEMY_DATABASE_URI.startswith('sqlite'):
            SQLALCHEMY_DATABASE_URI = f'sqlite:///{db_path}'

    app = create_app(_TestConfig)
    with app.app_context():
        create_tables()
    return app


@pytest.fixture(autouse=True)
def app_context(app):
    """Every test runs inside an app context; tables are emptied afterwards."""
    ctx = app.app_context()
    ctx.push()
    yield
    session = get_session()
    session.rollback()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    session.remove()
    ctx.pop()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session():
    """Database session shared with the request handlers."""
    return get_session()


def _make_user(session, email_prefix, full_name, is_admin=False):
    suffix = str(uuid.uuid4())[:8]
    user = AppUser(
        email=f'{email_prefix}-{suffix}@test.com',
        full_name=full_name,
        active=True,
        is_admin=is_admin
    )
    user.set_password('password123')
    session.add(user)
    session.commit()
    return user


@pytest.fixture(scope='function')
def customer(session):
    """Signed-up storefront customer."""
    return _make_user(session, 'customer', 'Jane Buyer')


@pytest.fixture(scope='function')
def other_customer(session):
    return _make_user(session, 'other', 'Other Buyer')


@pytest.fixture(scope='function')
def admin(session):
    """Back-office admin."""
    return _make_user(session, 'admin', 'Store Admin', is_admin=True)


@pytest.fixture(scope='function')
def products(session):
    """Three catalog products."""
    items = [
        Product(name='Shadow Hoodie', brand='Arcane', price=Decimal('20.00'), category='Apparel',
                stock=10, image_path='images/hoodie.png'),
        Product(name='Rune Mug', brand='Arcane', price=Decimal('5.00'), category='Home',
                stock=25, image_path='images/mug.png'),
        Product(name='Spell Book', brand='Arcane', price=Decimal('50.00'), category='Books',
                stock=5, image_path='https://cdn.example.com/book.png'),
    ]
    session.add_all(items)
    session.commit()
    return items


@pytest.fixture(scope='function')
def login(client):
    """Put a user id into the session cookie, as the sign-in flow would."""
    def _login(user_id):
        with client.session_transaction() as sess:
            sess['user_id'] = user_id
    return _login


class FakeStripeAPI:
    """In-memory stand-in for the Stripe Checkout endpoints the client calls."""

    def __init__(self):
        self.sessions = {}
        self.line_items = {}
        self.created = []
        self.retrieve_calls = []
        self.list_calls = []
        self.errors = {}

    @staticmethod
    def make_session(session_id='cs_test_123', status='complete', payment_status='paid',
                     amount_subtotal=4500, amount_shipping=999, amount_total=None,
                     client_reference_id=None, email='buyer@example.com', address='default',
                     billing_address=None):
        if address == 'default':
            address = {
                'line1': '12 Elm Street',
                'line2': 'Apt 4',
                'city': 'Springfield',
                'postal_code': '62701',
                'country': 'US',
                'state': 'IL',
            }
        if amount_total is None:
            amount_total = amount_subtotal + amount_shipping
        return {
            'id': session_id,
            'object': 'checkout.session',
            'status': status,
            'payment_status': payment_status,
            'amount_subtotal': amount_subtotal,
            'amount_total': amount_total,
            'total_details': {'amount_shipping': amount_shipping, 'amount_discount': 0, 'amount_tax': 0},
            'client_reference_id': client_reference_id,
            'customer_email': None,
            'customer_details': {'email': email, 'address': billing_address},
            'shipping_details': {'name': 'Jane Buyer', 'address': address} if address else None,
        }

    @staticmethod
    def make_line_item(name, unit_amount, quantity, product_id=None, image='https://cdn.example.com/item.png'):
        metadata = {'productId': product_id} if product_id is not None else {}
        return {
            'id': f'li_{uuid.uuid4().hex[:12]}',
            'object': 'item',
            'description': name,
            'quantity': quantity,
            'price': {
                'unit_amount': unit_amount,
                'product': {
                    'name': name,
                    'images': [image] if image else [],
                    'metadata': metadata,
                },
            },
        }

    def add_session(self, line_items=None, **kwargs):
        data = self.make_session(**kwargs)
        self.sessions[data['id']] = data
        self.line_items[data['id']] = line_items or [self.make_line_item('Shadow Hoodie', 2000, 2)]
        return data

    def _raise_if_configured(self, method):
        error = self.errors.get(method)
        if error is not None:
            raise error

    # Replacements for the stripe SDK calls

    def create(self, api_key=None, **params):
        self._raise_if_configured('create')
        self.created.append(params)
        session_id = f'cs_test_{uuid.uuid4().hex[:16]}'
        return SimpleNamespace(id=session_id, url=f'https://checkout.stripe.com/c/pay/{session_id}')

    def retrieve(self, session_id, api_key=None, **kwargs):
        self.retrieve_calls.append(session_id)
        self._raise_if_configured('retrieve')
        if session_id not in self.sessions:
            raise stripe.InvalidRequestError(
                f"No such checkout.session: '{session_id}'", 'id',
                code='resource_missing', http_status=404
            )
        return self.sessions[session_id]

    def list_line_items(self, session_id, api_key=None, **params):
        self.list_calls.append((session_id, params))
        self._raise_if_configured('list_line_items')
        items = self.line_items.get(session_id, [])
        return SimpleNamespace(data=items, auto_paging_iter=lambda: iter(items))


@pytest.fixture(scope='function')
def stripe_api(monkeypatch):
    """Route stripe.checkout.Session calls to an in-memory fake."""
    fake = FakeStripeAPI()
    monkeypatch.setattr(stripe.checkout.Session, 'create', fake.create)
    monkeypatch.setattr(stripe.checkout.Session, 'retrieve', fake.retrieve)
    monkeypatch.setattr(stripe.checkout.Session, 'list_line_items', fake.list_line_items)
    return fake


@pytest.fixture(scope='function')
def sign_webhook(app):
    """Build a Stripe-Signature header for a payload with the test webhook secret."""
    def _sign(payload, secret=None, timestamp=None):
        secret = secret or app.config['STRIPE_WEBHOOK_SECRET']
        timestamp = timestamp or int(time.time())
        if isinstance(payload, bytes):
            payload = payload.decode('utf-8')
        signed = f'{timestamp}.{payload}'.encode('utf-8')
        signature = hmac.new(secret.encode('utf-8'), signed, hashlib.sha256).hexdigest()
        return f't={timestamp},v1={signature}'
    return _sign


@pytest.fixture(scope='function')
def webhook_event():
    """Build a Stripe event envelope around a checkout session."""
    def _event(session_data, event_type='checkout.session.completed', event_id=None):
        return json.dumps({
            'id': event_id or f'evt_{uuid.uuid4().hex[:16]}',
            'object': 'event',
            'type': event_type,
            'data': {'object': session_data},
        })
    return _event
