"""
Unit tests for the order ledger.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from storefront.exceptions import ConflictError, ValidationError
from storefront.models import Order, OrderItem, PaymentMethod
from storefront.services import order_service


def new_order(external_id=None, user=None, is_paid=False, created_at=None, items=1):
    order = Order(
        user=user,
        payment_method=PaymentMethod.CARD if external_id else PaymentMethod.CASH_ON_DELIVERY,
        items_price=Decimal('20.00'),
        shipping_price=Decimal('9.99'),
        total_price=Decimal('29.99'),
        is_paid=is_paid,
        paid_at=datetime.now(timezone.utc) if is_paid else None,
        payment_external_id=external_id,
    )
    if created_at is not None:
        order.created_at = created_at
    for index in range(items):
        order.items.append(OrderItem(name=f'Item {index}', quantity=1, unit_price=Decimal('20.00')))
    return order


class TestInsertOrder:

    def test_insert_assigns_positions(self, session):
        order = order_service.insert_order(session, new_order(items=3))

        assert order.id is not None
        assert [item.position for item in order.items] == [0, 1, 2]

    def test_insert_without_items_rejected(self, session):
        with pytest.raises(ValidationError) as exc:
            order_service.insert_order(session, new_order(items=0))

        assert 'items' in exc.value.fields
        assert session.query(Order).count() == 0

    def test_insert_negative_total_rejected(self, session):
        order = new_order()
        order.total_price = Decimal('-5')

        with pytest.raises(ValidationError) as exc:
            order_service.insert_order(session, order)

        assert 'totalPrice' in exc.value.fields

    def test_duplicate_external_id_raises_conflict(self, session):
        first = order_service.insert_order(session, new_order('cs_same', is_paid=True))
        first_id = first.id

        with pytest.raises(ConflictError) as exc:
            order_service.insert_order(session, new_order('cs_same', is_paid=True))

        assert exc.value.external_id == 'cs_same'
        assert session.query(Order).count() == 1
        assert order_service.find_by_external_id(session, 'cs_same').id == first_id


class TestFinders:

    def test_find_by_external_id(self, session):
        order_service.insert_order(session, new_order('cs_find', is_paid=True))

        assert order_service.find_by_external_id(session, 'cs_find') is not None
        assert order_service.find_by_external_id(session, 'cs_other') is None
        assert order_service.find_by_external_id(session, None) is None

    def test_find_by_id(self, session):
        order = order_service.insert_order(session, new_order())

        assert order_service.find_by_id(session, order.id) is order
        assert order_service.find_by_id(session, str(order.id)) is order
        assert order_service.find_by_id(session, 'abc') is None
        assert order_service.find_by_id(session, 999999) is None

    def test_find_by_owner_newest_first(self, session, customer, other_customer):
        now = datetime.now(timezone.utc)
        older = order_service.insert_order(session, new_order(user=customer, created_at=now - timedelta(days=2)))
        newer = order_service.insert_order(session, new_order(user=customer, created_at=now))
        order_service.insert_order(session, new_order(user=other_customer))

        orders = order_service.find_by_owner(session, customer.id)

        assert [o.id for o in orders] == [newer.id, older.id]

    def test_list_all_filters(self, session):
        paid = order_service.insert_order(session, new_order('cs_paid', is_paid=True))
        unpaid = order_service.insert_order(session, new_order())

        assert {o.id for o in order_service.list_all(session)} == {paid.id, unpaid.id}
        assert [o.id for o in order_service.list_all(session, is_paid=True)] == [paid.id]
        assert [o.id for o in order_service.list_all(session, is_paid=False)] == [unpaid.id]
        assert order_service.list_all(session, is_delivered=True) == []
