"""Orders blueprint: cash on delivery placement, order history and admin status updates."""
from flask import Blueprint, request, jsonify, g
from storefront.database import get_session
from storefront.exceptions import NotFoundError, ValidationError
from storefront.middleware import require_login, require_admin
from storefront.services import order_service
from storefront.services.cart_service import parse_cart_lines
from storefront.services.order_status_service import OrderStatusUpdate, set_order_status
from storefront.services.reconciliation_service import place_cash_on_delivery_order

orders_bp = Blueprint('orders', __name__, url_prefix='/api/orders')

_TRUE_VALUES = ('true', '1', 'yes')
_FALSE_VALUES = ('false', '0', 'no')


def _bool_arg(name):
    """Optional boolean query parameter."""
    raw = request.args.get(name)
    if raw is None or raw == '':
        return None
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValidationError('Invalid filter', fields={name: 'must be true or false'})


@orders_bp.route('', methods=['POST'])
@require_login
def place_cod_order():
    """Place a cash on delivery order for the signed-in user."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')

    lines = parse_cart_lines(data.get('orderItems', data.get('items')))
    order = place_cash_on_delivery_order(
        get_session(),
        lines,
        data.get('shippingAddress'),
        owner=g.user,
        promo_code=data.get('promoCode'),
    )
    return jsonify(order.to_dict()), 201


@orders_bp.route('', methods=['GET'])
@require_admin
def list_orders():
    """All orders, newest first (admin). Filters: ?is_paid=&is_delivered="""
    orders = order_service.list_all(
        get_session(),
        is_paid=_bool_arg('is_paid'),
        is_delivered=_bool_arg('is_delivered'),
    )
    return jsonify([order.to_dict(include_user=True) for order in orders])


@orders_bp.route('/mine', methods=['GET'])
@require_login
def my_orders():
    orders = order_service.find_by_owner(get_session(), g.user.id)
    return jsonify([order.to_dict() for order in orders])


@orders_bp.route('/<int:order_id>', methods=['GET'])
@require_login
def get_order(order_id):
    """Single order, visible to its owner and to admins."""
    order = order_service.find_by_id(get_session(), order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    if order.user_id != g.user.id and not g.user.is_admin:
        # Same answer as a missing order so ids cannot be probed
        raise NotFoundError(f"Order {order_id} not found")
    return jsonify(order.to_dict(include_user=g.user.is_admin))


@orders_bp.route('/<int:order_id>/status', methods=['PUT'])
@require_admin
def update_order_status(order_id):
    """Set isPaid / isDelivered (admin)."""
    update = OrderStatusUpdate.from_dict(request.get_json(silent=True))
    order = set_order_status(get_session(), order_id, update)
    return jsonify(order.to_dict(include_user=True))
