"""Cart line parsing.

The cart lives on the client; it only reaches the server as the JSON body of a
checkout request, so every line is validated here before pricing or checkout.
"""
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from storefront.exceptions import ValidationError


@dataclass(frozen=True)
class CartLine:
    """One cart line as sent by the storefront."""
    product_id: Optional[str]
    name: str
    unit_price: Decimal
    quantity: int
    variant: Dict[str, str] = field(default_factory=dict)
    image: str = ''

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


def _parse_price(raw: Any) -> Optional[Decimal]:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite():
        return None
    return value


def _parse_quantity(raw: Any) -> Optional[int]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and raw.strip().isdigit():
        return int(raw.strip())
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    return None


def parse_cart_line(data: Dict[str, Any], index: int = 0) -> CartLine:
    """Build a CartLine from a JSON object, raising ValidationError on bad input."""
    if not isinstance(data, dict):
        raise ValidationError('Invalid cart item', fields={f'items[{index}]': 'must be an object'})

    errors = {}

    name = (data.get('name') or '').strip() if isinstance(data.get('name'), str) else ''
    if not name:
        errors[f'items[{index}].name'] = 'is required'

    unit_price = _parse_price(data.get('price', data.get('unitPrice')))
    if unit_price is None:
        errors[f'items[{index}].price'] = 'must be a number'
    elif unit_price < 0:
        errors[f'items[{index}].price'] = 'must be >= 0'

    quantity = _parse_quantity(data.get('quantity', data.get('qty')))
    if quantity is None:
        errors[f'items[{index}].quantity'] = 'must be an integer'
    elif quantity < 1:
        errors[f'items[{index}].quantity'] = 'must be >= 1'

    if errors:
        raise ValidationError('Invalid cart item', fields=errors)

    raw_variant = data.get('variant') or {}
    variant = {
        key: str(raw_variant[key])
        for key in ('color', 'size')
        if isinstance(raw_variant, dict) and raw_variant.get(key)
    }

    product_id = data.get('productId', data.get('product'))
    image = data.get('image') or ''

    return CartLine(
        product_id=str(product_id).strip() if product_id is not None else None,
        name=name,
        unit_price=unit_price,
        quantity=quantity,
        variant=variant,
        image=image if isinstance(image, str) else '',
    )


def parse_cart_lines(items: Any) -> List[CartLine]:
    """Parse the `items` array of a checkout request."""
    if not isinstance(items, list) or not items:
        raise ValidationError('No items in cart', fields={'items': 'must be a non-empty list'})
    return [parse_cart_line(item, index) for index, item in enumerate(items)]
