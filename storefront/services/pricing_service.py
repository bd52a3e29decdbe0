"""Pricing calculator for cart previews and cash on delivery orders."""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, Optional

from flask import current_app

from storefront.services.cart_service import CartLine

CENTS = Decimal('0.01')


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class ShippingPolicy:
    free_threshold: Decimal
    flat_fee: Decimal


@dataclass(frozen=True)
class DiscountPolicy:
    code: str
    rate: Decimal

    def applies_to(self, promo_code: Optional[str]) -> bool:
        if not promo_code or not self.code:
            return False
        return promo_code.strip().upper() == self.code.strip().upper()


def shipping_policy_from_config(config=None) -> ShippingPolicy:
    config = config if config is not None else current_app.config
    return ShippingPolicy(
        free_threshold=Decimal(str(config.get('FREE_SHIPPING_THRESHOLD', '100.00'))),
        flat_fee=Decimal(str(config.get('SHIPPING_FLAT_FEE', '9.99'))),
    )


def discount_policy_from_config(config=None) -> DiscountPolicy:
    config = config if config is not None else current_app.config
    return DiscountPolicy(
        code=config.get('PROMO_CODE', 'SAVE10') or '',
        rate=Decimal(str(config.get('PROMO_RATE', '0.10'))),
    )


def compute_totals(
    lines: Iterable[CartLine],
    shipping_policy: ShippingPolicy,
    discount_policy: DiscountPolicy,
    promo_code: Optional[str] = None
) -> Dict[str, Decimal]:
    """
    Compute cart totals.

    Unknown promo codes are ignored silently. Shipping is free once the items
    price reaches the threshold.

    Returns:
        dict with items_price, shipping_price, discount and grand_total,
        each rounded to 2 decimals.
    """
    items_price = _money(sum((line.line_total for line in lines), Decimal('0')))

    if items_price >= shipping_policy.free_threshold:
        shipping_price = Decimal('0')
    else:
        shipping_price = shipping_policy.flat_fee

    discount = Decimal('0.00')
    if discount_policy.applies_to(promo_code):
        discount = _money(items_price * discount_policy.rate)
    shipping_price = _money(shipping_price)

    # Sum of the rounded parts
    grand_total = items_price - discount + shipping_price

    return {
        'items_price': items_price,
        'shipping_price': shipping_price,
        'discount': discount,
        'grand_total': grand_total,
    }


def quote_cart(lines: Iterable[CartLine], promo_code: Optional[str] = None) -> Dict[str, Any]:
    """compute_totals with the configured policies."""
    return compute_totals(
        list(lines),
        shipping_policy_from_config(),
        discount_policy_from_config(),
        promo_code,
    )
