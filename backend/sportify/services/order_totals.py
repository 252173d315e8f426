# Overview: Pure pricing arithmetic for carts and orders (subtotal, discount, tax, total).

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Mapping, Optional

from ..models.promotions import DISCOUNT_PERCENTAGE, DISCOUNT_FIXED, DISCOUNT_FREE_SHIPPING

"""
All amounts are cents. Nothing in here rounds: subtotal, discount, tax and
total stay exact Decimals so the same inputs always produce the same outputs,
and rounding happens once, in round_cents(), when values are presented or
persisted.

The tax rate is a parameter. Callers read it from GlobalSettings each time
they compute; there is no module-level default to go stale.
"""

BPS = Decimal(10000)
ZERO = Decimal(0)
CENT = Decimal(1)


@dataclass(frozen=True)
class AppliedDiscount:
    """Snapshot of a discount as it applies to one cart or order."""
    code: str
    discount_type: str
    discount_value: int
    max_discount_cents: Optional[int] = None

    @property
    def is_free_shipping(self) -> bool:
        return self.discount_type == DISCOUNT_FREE_SHIPPING


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    discount_amount: Decimal
    tax: Decimal
    shipping_cost: Decimal
    total: Decimal

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": round_cents(self.subtotal),
            "discount_cents": round_cents(self.discount_amount),
            "tax_cents": round_cents(self.tax),
            "shipping_cents": round_cents(self.shipping_cost),
            "total_cents": round_cents(self.total),
        }


def round_cents(value: Decimal) -> int:
    """Half-up rounding to whole cents for presentation and storage."""
    return int(Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP))


def _item_values(item) -> tuple[int, int]:
    if isinstance(item, Mapping):
        return item["unit_price_cents"], item["quantity"]
    return item.unit_price_cents, item.quantity


def compute_subtotal(items: Iterable) -> Decimal:
    """Sum of unit_price_cents * quantity. Accepts mappings or objects."""
    subtotal = ZERO
    for item in items:
        price, quantity = _item_values(item)
        subtotal += Decimal(price) * Decimal(quantity)
    return subtotal


def compute_discount_amount(discount: AppliedDiscount | None, subtotal: Decimal) -> Decimal:
    if discount is None or subtotal <= 0:
        return ZERO

    if discount.discount_type == DISCOUNT_PERCENTAGE:
        amount = subtotal * Decimal(discount.discount_value) / BPS
        if discount.max_discount_cents is not None:
            amount = min(amount, Decimal(discount.max_discount_cents))
    elif discount.discount_type == DISCOUNT_FIXED:
        amount = Decimal(discount.discount_value)
    else:
        # free_shipping is applied to the shipping cost, not the goods
        return ZERO

    return min(max(amount, ZERO), subtotal)


def compute_tax(subtotal: Decimal, discount_amount: Decimal, tax_rate_bps: int) -> Decimal:
    """Tax on the discounted goods amount. Shipping is not taxed."""
    taxable = max(subtotal - discount_amount, ZERO)
    return taxable * Decimal(tax_rate_bps) / BPS


def compute_total(
    subtotal: Decimal,
    discount_amount: Decimal,
    tax: Decimal,
    shipping_cost: Decimal,
) -> Decimal:
    return subtotal - discount_amount + tax + shipping_cost


def compute_supplier_net(line_total_cents: int, commission_bps: int) -> Decimal:
    """What the supplier keeps of a sold line once the platform commission is taken."""
    return Decimal(line_total_cents) * (BPS - Decimal(commission_bps)) / BPS


def compute_order_totals(
    items: Iterable,
    discount: AppliedDiscount | None,
    tax_rate_bps: int,
    shipping_cost_cents: int,
) -> OrderTotals:
    subtotal = compute_subtotal(items)
    discount_amount = compute_discount_amount(discount, subtotal)
    tax = compute_tax(subtotal, discount_amount, tax_rate_bps)

    shipping_cost = Decimal(shipping_cost_cents)
    if discount is not None and discount.is_free_shipping:
        shipping_cost = ZERO

    return OrderTotals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        tax=tax,
        shipping_cost=shipping_cost,
        total=compute_total(subtotal, discount_amount, tax, shipping_cost),
    )
