# Overview: Pure order pricing; derives line and order totals plus unauthorized discount.

"""
Order Totals Calculator

WHY: Every financial number downstream (ledger sale amount, outstanding
balance, salary deductions) starts here, so this module is pure: no session,
no clock, no app context. Inputs are Decimal and nothing is rounded before
aggregation.

Two independent unauthorized-discount sources are always evaluated:

1. Per line: discount_percent above the line's effective ceiling. The part of
   the discount above the ceiling is unauthorized.
2. Per order: the booker's absolute max_discount_amount (0 = no cap). Total
   discount above the cap is unauthorized.

Both are checked and summed: unauthorized_discount = line unauthorized +
max(0, total_discount - cap).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Sequence

from ..errors import InvalidInputError
from ..validation import parse_money, parse_percent, parse_quantity
from .discount_policy import DiscountPolicy

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class PricedLine:
    product_id: int | None
    product_name: str | None
    category: str | None
    quantity: Decimal
    unit_price: Decimal
    discount_percent: Decimal
    max_allowed_discount: Decimal
    line_total: Decimal
    discount_amount: Decimal
    allowed_amount: Decimal
    final_amount: Decimal
    is_unauthorized: bool
    unauthorized_amount: Decimal


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    total_discount: Decimal
    allowed_discount: Decimal
    line_unauthorized_discount: Decimal
    order_level_excess: Decimal
    unauthorized_discount: Decimal
    grand_total: Decimal

    @property
    def has_unauthorized_discount(self) -> bool:
        return self.unauthorized_discount > ZERO


def calculate_line(
    quantity,
    unit_price,
    discount_percent,
    max_allowed_discount,
    *,
    product_id: int | None = None,
    product_name: str | None = None,
    category: str | None = None,
) -> PricedLine:
    """Price one line against an already-resolved discount ceiling."""
    quantity = parse_quantity(quantity)
    unit_price = parse_money(unit_price, "unit_price")
    if unit_price < ZERO:
        raise InvalidInputError("unit_price cannot be negative", {"product_id": product_id})
    discount_percent = parse_percent(discount_percent)
    max_allowed_discount = Decimal(str(max_allowed_discount))

    line_total = quantity * unit_price
    discount_amount = line_total * discount_percent / HUNDRED
    ceiling_amount = line_total * max_allowed_discount / HUNDRED

    is_unauthorized = discount_percent > max_allowed_discount
    unauthorized_amount = discount_amount - ceiling_amount if is_unauthorized else ZERO

    return PricedLine(
        product_id=product_id,
        product_name=product_name,
        category=category,
        quantity=quantity,
        unit_price=unit_price,
        discount_percent=discount_percent,
        max_allowed_discount=max_allowed_discount,
        line_total=line_total,
        discount_amount=discount_amount,
        allowed_amount=min(discount_amount, ceiling_amount),
        final_amount=line_total - discount_amount,
        is_unauthorized=is_unauthorized,
        unauthorized_amount=unauthorized_amount,
    )


def price_line(product, quantity, discount_percent, policy: DiscountPolicy, user=None) -> PricedLine:
    """Price one line for a catalog product, resolving its discount ceiling."""
    effective_max = policy.effective_max_discount(
        product.category,
        product_max=product.max_discount_percent,
        user=user,
    )
    return calculate_line(
        quantity,
        product.unit_price,
        discount_percent,
        effective_max,
        product_id=product.id,
        product_name=product.name,
        category=product.category,
    )


def aggregate_lines(lines: Sequence[PricedLine], max_discount_amount=ZERO) -> OrderTotals:
    cap = Decimal(str(max_discount_amount or 0))

    subtotal = sum((line.line_total for line in lines), ZERO)
    total_discount = sum((line.discount_amount for line in lines), ZERO)
    allowed_discount = sum((line.allowed_amount for line in lines), ZERO)
    line_unauthorized = sum((line.unauthorized_amount for line in lines), ZERO)

    order_level_excess = ZERO
    if cap > ZERO and total_discount > cap:
        order_level_excess = total_discount - cap

    return OrderTotals(
        subtotal=subtotal,
        total_discount=total_discount,
        allowed_discount=allowed_discount,
        line_unauthorized_discount=line_unauthorized,
        order_level_excess=order_level_excess,
        unauthorized_discount=line_unauthorized + order_level_excess,
        grand_total=subtotal - total_discount,
    )


def calculate_order(
    items: Iterable[tuple],
    policy: DiscountPolicy,
    user=None,
) -> tuple[list[PricedLine], OrderTotals]:
    """
    Price (product, quantity, discount_percent) triples for a booker.

    The booker's max_discount_amount (when a user is given) is applied as the
    order-level cap.
    """
    lines = [price_line(product, qty, pct, policy, user=user) for product, qty, pct in items]
    cap = user.max_discount_amount if user is not None else ZERO
    return lines, aggregate_lines(lines, cap)


def recalculate_frozen(order) -> OrderTotals:
    """
    Re-derive totals from an order's stored line snapshots.

    Uses the snapshotted unit price and ceiling, never the live catalog, so a
    submitted order always reproduces its frozen totals exactly.
    """
    lines = [
        calculate_line(
            item.quantity,
            item.unit_price,
            item.discount_percent,
            item.max_allowed_discount,
            product_id=item.product_id,
            product_name=item.product_name,
            category=item.category,
        )
        for item in order.items
    ]
    return aggregate_lines(lines, order.booker_max_discount_amount)
