# Overview: Pytest coverage for order pricing and unauthorized discount detection.

"""
Order Totals Tests

Pure calculator tests; no database needed.
"""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from routecash.errors import InvalidInputError
from routecash.services.discount_policy import DiscountPolicy
from routecash.services.order_totals import aggregate_lines, calculate_line, calculate_order, price_line


def _product(pid=1, category="nimco", price="100", max_pct=None):
    return SimpleNamespace(
        id=pid,
        name=f"Product {pid}",
        category=category,
        unit_price=Decimal(price),
        max_discount_percent=Decimal(max_pct) if max_pct is not None else None,
    )


def _booker(max_pct="15", max_amount="0"):
    return SimpleNamespace(max_discount_percent=Decimal(max_pct), max_discount_amount=Decimal(max_amount))


class TestLinePricing:

    def test_line_over_category_ceiling(self):
        """10 x 100 at 20% on a 5% category with a 15% booker: 150 unauthorized."""
        line = price_line(_product(), 10, 20, DiscountPolicy(), user=_booker())

        assert line.line_total == Decimal("1000")
        assert line.discount_amount == Decimal("200")
        assert line.max_allowed_discount == Decimal("5")
        assert line.is_unauthorized is True
        assert line.unauthorized_amount == Decimal("150")
        assert line.allowed_amount == Decimal("50")
        assert line.final_amount == Decimal("800")

    def test_line_within_ceiling(self):
        line = calculate_line(4, "250", "5", Decimal("5"))
        assert line.is_unauthorized is False
        assert line.unauthorized_amount == Decimal("0")
        assert line.discount_amount == Decimal("50")
        assert line.allowed_amount == Decimal("50")

    def test_fractional_values_stay_exact(self):
        """No rounding before aggregation."""
        line = calculate_line(3, "33.33", "2.5", Decimal("5"))
        assert line.line_total == Decimal("99.99")
        assert line.discount_amount == Decimal("2.49975")
        assert line.final_amount == Decimal("97.49025")

    @pytest.mark.parametrize("quantity, percent", [
        (-1, 0),
        (1, -5),
        (1, 101),
        (1, "2.555"),
        ("1.25", 0),
        ("0.5", 0),
        ("abc", 0),
        (True, 0),
    ])
    def test_invalid_input(self, quantity, percent):
        with pytest.raises(InvalidInputError):
            calculate_line(quantity, "10", percent, Decimal("5"))

    def test_negative_price_rejected(self):
        with pytest.raises(InvalidInputError):
            calculate_line(1, "-10", 0, Decimal("5"))


class TestOrderAggregation:

    def test_grand_total_is_subtotal_minus_discount(self):
        policy = DiscountPolicy()
        items = [(_product(1), 10, 3), (_product(2, "bulk", "500"), 2, 10), (_product(3, price="12.5"), 7, 0)]
        _, totals = calculate_order(items, policy, user=_booker())

        assert totals.subtotal == Decimal("2087.5")
        assert totals.total_discount == Decimal("130")
        assert totals.grand_total == totals.subtotal - totals.total_discount
        assert totals.grand_total >= 0
        assert totals.has_unauthorized_discount is False

    def test_order_level_cap_excess(self):
        """Authorized lines summing to 1500 against a 1000 cap: 500 unauthorized."""
        policy = DiscountPolicy()
        booker = _booker(max_amount="1000")
        items = [(_product(i, "bulk", "500"), 10, 10) for i in range(1, 4)]
        lines, totals = calculate_order(items, policy, user=booker)

        assert all(not line.is_unauthorized for line in lines)
        assert totals.total_discount == Decimal("1500")
        assert totals.line_unauthorized_discount == Decimal("0")
        assert totals.order_level_excess == Decimal("500")
        assert totals.unauthorized_discount == Decimal("500")
        assert totals.has_unauthorized_discount is True

    def test_both_sources_are_summed(self):
        """A line breach and a cap breach both count."""
        policy = DiscountPolicy()
        booker = _booker(max_amount="1000")
        items = [(_product(i, "bulk", "500"), 10, 10) for i in range(1, 4)]
        items.append((_product(9, "nimco", "100"), 10, 20))
        _, totals = calculate_order(items, policy, user=booker)

        # 1700 total discount against a 1000 cap
        assert totals.line_unauthorized_discount == Decimal("150")
        assert totals.order_level_excess == Decimal("700")
        assert totals.unauthorized_discount == Decimal("850")

    def test_line_breach_also_counts_against_cap(self):
        """10 x 100 at 20% with a 100 cap: 150 over the ceiling plus 100 over the cap."""
        policy = DiscountPolicy()
        booker = _booker(max_amount="100")
        _, totals = calculate_order([(_product(1, "nimco", "100"), 10, 20)], policy, user=booker)

        assert totals.total_discount == Decimal("200")
        assert totals.line_unauthorized_discount == Decimal("150")
        assert totals.order_level_excess == Decimal("100")
        assert totals.unauthorized_discount == Decimal("250")

    def test_discount_at_cap_is_not_excess(self):
        policy = DiscountPolicy()
        booker = _booker(max_amount="1500")
        items = [(_product(i, "bulk", "500"), 10, 10) for i in range(1, 4)]
        _, totals = calculate_order(items, policy, user=booker)

        assert totals.order_level_excess == Decimal("0")
        assert totals.has_unauthorized_discount is False

    def test_zero_cap_means_no_cap(self):
        lines = [calculate_line(100, "100", "10", Decimal("10"))]
        totals = aggregate_lines(lines, Decimal("0"))
        assert totals.order_level_excess == Decimal("0")
        assert totals.unauthorized_discount == Decimal("0")

    def test_empty_order(self):
        totals = aggregate_lines([], Decimal("0"))
        assert totals.subtotal == Decimal("0")
        assert totals.grand_total == Decimal("0")
        assert totals.has_unauthorized_discount is False
