# Overview: Discount authorization policy; pure lookups of percentage ceilings.

"""
Discount Policy

Each product category has a maximum discount percentage a booker may give
without it counting as unauthorized. The effective ceiling for a line is the
strictest of:

- the category limit
- the product's own limit (when the product defines one)
- the booker's personal max_discount_percent (when pricing for a user)

Unknown categories fall back to the policy default.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping

from flask import current_app

from ..validation import parse_percent

DEFAULT_MAX_DISCOUNT_PERCENT = Decimal("5")

DEFAULT_CATEGORY_LIMITS = {
    "nimco": Decimal("5"),
    "snacks": Decimal("5"),
    "peanuts": Decimal("5"),
    "sweets": Decimal("5"),
    "bulk": Decimal("10"),
    "other": Decimal("5"),
}


@dataclass(frozen=True)
class DiscountPolicy:
    default_max_percent: Decimal = DEFAULT_MAX_DISCOUNT_PERCENT
    category_limits: Mapping[str, Decimal] = field(default_factory=lambda: dict(DEFAULT_CATEGORY_LIMITS))

    @classmethod
    def from_config(cls, config: Mapping) -> "DiscountPolicy":
        limits = config.get("DISCOUNT_CATEGORY_LIMITS") or DEFAULT_CATEGORY_LIMITS
        return cls(
            default_max_percent=parse_percent(
                config.get("DISCOUNT_DEFAULT_MAX_PERCENT", DEFAULT_MAX_DISCOUNT_PERCENT),
                "DISCOUNT_DEFAULT_MAX_PERCENT",
            ),
            category_limits={
                str(k).lower(): parse_percent(v, f"DISCOUNT_CATEGORY_LIMITS.{k}") for k, v in limits.items()
            },
        )

    def max_discount_for_category(self, category: str | None) -> Decimal:
        if not category:
            return self.default_max_percent
        return self.category_limits.get(category.lower(), self.default_max_percent)

    def effective_max_discount(self, category: str | None, product_max=None, user=None) -> Decimal:
        ceilings = [self.max_discount_for_category(category)]
        if product_max is not None:
            ceilings.append(Decimal(str(product_max)))
        if user is not None:
            ceilings.append(Decimal(str(user.max_discount_percent or 0)))
        return min(ceilings)


def get_policy() -> DiscountPolicy:
    """Policy configured on the running app."""
    return DiscountPolicy.from_config(current_app.config)
