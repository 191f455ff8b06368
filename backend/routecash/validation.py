from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from .errors import InvalidInputError


# Prices and discount percentages are entered to the cent / hundredth of a
# percent. Keeping inputs at two places keeps every derived amount exact at
# the six places the money columns store.
MAX_INPUT_PLACES = 2

# Upper bound for any single monetary input (99,999,999,999.99)
MAX_MONEY = Decimal("99999999999.99")

ZERO = Decimal("0")


def to_decimal(value: Any, field: str) -> Decimal:
    """
    Strictly coerce a client value into a Decimal.

    Floats are converted through str() so 0.1 stays 0.1. Booleans, NaN and
    infinities are rejected.
    """
    if value is None:
        raise InvalidInputError(f"{field} is required", {"field": field})
    if isinstance(value, bool):
        raise InvalidInputError(f"{field} must be a number", {"field": field})
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise InvalidInputError(f"{field} is required", {"field": field})
        try:
            result = Decimal(stripped)
        except InvalidOperation:
            raise InvalidInputError(f"{field} must be a number", {"field": field})
    else:
        raise InvalidInputError(f"{field} must be a number", {"field": field})

    if not result.is_finite():
        raise InvalidInputError(f"{field} must be a finite number", {"field": field})
    return result


def try_decimal(value: Any) -> Decimal | None:
    """Lenient variant used where a missing/garbled value has a fallback."""
    try:
        return to_decimal(value, "value")
    except InvalidInputError:
        return None


def require_places(value: Decimal, field: str, places: int = MAX_INPUT_PLACES) -> Decimal:
    exponent = value.normalize().as_tuple().exponent
    if isinstance(exponent, int) and exponent < -places:
        raise InvalidInputError(
            f"{field} allows at most {places} decimal places",
            {"field": field, "value": str(value)},
        )
    return value


def parse_money(value: Any, field: str) -> Decimal:
    amount = require_places(to_decimal(value, field), field)
    if amount > MAX_MONEY:
        raise InvalidInputError(f"{field} is too large", {"field": field})
    return amount


def parse_percent(value: Any, field: str = "discount_percent") -> Decimal:
    percent = require_places(to_decimal(value, field), field)
    if percent < ZERO:
        raise InvalidInputError(f"{field} cannot be negative", {"field": field, "value": str(percent)})
    if percent > Decimal("100"):
        raise InvalidInputError(f"{field} cannot exceed 100", {"field": field, "value": str(percent)})
    return percent


def parse_quantity(value: Any, field: str = "quantity") -> Decimal:
    """Whole units only."""
    quantity = to_decimal(value, field)
    if quantity != quantity.to_integral_value():
        raise InvalidInputError(f"{field} must be a whole number", {"field": field, "value": str(quantity)})
    if quantity < ZERO:
        raise InvalidInputError(f"{field} cannot be negative", {"field": field, "value": str(quantity)})
    return quantity


def require_text(value: Any, field: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidInputError(f"{field} is required", {"field": field})
    return str(value).strip()


def parse_int(value: Any, field: str) -> int:
    # Same strictness as the model coercion: no floats, no "12.5", no "1e3"
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lstrip("-").isdigit():
            return int(stripped)
    raise InvalidInputError(f"{field} must be an integer", {"field": field})


MONEY_QUANTUM = Decimal("0.000001")


def as_money(value: Any) -> Decimal:
    """Normalize a database aggregate (SQLite returns floats for SUM) to a Decimal."""
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(MONEY_QUANTUM)
