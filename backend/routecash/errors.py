# Overview: Domain error taxonomy shared by services, routes and the CLI.

"""
RouteCash error types.

Every service raises one of these instead of a bare ValueError so the HTTP
layer can map it to a status code without guessing. `details` carries the
machine-readable context (amounts, states) a client needs to recover.

Confirmation errors are not failures: they tell the caller that the same
request will succeed once it is repeated with an explicit acknowledgement.
"""

from __future__ import annotations

from decimal import Decimal


def _jsonable(value):
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    return value


class RouteCashError(Exception):
    """Base exception for all domain errors."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "details": {k: _jsonable(v) for k, v in self.details.items()},
        }


class InvalidInputError(RouteCashError):
    """Malformed or out-of-domain input (negative quantity, blank notes...)."""


class NotFoundError(RouteCashError):
    status_code = 404


class IllegalStateTransitionError(RouteCashError):
    """Order status change not allowed from the current state."""

    status_code = 409

    def __init__(self, current: str, attempted: str, message: str | None = None):
        super().__init__(
            message or f"Cannot move order from {current} to {attempted}",
            {"current": current, "attempted": attempted},
        )
        self.current = current
        self.attempted = attempted


class AmountOutOfRangeError(RouteCashError):
    """Payment amount outside the permitted [minimum, maximum] window."""

    status_code = 422

    def __init__(self, amount, minimum, maximum, message: str | None = None):
        super().__init__(
            message or f"Amount {amount} must be between {minimum} and {maximum}",
            {"amount": amount, "minimum": minimum, "maximum": maximum},
        )
        self.amount = amount
        self.minimum = minimum
        self.maximum = maximum


class DuplicatePostingError(RouteCashError):
    """An idempotency key was replayed with a different payload."""

    status_code = 409


class ConfirmationRequiredError(RouteCashError):
    status_code = 409

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["requires_confirmation"] = True
        return payload


class UnauthorizedDiscountNotAcknowledgedError(ConfirmationRequiredError):
    def __init__(self, unauthorized_amount: Decimal):
        super().__init__(
            f"Order carries an unauthorized discount of {unauthorized_amount}. "
            "This amount will be deducted from the booker's salary. "
            "Resubmit with acknowledgement to continue.",
            {"unauthorized_amount": unauthorized_amount},
        )
        self.unauthorized_amount = unauthorized_amount


class DefaultAmountNotConfirmedError(ConfirmationRequiredError):
    def __init__(self, proposed_amount: Decimal):
        super().__init__(
            f"No payment amount given; confirm collection of the full {proposed_amount}",
            {"proposed_amount": proposed_amount},
        )
        self.proposed_amount = proposed_amount
