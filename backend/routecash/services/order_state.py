# Overview: Order status state machine; pure transition rules with no database access.

"""
Order Lifecycle

================================================================================
STATE MACHINE
================================================================================

    draft -> submitted -> finalized -> billed -> load_form_ready -> assigned -> delivered
                 |            |                        |
                 |            |                        +-----------------------> delivered
                 +-> rejected / edit_requested
    draft, submitted, finalized -> cancelled

RULES:
1. Forward only. No state can be skipped except load_form_ready -> delivered
   (a salesman may deliver straight from the load form).
2. rejected, edit_requested, cancelled and delivered are terminal.
3. Money can only move (delivery payment) while the order is deliverable:
   load_form_ready or assigned.
4. Asking for the state the order is already in is a no-op, not an error.

Side conditions (items present, acknowledgement, recorded payment) are
checked by the order service, which owns the database.
================================================================================
"""

from __future__ import annotations

from enum import Enum

from ..errors import IllegalStateTransitionError, InvalidInputError


class OrderStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    FINALIZED = "finalized"
    BILLED = "billed"
    LOAD_FORM_READY = "load_form_ready"
    ASSIGNED = "assigned"
    DELIVERED = "delivered"
    REJECTED = "rejected"
    EDIT_REQUESTED = "edit_requested"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    UNPAID = "UNPAID"
    PARTIAL = "PARTIAL"
    PAID = "PAID"


TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.DRAFT: frozenset({OrderStatus.SUBMITTED, OrderStatus.CANCELLED}),
    OrderStatus.SUBMITTED: frozenset({
        OrderStatus.FINALIZED,
        OrderStatus.REJECTED,
        OrderStatus.EDIT_REQUESTED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.FINALIZED: frozenset({OrderStatus.BILLED, OrderStatus.CANCELLED}),
    OrderStatus.BILLED: frozenset({OrderStatus.LOAD_FORM_READY}),
    OrderStatus.LOAD_FORM_READY: frozenset({OrderStatus.ASSIGNED, OrderStatus.DELIVERED}),
    OrderStatus.ASSIGNED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.REJECTED: frozenset(),
    OrderStatus.EDIT_REQUESTED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

DELIVERABLE_STATUSES = frozenset({OrderStatus.LOAD_FORM_READY, OrderStatus.ASSIGNED})
TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)
KPO_DECISIONS = frozenset({OrderStatus.FINALIZED, OrderStatus.REJECTED, OrderStatus.EDIT_REQUESTED})


def parse_status(value) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(str(value).strip().lower())
    except ValueError:
        raise InvalidInputError(
            f"Unknown order status: {value}",
            {"valid": [s.value for s in OrderStatus]},
        )


def can_transition(current, target) -> bool:
    return parse_status(target) in TRANSITIONS[parse_status(current)]


def is_deliverable(status) -> bool:
    return parse_status(status) in DELIVERABLE_STATUSES


def check_transition(current, target) -> bool:
    """
    Validate current -> target.

    Returns False when target equals current (nothing to do), True when the
    move is allowed, and raises IllegalStateTransitionError otherwise.
    """
    current_status = parse_status(current)
    target_status = parse_status(target)
    if current_status == target_status:
        return False
    if target_status not in TRANSITIONS[current_status]:
        raise IllegalStateTransitionError(current_status.value, target_status.value)
    return True


def payment_status_for(paid, total) -> PaymentStatus:
    if paid <= 0:
        # A zero-value order delivered with nothing owed is settled
        return PaymentStatus.PAID if total <= 0 else PaymentStatus.UNPAID
    if paid >= total:
        return PaymentStatus.PAID
    return PaymentStatus.PARTIAL
