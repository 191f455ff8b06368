# Overview: Service-layer operations for the branch cash ledger; encapsulates business logic and database work.

"""
Branch Ledger Invariants (authoritative)

- One signed LedgerEntry per business event. Entries are never updated.
- SALE_DELIVERED is unique per order: the existing entry is looked up under a
  row lock on the order before anything is inserted.
- PAYMENT is unique per (order, payment_sequence).
- RETURN is unique per stock return and is never deleted, not even by the
  duplicate cleanup batch.
- ADJUSTMENT requires a stated reason. Adjustments tied to a payment
  sequence are unique per (order, payment_sequence).
- Posting functions flush but do not commit; they run inside the caller's
  transaction so the entry and the domain change land together.
- Branch net cash = sum of net_cash over all four entry types.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from ..errors import DuplicatePostingError, InvalidInputError, NotFoundError
from ..extensions import db
from ..models import Branch, LedgerEntry, Order, StockReturn
from ..validation import require_text
from .concurrency import lock_for_update, run_with_retry
from .order_state import OrderStatus

logger = logging.getLogger(__name__)


# =============================================================================
# ENTRY TYPES (CONSTANTS)
# =============================================================================

ENTRY_SALE_DELIVERED = "SALE_DELIVERED"
ENTRY_PAYMENT = "PAYMENT"
ENTRY_RETURN = "RETURN"
ENTRY_ADJUSTMENT = "ADJUSTMENT"

ENTRY_TYPES = (ENTRY_SALE_DELIVERED, ENTRY_PAYMENT, ENTRY_RETURN, ENTRY_ADJUSTMENT)

ZERO = Decimal("0")


def _region_for(order: Order | None) -> str | None:
    if order is not None and order.branch is not None:
        return order.branch.region
    return None


def _lock_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise NotFoundError(f"Order {order_id} not found", {"order_id": order_id})
    return order


def find_sale_entry(order_id: int) -> LedgerEntry | None:
    """Earliest SALE_DELIVERED entry for an order, if any."""
    return (
        db.session.query(LedgerEntry)
        .filter_by(order_id=order_id, entry_type=ENTRY_SALE_DELIVERED)
        .order_by(LedgerEntry.created_at.asc(), LedgerEntry.id.asc())
        .first()
    )


# =============================================================================
# POSTING
# =============================================================================

def post_sale_delivered(order_id: int, actor_user_id: int | None = None) -> LedgerEntry:
    """
    Record the delivered sale for an order (+grand_total).

    Second and later calls return the existing entry and insert nothing.

    Raises:
        NotFoundError: order missing
        InvalidInputError: order is not delivered
    """
    order = _lock_order(order_id)
    if order.status != OrderStatus.DELIVERED.value:
        raise InvalidInputError(
            f"Sale can only be posted for a delivered order (status is {order.status})",
            {"order_id": order.id, "status": order.status},
        )

    existing = find_sale_entry(order.id)
    if existing:
        logger.info("Sale for order %s already posted as entry %s", order.order_number, existing.id)
        return existing

    entry = LedgerEntry(
        entry_type=ENTRY_SALE_DELIVERED,
        net_cash=order.grand_total,
        gross_amount=order.subtotal,
        discount_given=order.total_discount,
        discount_allowed=order.allowed_discount,
        unauthorized_discount=order.unauthorized_discount,
        order_id=order.id,
        order_number=order.order_number,
        shop_id=order.shop_id,
        branch_id=order.branch_id,
        region=_region_for(order),
        created_by_user_id=actor_user_id,
    )
    db.session.add(entry)
    db.session.flush()
    logger.info("Posted SALE_DELIVERED %s for order %s", order.grand_total, order.order_number)
    return entry


def post_payment(
    order_id: int,
    amount: Decimal,
    sequence_number: int,
    actor_user_id: int | None = None,
    notes: str | None = None,
) -> LedgerEntry:
    """Record cash collected against an outstanding balance (+amount)."""
    if amount is None or amount <= ZERO:
        raise InvalidInputError("Payment amount must be positive", {"amount": amount})
    order = _lock_order(order_id)

    existing = (
        db.session.query(LedgerEntry)
        .filter_by(order_id=order.id, entry_type=ENTRY_PAYMENT, payment_sequence=sequence_number)
        .first()
    )
    if existing:
        if existing.net_cash != amount:
            raise DuplicatePostingError(
                f"Payment {sequence_number} for order {order.order_number} already posted with a different amount",
                {"order_id": order.id, "sequence": sequence_number, "posted": existing.net_cash, "attempted": amount},
            )
        return existing

    entry = LedgerEntry(
        entry_type=ENTRY_PAYMENT,
        net_cash=amount,
        order_id=order.id,
        order_number=order.order_number,
        shop_id=order.shop_id,
        branch_id=order.branch_id,
        region=_region_for(order),
        payment_sequence=sequence_number,
        created_by_user_id=actor_user_id,
        notes=notes,
    )
    db.session.add(entry)
    db.session.flush()
    logger.info("Posted PAYMENT %s for order %s (sequence %s)", amount, order.order_number, sequence_number)
    return entry


def post_return(return_id: int, actor_user_id: int | None = None) -> LedgerEntry:
    """Record an approved stock return (-total_value). One entry per return."""
    stock_return = lock_for_update(db.session.query(StockReturn).filter_by(id=return_id)).first()
    if not stock_return:
        raise NotFoundError(f"Return {return_id} not found", {"return_id": return_id})

    existing = (
        db.session.query(LedgerEntry)
        .filter_by(return_id=stock_return.id, entry_type=ENTRY_RETURN)
        .first()
    )
    if existing:
        return existing

    order = db.session.get(Order, stock_return.order_id) if stock_return.order_id else None
    entry = LedgerEntry(
        entry_type=ENTRY_RETURN,
        net_cash=-stock_return.total_value,
        gross_amount=stock_return.total_value,
        order_id=stock_return.order_id,
        order_number=order.order_number if order else None,
        return_id=stock_return.id,
        return_number=stock_return.return_number,
        shop_id=stock_return.shop_id,
        branch_id=stock_return.branch_id,
        region=stock_return.shop.branch.region if stock_return.shop and stock_return.shop.branch else None,
        created_by_user_id=actor_user_id,
        notes=stock_return.notes,
    )
    db.session.add(entry)
    db.session.flush()
    logger.info("Posted RETURN %s for %s", entry.net_cash, stock_return.return_number)
    return entry


def post_adjustment(
    delta: Decimal,
    notes: str,
    *,
    order_id: int | None = None,
    shop_id: int | None = None,
    branch_id: int | None = None,
    payment_sequence: int | None = None,
    actor_user_id: int | None = None,
) -> LedgerEntry:
    """
    Record a signed cash correction (net_cash = delta).

    Either an order or a branch must be given so the entry lands in a branch's
    books. When payment_sequence is set the adjustment is idempotent on
    (order, payment_sequence).
    """
    notes = require_text(notes, "notes")
    if delta is None or delta == ZERO:
        raise InvalidInputError("Adjustment amount must be non-zero", {"delta": delta})

    order = _lock_order(order_id) if order_id is not None else None
    if order is None and branch_id is None:
        raise InvalidInputError("An adjustment needs an order or a branch")

    if order is not None and payment_sequence is not None:
        existing = (
            db.session.query(LedgerEntry)
            .filter_by(order_id=order.id, entry_type=ENTRY_ADJUSTMENT, payment_sequence=payment_sequence)
            .first()
        )
        if existing:
            if existing.net_cash != delta:
                raise DuplicatePostingError(
                    f"Adjustment {payment_sequence} for order {order.order_number} already posted with a different amount",
                    {"order_id": order.id, "sequence": payment_sequence, "posted": existing.net_cash, "attempted": delta},
                )
            return existing

    entry = LedgerEntry(
        entry_type=ENTRY_ADJUSTMENT,
        net_cash=delta,
        order_id=order.id if order else None,
        order_number=order.order_number if order else None,
        shop_id=order.shop_id if order else shop_id,
        branch_id=order.branch_id if order else branch_id,
        region=_region_for(order),
        payment_sequence=payment_sequence,
        created_by_user_id=actor_user_id,
        notes=notes,
    )
    if order is None and branch_id is not None:
        branch = db.session.get(Branch, branch_id)
        if not branch:
            raise NotFoundError(f"Branch {branch_id} not found", {"branch_id": branch_id})
        entry.region = branch.region

    db.session.add(entry)
    db.session.flush()
    logger.info("Posted ADJUSTMENT %s (order=%s branch=%s): %s", delta, entry.order_number, entry.branch_id, notes)
    return entry


def post_manual_adjustment(
    delta: Decimal,
    notes: str,
    *,
    order_id: int | None = None,
    branch_id: int | None = None,
    actor_user_id: int | None = None,
) -> LedgerEntry:
    """Office-entered correction; commits on its own."""
    def _op():
        entry = post_adjustment(
            delta,
            notes,
            order_id=order_id,
            branch_id=branch_id,
            actor_user_id=actor_user_id,
        )
        db.session.commit()
        return entry

    return run_with_retry(_op)
