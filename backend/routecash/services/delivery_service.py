# Overview: Service-layer operations for delivery payments; encapsulates business logic and database work.

"""
Delivery Payment Reconciliation

WHY: Salesmen often collect only part of an order's value at the door. This
module turns each collection into a payment history row, keeps the delivery
balance equation intact, opens/clears the shop's outstanding balance, and
posts the matching ledger entries in the same transaction.

DESIGN PRINCIPLES:
- Invariant after every mutation: paid_amount + remaining_balance == total_amount
- paid_amount is always the signed sum of the payment history
- Every mutation is keyed by (delivery_id, sequence). Replaying a key with
  the same payload returns the stored result; a different payload is a
  DuplicatePostingError.
- No amount at delivery means "collect everything", but only after the
  caller confirms it (DefaultAmountNotConfirmedError carries the proposal).
- Adjustments only move money down. Collecting more goes through
  collect_outstanding_payment.

LEDGER EFFECTS:
- delivery:    SALE_DELIVERED +grand_total, plus ADJUSTMENT -remaining when
               the salesman did not collect everything
- collection:  PAYMENT +amount
- adjustment:  ADJUSTMENT -(old_paid - new_paid)
Net cash for the order therefore always equals cash actually in hand.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import func

from ..errors import (
    AmountOutOfRangeError,
    DefaultAmountNotConfirmedError,
    DuplicatePostingError,
    IllegalStateTransitionError,
    InvalidInputError,
    NotFoundError,
)
from ..extensions import db
from ..models import Delivery, DeliveryPayment, Order, OutstandingPayment
from ..models.organization import money_str
from ..time_utils import utcnow
from ..validation import require_places, require_text, try_decimal
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import post_adjustment, post_payment, post_sale_delivered
from .order_state import OrderStatus, PaymentStatus, check_transition, payment_status_for

logger = logging.getLogger(__name__)


# =============================================================================
# PAYMENT KINDS (CONSTANTS)
# =============================================================================

KIND_DELIVERY = "DELIVERY"
KIND_COLLECTION = "COLLECTION"
KIND_ADJUSTMENT = "ADJUSTMENT"

CREDIT_PARTIAL = "PARTIAL"
CREDIT_FULL = "FULL_CREDIT"

UNCOLLECTED_NOTE = "Uncollected at delivery; balance moved to outstanding"

ZERO = Decimal("0")


@dataclass
class PaymentOutcome:
    delivery: Delivery
    payment: DeliveryPayment
    replayed: bool = False
    defaulted: bool = False
    ledger_entry_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "delivery": self.delivery.to_dict(),
            "payment": self.payment.to_dict(),
            "replayed": self.replayed,
            "defaulted": self.defaulted,
            "ledger_entry_ids": self.ledger_entry_ids,
        }


# =============================================================================
# DELIVERY RECORDS
# =============================================================================

def ensure_delivery(order: Order, salesman_id: int | None = None) -> Delivery:
    """
    Create the delivery for an order becoming deliverable (idempotent).

    Flushes only; the caller owns the transaction.
    """
    delivery = db.session.query(Delivery).filter_by(order_id=order.id).first()
    if delivery:
        if salesman_id is not None:
            delivery.salesman_id = salesman_id
        return delivery

    delivery = Delivery(
        order_id=order.id,
        salesman_id=salesman_id,
        total_amount=order.grand_total,
        paid_amount=ZERO,
        remaining_balance=order.grand_total,
        payment_status=PaymentStatus.UNPAID.value,
    )
    db.session.add(delivery)
    db.session.flush()
    return delivery


def get_delivery(delivery_id: int) -> Delivery:
    delivery = db.session.get(Delivery, delivery_id)
    if not delivery:
        raise NotFoundError(f"Delivery {delivery_id} not found", {"delivery_id": delivery_id})
    return delivery


def get_delivery_for_order(order_id: int) -> Delivery:
    delivery = db.session.query(Delivery).filter_by(order_id=order_id).first()
    if not delivery:
        raise NotFoundError(f"Order {order_id} has no delivery", {"order_id": order_id})
    return delivery


def _lock_delivery(delivery_id: int) -> tuple[Delivery, Order]:
    delivery = lock_for_update(db.session.query(Delivery).filter_by(id=delivery_id)).first()
    if not delivery:
        raise NotFoundError(f"Delivery {delivery_id} not found", {"delivery_id": delivery_id})
    order = lock_for_update(db.session.query(Order).filter_by(id=delivery.order_id)).first()
    return delivery, order


# =============================================================================
# IDEMPOTENCY
# =============================================================================

def _last_sequence(delivery: Delivery) -> int:
    return (
        db.session.query(func.max(DeliveryPayment.sequence))
        .filter(DeliveryPayment.delivery_id == delivery.id)
        .scalar()
    ) or 0


def _claim_sequence(delivery: Delivery, sequence) -> tuple[int, DeliveryPayment | None]:
    """
    Resolve the sequence for a mutation.

    Returns (sequence, existing_row). existing_row is set when the key was
    already used. A sequence that skips ahead is rejected so a lost request
    cannot be silently overtaken by a later one.
    """
    last = _last_sequence(delivery)
    if sequence is None:
        return last + 1, None

    if isinstance(sequence, bool) or not isinstance(sequence, int) or sequence < 1:
        raise InvalidInputError("sequence must be a positive integer", {"sequence": sequence})

    if sequence <= last:
        row = (
            db.session.query(DeliveryPayment)
            .filter_by(delivery_id=delivery.id, sequence=sequence)
            .first()
        )
        return sequence, row

    if sequence != last + 1:
        raise InvalidInputError(
            f"Payment sequence {sequence} skips ahead; expected {last + 1}",
            {"sequence": sequence, "expected": last + 1},
        )
    return sequence, None


def _replay(delivery: Delivery, row: DeliveryPayment, kinds: tuple, matches: bool) -> PaymentOutcome:
    if row.kind not in kinds or not matches:
        raise DuplicatePostingError(
            f"Payment sequence {row.sequence} was already used for a different {row.kind.lower()}",
            {"delivery_id": delivery.id, "sequence": row.sequence, "kind": row.kind, "amount": row.amount},
        )
    logger.info("Replayed payment sequence %s on delivery %s", row.sequence, delivery.id)
    return PaymentOutcome(delivery=delivery, payment=row, replayed=True)


# =============================================================================
# BALANCE BOOKKEEPING
# =============================================================================

def _apply(
    delivery: Delivery,
    order: Order,
    *,
    kind: str,
    amount: Decimal,
    sequence: int,
    notes: str | None,
    actor_user_id: int | None,
) -> DeliveryPayment:
    delivery.paid_amount = delivery.paid_amount + amount
    delivery.remaining_balance = delivery.total_amount - delivery.paid_amount
    delivery.payment_status = payment_status_for(delivery.paid_amount, delivery.total_amount).value

    order.paid_amount = delivery.paid_amount
    order.remaining_balance = delivery.remaining_balance
    order.payment_status = delivery.payment_status

    row = DeliveryPayment(
        delivery_id=delivery.id,
        sequence=sequence,
        kind=kind,
        amount=amount,
        paid_after=delivery.paid_amount,
        notes=notes,
        collected_by_user_id=actor_user_id,
        paid_at=utcnow(),
    )
    db.session.add(row)
    db.session.flush()
    return row


def _sync_outstanding(delivery: Delivery, order: Order) -> OutstandingPayment | None:
    """Open, refresh or clear the order's outstanding record."""
    record = db.session.query(OutstandingPayment).filter_by(order_id=order.id).first()

    if delivery.remaining_balance <= ZERO:
        if record:
            db.session.delete(record)
            logger.info("Outstanding balance for order %s cleared", order.order_number)
        return None

    if record is None:
        record = OutstandingPayment(
            order_id=order.id,
            delivery_id=delivery.id,
            shop_id=order.shop_id,
            branch_id=order.branch_id,
            booker_id=order.booker_id,
            salesman_id=delivery.salesman_id,
        )
        db.session.add(record)

    record.total_amount = delivery.total_amount
    record.paid_amount = delivery.paid_amount
    record.remaining_balance = delivery.remaining_balance
    record.payment_status = delivery.payment_status
    record.credit_status = CREDIT_PARTIAL if delivery.paid_amount > ZERO else CREDIT_FULL
    record.updated_at = utcnow()
    return record


def _resolve_amount(raw, delivery: Delivery, confirm_default: bool) -> tuple[Decimal, bool]:
    parsed = try_decimal(raw) if raw is not None else None
    if parsed is None:
        proposed = delivery.remaining_balance
        if not confirm_default:
            raise DefaultAmountNotConfirmedError(proposed)
        return proposed, True
    return require_places(parsed, "amount"), False


# =============================================================================
# OPERATIONS
# =============================================================================

def record_delivery_payment(
    delivery_id: int,
    amount=None,
    notes: str | None = None,
    *,
    sequence: int | None = None,
    confirm_default: bool = False,
    actor_user_id: int | None = None,
) -> PaymentOutcome:
    """
    Record cash collected by the salesman.

    While the order is deliverable this marks it delivered and posts the
    sale. Once delivered, further calls are collections against the
    remaining balance.

    Args:
        delivery_id: Delivery being paid
        amount: Collected amount; None or unparseable proposes the full balance
        notes: Optional collector notes
        sequence: Idempotency key within the delivery (1, 2, 3...)
        confirm_default: Accept the full-balance proposal
        actor_user_id: Salesman recording the payment

    Raises:
        AmountOutOfRangeError: amount outside 0..remaining_balance
        DefaultAmountNotConfirmedError: amount missing and not confirmed
        IllegalStateTransitionError: order is not deliverable yet
        DuplicatePostingError: sequence replayed with a different amount
    """
    def _op() -> PaymentOutcome:
        delivery, order = _lock_delivery(delivery_id)
        seq, existing = _claim_sequence(delivery, sequence)
        if existing is not None:
            parsed = try_decimal(amount) if amount is not None else None
            matches = parsed is None or parsed == existing.amount
            return _replay(delivery, existing, (KIND_DELIVERY, KIND_COLLECTION), matches)

        delivering = check_transition(order.status, OrderStatus.DELIVERED)
        if not delivering:
            return _collect(delivery.id, amount, notes, seq, actor_user_id, confirm_default)

        value, defaulted = _resolve_amount(amount, delivery, confirm_default)
        if value < ZERO or value > delivery.remaining_balance:
            raise AmountOutOfRangeError(value, ZERO, delivery.remaining_balance)

        row = _apply(
            delivery,
            order,
            kind=KIND_DELIVERY,
            amount=value,
            sequence=seq,
            notes=notes,
            actor_user_id=actor_user_id,
        )

        now = utcnow()
        order.status = OrderStatus.DELIVERED.value
        order.delivered_at = now
        delivery.delivered_at = now
        if delivery.salesman_id is None:
            delivery.salesman_id = actor_user_id
        db.session.flush()

        entry_ids = [post_sale_delivered(order.id, actor_user_id=actor_user_id).id]
        if delivery.remaining_balance > ZERO:
            shortfall = post_adjustment(
                -delivery.remaining_balance,
                UNCOLLECTED_NOTE,
                order_id=order.id,
                payment_sequence=seq,
                actor_user_id=actor_user_id,
            )
            entry_ids.append(shortfall.id)

        _sync_outstanding(delivery, order)
        db.session.commit()

        logger.info(
            "Order %s delivered: collected %s of %s (%s)",
            order.order_number, value, delivery.total_amount, delivery.payment_status,
        )
        return PaymentOutcome(
            delivery=delivery,
            payment=row,
            defaulted=defaulted,
            ledger_entry_ids=entry_ids,
        )

    return run_with_retry(_op)


def _collect(
    delivery_id: int,
    amount,
    notes: str | None,
    sequence: int | None,
    actor_user_id: int | None,
    confirm_default: bool = False,
) -> PaymentOutcome:
    delivery, order = _lock_delivery(delivery_id)
    if order.status != OrderStatus.DELIVERED.value:
        raise IllegalStateTransitionError(
            order.status,
            OrderStatus.DELIVERED.value,
            message=f"Order {order.order_number} must be delivered before collecting outstanding payments",
        )

    seq, existing = _claim_sequence(delivery, sequence)
    if existing is not None:
        parsed = try_decimal(amount) if amount is not None else None
        return _replay(delivery, existing, (KIND_COLLECTION,), parsed is None or parsed == existing.amount)

    value, defaulted = _resolve_amount(amount, delivery, confirm_default)
    if value <= ZERO or value > delivery.remaining_balance:
        raise AmountOutOfRangeError(
            value,
            ZERO,
            delivery.remaining_balance,
            message=f"Collection must be greater than 0 and at most {delivery.remaining_balance}",
        )

    row = _apply(
        delivery,
        order,
        kind=KIND_COLLECTION,
        amount=value,
        sequence=seq,
        notes=notes,
        actor_user_id=actor_user_id,
    )
    entry = post_payment(order.id, value, seq, actor_user_id=actor_user_id, notes=notes)
    _sync_outstanding(delivery, order)
    db.session.commit()

    logger.info(
        "Collected %s on order %s; remaining %s",
        value, order.order_number, delivery.remaining_balance,
    )
    return PaymentOutcome(delivery=delivery, payment=row, defaulted=defaulted, ledger_entry_ids=[entry.id])


def collect_outstanding_payment(
    order_id: int,
    amount,
    notes: str | None = None,
    *,
    sequence: int | None = None,
    actor_user_id: int | None = None,
) -> PaymentOutcome:
    """
    Collect cash against a delivered order's outstanding balance.

    Requires 0 < amount <= remaining_balance. Clears the outstanding record
    when the balance reaches zero.
    """
    def _op() -> PaymentOutcome:
        delivery = get_delivery_for_order(order_id)
        if try_decimal(amount) is None:
            raise InvalidInputError("amount must be a number", {"field": "amount"})
        return _collect(delivery.id, amount, notes, sequence, actor_user_id)

    return run_with_retry(_op)


def adjust_delivery_payment(
    delivery_id: int,
    new_amount,
    notes: str,
    *,
    sequence: int | None = None,
    actor_user_id: int | None = None,
) -> PaymentOutcome:
    """
    Correct a delivery that was wrongly marked fully paid.

    Only allowed while the delivery is PAID; 0 <= new_amount < paid_amount.
    The difference is reopened as an outstanding balance and reversed in the
    ledger with a negative ADJUSTMENT.
    """
    def _op() -> PaymentOutcome:
        delivery, order = _lock_delivery(delivery_id)
        seq, existing = _claim_sequence(delivery, sequence)
        parsed = try_decimal(new_amount)
        if existing is not None:
            return _replay(delivery, existing, (KIND_ADJUSTMENT,), parsed is not None and parsed == existing.paid_after)

        reason = require_text(notes, "notes")
        if parsed is None:
            raise InvalidInputError("new_amount must be a number", {"field": "new_amount"})
        value = require_places(parsed, "new_amount")

        if delivery.payment_status != PaymentStatus.PAID.value:
            raise IllegalStateTransitionError(
                delivery.payment_status,
                PaymentStatus.PARTIAL.value,
                message=f"Only fully paid deliveries can be adjusted (status is {delivery.payment_status})",
            )

        if value < ZERO or value >= delivery.paid_amount:
            raise AmountOutOfRangeError(
                value,
                ZERO,
                delivery.paid_amount,
                message=f"New amount must be at least 0 and less than the recorded {delivery.paid_amount}",
            )

        delta = value - delivery.paid_amount
        row = _apply(
            delivery,
            order,
            kind=KIND_ADJUSTMENT,
            amount=delta,
            sequence=seq,
            notes=reason,
            actor_user_id=actor_user_id,
        )
        entry = post_adjustment(
            delta,
            reason,
            order_id=order.id,
            payment_sequence=seq,
            actor_user_id=actor_user_id,
        )
        _sync_outstanding(delivery, order)
        db.session.commit()

        logger.info(
            "Adjusted payment on order %s to %s (%s reopened)",
            order.order_number, value, -delta,
        )
        return PaymentOutcome(delivery=delivery, payment=row, ledger_entry_ids=[entry.id])

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_payment_summary(delivery_id: int) -> dict:
    delivery = get_delivery(delivery_id)
    history_total = sum((p.amount for p in delivery.payments), ZERO)
    data = delivery.to_dict(include_history=True)
    data["history_total"] = money_str(history_total)
    return data
