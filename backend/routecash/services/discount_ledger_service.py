# Overview: Service-layer operations for booker unauthorized-discount tracking; encapsulates business logic and database work.

"""
Unauthorized Discount Ledger

Keyed totals: booker x month ("YYYY-MM") -> amount to deduct from salary.
Amounts only enter through record_unauthorized_discount, which is keyed by
order id, so reprocessing an order never double-adds. Reset is an explicit
admin action with an audit row and touches a single month.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from ..errors import InvalidInputError, NotFoundError
from ..extensions import db
from ..models import (
    BookerDiscountContribution,
    BookerDiscountMonth,
    DiscountResetAudit,
    Order,
    User,
)
from ..models.organization import money_str
from ..time_utils import is_month_key, month_key, utcnow
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def _month_row(booker_id: int, key: str) -> BookerDiscountMonth:
    row = lock_for_update(
        db.session.query(BookerDiscountMonth).filter_by(booker_id=booker_id, month_key=key)
    ).first()
    if row is None:
        row = BookerDiscountMonth(booker_id=booker_id, month_key=key, amount=ZERO)
        db.session.add(row)
        db.session.flush()
    return row


def record_unauthorized_discount(order_id: int) -> BookerDiscountContribution | None:
    """
    Add a submitted order's unauthorized discount to its booker's month.

    The month comes from the order's creation date. Returns the contribution
    (existing or new), or None when the order has nothing unauthorized.
    """
    def _op():
        order = db.session.get(Order, order_id)
        if not order:
            raise NotFoundError(f"Order {order_id} not found", {"order_id": order_id})
        if not order.has_unauthorized_discount:
            return None

        existing = db.session.query(BookerDiscountContribution).filter_by(order_id=order.id).first()
        if existing:
            return existing

        key = month_key(order.created_at)
        month = _month_row(order.booker_id, key)
        month.amount = month.amount + order.unauthorized_discount
        month.updated_at = utcnow()

        contribution = BookerDiscountContribution(
            booker_id=order.booker_id,
            month_key=key,
            order_id=order.id,
            amount=order.unauthorized_discount,
        )
        db.session.add(contribution)
        db.session.commit()

        logger.info(
            "Booker %s unauthorized discount %s: +%s from order %s",
            order.booker_id, key, order.unauthorized_discount, order.order_number,
        )
        return contribution

    return run_with_retry(_op)


def reset_unauthorized_discount(booker_id: int, month: str, reset_by: int) -> DiscountResetAudit:
    """
    Zero a booker's month after the deduction has been settled.

    Clears the month's active order list (contributions are stamped with
    reset_at, not deleted) and writes an audit row. Other months are not
    touched.
    """
    if not is_month_key(month):
        raise InvalidInputError("month must look like YYYY-MM", {"month": month})

    def _op():
        if not db.session.get(User, booker_id):
            raise NotFoundError(f"Booker {booker_id} not found", {"booker_id": booker_id})
        if not db.session.get(User, reset_by):
            raise NotFoundError(f"User {reset_by} not found", {"reset_by": reset_by})

        now = utcnow()
        row = _month_row(booker_id, month)
        cleared = (
            db.session.query(BookerDiscountContribution)
            .filter_by(booker_id=booker_id, month_key=month, reset_at=None)
            .order_by(BookerDiscountContribution.id.asc())
            .all()
        )
        for contribution in cleared:
            contribution.reset_at = now

        audit = DiscountResetAudit(
            booker_id=booker_id,
            month_key=month,
            amount_reset=row.amount,
            order_ids=",".join(str(c.order_id) for c in cleared),
            reset_by_user_id=reset_by,
            reset_at=now,
        )
        row.amount = ZERO
        row.updated_at = now
        db.session.add(audit)
        db.session.commit()

        logger.info(
            "Reset booker %s unauthorized discount for %s (%s) by user %s",
            booker_id, month, audit.amount_reset, reset_by,
        )
        return audit

    return run_with_retry(_op)


def get_booker_monthly_unauthorized_discount(booker_id: int, month: str | None = None) -> dict:
    """
    Current unauthorized-discount totals for a booker.

    With a month, returns that month's amount and active order ids; without,
    returns every tracked month plus the running total.
    """
    if month is not None and not is_month_key(month):
        raise InvalidInputError("month must look like YYYY-MM", {"month": month})

    query = db.session.query(BookerDiscountMonth).filter_by(booker_id=booker_id)
    if month:
        query = query.filter_by(month_key=month)
    rows = query.order_by(BookerDiscountMonth.month_key.asc()).all()

    active = (
        db.session.query(BookerDiscountContribution)
        .filter_by(booker_id=booker_id, reset_at=None)
        .order_by(BookerDiscountContribution.id.asc())
        .all()
    )
    orders_by_month: dict[str, list[int]] = {}
    for c in active:
        orders_by_month.setdefault(c.month_key, []).append(c.order_id)

    months = []
    for row in rows:
        data = row.to_dict()
        data["order_ids"] = orders_by_month.get(row.month_key, [])
        months.append(data)

    if month and not months:
        months.append({"booker_id": booker_id, "month_key": month, "amount": "0", "updated_at": None, "order_ids": []})

    total = sum((row.amount for row in rows), ZERO)
    return {
        "booker_id": booker_id,
        "months": months,
        "total": money_str(total),
    }


def list_reset_audits(booker_id: int) -> list[DiscountResetAudit]:
    return (
        db.session.query(DiscountResetAudit)
        .filter_by(booker_id=booker_id)
        .order_by(DiscountResetAudit.reset_at.desc(), DiscountResetAudit.id.desc())
        .all()
    )
