# Overview: Batch reconciliation and integrity checks over the ledger and delivery records.

"""
Ledger Reconciliation

Out-of-band compensating control for the one-sale-per-order rule. Run from
the CLI (flask ledger reconcile / flask ledger verify).

CLEANUP POLICY:
- Only SALE_DELIVERED duplicates are candidates.
- Per order, keep the earliest entry that has every required field; if none
  is complete, keep the earliest entry.
- RETURN entries are never deleted. PAYMENT and ADJUSTMENT are left alone.
- Dry-run by default: report what would be deleted without deleting.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import func, or_

from ..extensions import db
from ..models import Delivery, DeliveryPayment, LedgerEntry, Order, OutstandingPayment
from ..validation import as_money
from .ledger_service import ENTRY_ADJUSTMENT, ENTRY_RETURN, ENTRY_SALE_DELIVERED
from .order_state import OrderStatus

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

REQUIRED_SALE_FIELDS = ("order_id", "shop_id", "branch_id", "created_by_user_id", "net_cash", "created_at")


@dataclass
class DuplicateGroup:
    order_id: int
    keep_id: int
    delete_ids: list[int]

    def to_dict(self) -> dict:
        return {"order_id": self.order_id, "keep_id": self.keep_id, "delete_ids": self.delete_ids}


@dataclass
class CleanupReport:
    dry_run: bool
    groups: list[DuplicateGroup] = field(default_factory=list)
    deleted_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "dry_run": self.dry_run,
            "groups": [g.to_dict() for g in self.groups],
            "deleted_ids": self.deleted_ids,
        }


@dataclass
class IntegrityReport:
    orders_checked: int = 0
    deliveries_checked: int = 0
    issues: list[dict] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues

    def add(self, kind: str, message: str, **context) -> None:
        self.issues.append({"kind": kind, "message": message, **context})

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "orders_checked": self.orders_checked,
            "deliveries_checked": self.deliveries_checked,
            "issues": self.issues,
        }


def _is_complete(entry: LedgerEntry) -> bool:
    return all(getattr(entry, name) is not None for name in REQUIRED_SALE_FIELDS)


def find_duplicate_sale_entries() -> list[DuplicateGroup]:
    dup_order_ids = [
        row.order_id
        for row in (
            db.session.query(LedgerEntry.order_id)
            .filter(LedgerEntry.entry_type == ENTRY_SALE_DELIVERED, LedgerEntry.order_id.isnot(None))
            .group_by(LedgerEntry.order_id)
            .having(func.count(LedgerEntry.id) > 1)
            .order_by(LedgerEntry.order_id)
            .all()
        )
    ]

    groups = []
    for order_id in dup_order_ids:
        entries = (
            db.session.query(LedgerEntry)
            .filter_by(order_id=order_id, entry_type=ENTRY_SALE_DELIVERED)
            .order_by(LedgerEntry.created_at.asc(), LedgerEntry.id.asc())
            .all()
        )
        keep = next((e for e in entries if _is_complete(e)), entries[0])
        groups.append(DuplicateGroup(
            order_id=order_id,
            keep_id=keep.id,
            delete_ids=[e.id for e in entries if e.id != keep.id],
        ))
    return groups


def cleanup_duplicate_sales(dry_run: bool = True) -> CleanupReport:
    report = CleanupReport(dry_run=dry_run, groups=find_duplicate_sale_entries())
    if dry_run or not report.groups:
        return report

    for group in report.groups:
        for entry_id in group.delete_ids:
            entry = db.session.get(LedgerEntry, entry_id)
            if entry is None or entry.entry_type != ENTRY_SALE_DELIVERED:
                continue
            db.session.delete(entry)
            report.deleted_ids.append(entry_id)
        logger.warning(
            "Removed duplicate sale entries %s for order %s (kept %s)",
            group.delete_ids, group.order_id, group.keep_id,
        )
    db.session.commit()
    return report


def verify_integrity() -> IntegrityReport:
    """
    Check the invariants the posting and payment services maintain.

    Read-only. Each violation becomes one issue with enough context to find
    the record.
    """
    report = IntegrityReport()

    for group in find_duplicate_sale_entries():
        report.add(
            "duplicate_sale",
            f"Order {group.order_id} has {len(group.delete_ids) + 1} sale entries",
            order_id=group.order_id,
        )

    orders = db.session.query(Order).order_by(Order.id).all()
    report.orders_checked = len(orders)
    for order in orders:
        if order.grand_total != order.subtotal - order.total_discount:
            report.add("order_totals", f"Order {order.order_number} grand total does not match", order_id=order.id)
        if order.unauthorized_discount < ZERO:
            report.add("order_totals", f"Order {order.order_number} has negative unauthorized discount", order_id=order.id)

        if order.status != OrderStatus.DELIVERED.value:
            continue

        sale_count = (
            db.session.query(func.count(LedgerEntry.id))
            .filter_by(order_id=order.id, entry_type=ENTRY_SALE_DELIVERED)
            .scalar()
        )
        if sale_count == 0:
            report.add("missing_sale", f"Delivered order {order.order_number} has no sale entry", order_id=order.id)

        delivery = db.session.query(Delivery).filter_by(order_id=order.id).first()
        if delivery is None:
            report.add("missing_delivery", f"Delivered order {order.order_number} has no delivery", order_id=order.id)
            continue

        order_cash = (
            db.session.query(func.coalesce(func.sum(LedgerEntry.net_cash), 0))
            .filter(
                LedgerEntry.order_id == order.id,
                LedgerEntry.entry_type != ENTRY_RETURN,
                # manual office corrections are not part of the collection trail
                or_(LedgerEntry.entry_type != ENTRY_ADJUSTMENT, LedgerEntry.payment_sequence.isnot(None)),
            )
            .scalar()
        )
        if as_money(order_cash) != delivery.paid_amount and sale_count == 1:
            report.add(
                "ledger_cash",
                f"Ledger cash for order {order.order_number} is {order_cash}, collected {delivery.paid_amount}",
                order_id=order.id,
            )

    deliveries = db.session.query(Delivery).order_by(Delivery.id).all()
    report.deliveries_checked = len(deliveries)
    for delivery in deliveries:
        if delivery.paid_amount + delivery.remaining_balance != delivery.total_amount:
            report.add("delivery_balance", f"Delivery {delivery.id} balance does not add up", delivery_id=delivery.id)

        history = (
            db.session.query(func.coalesce(func.sum(DeliveryPayment.amount), 0))
            .filter(DeliveryPayment.delivery_id == delivery.id)
            .scalar()
        )
        if as_money(history) != delivery.paid_amount:
            report.add("payment_history", f"Delivery {delivery.id} history does not match paid amount", delivery_id=delivery.id)

        outstanding = db.session.query(OutstandingPayment).filter_by(order_id=delivery.order_id).first()
        delivered = delivery.order.status == OrderStatus.DELIVERED.value
        if delivered and delivery.remaining_balance > ZERO:
            if outstanding is None:
                report.add("outstanding_missing", f"Delivery {delivery.id} has a balance but no outstanding record", delivery_id=delivery.id)
            elif outstanding.remaining_balance != delivery.remaining_balance:
                report.add("outstanding_mismatch", f"Outstanding record for delivery {delivery.id} is stale", delivery_id=delivery.id)
        elif outstanding is not None:
            report.add("outstanding_stale", f"Delivery {delivery.id} is settled but still has an outstanding record", delivery_id=delivery.id)

    return report
