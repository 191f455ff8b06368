# Overview: Read-only reporting projections over the branch ledger and outstanding balances.

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import func

from ..errors import NotFoundError
from ..extensions import db
from ..models import Branch, LedgerEntry, OutstandingPayment, Shop
from ..models.organization import money_str
from ..validation import as_money
from .ledger_service import ENTRY_TYPES

ZERO = Decimal("0")


def _ledger_query(branch_id: int, start: datetime | None, end: datetime | None):
    query = db.session.query(LedgerEntry).filter(LedgerEntry.branch_id == branch_id)
    if start:
        query = query.filter(LedgerEntry.created_at >= start)
    if end:
        query = query.filter(LedgerEntry.created_at <= end)
    return query


def get_ledger_entries(
    branch_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
    *,
    entry_type: str | None = None,
    limit: int = 500,
    offset: int = 0,
) -> tuple[list[LedgerEntry], int]:
    """Branch ledger in posting order; date range is inclusive."""
    query = _ledger_query(branch_id, start, end)
    if entry_type:
        query = query.filter(LedgerEntry.entry_type == entry_type)
    total = query.count()
    limit = max(1, min(limit, 1000))
    entries = (
        query.order_by(LedgerEntry.created_at.asc(), LedgerEntry.id.asc())
        .offset(max(0, offset))
        .limit(limit)
        .all()
    )
    return entries, total


def get_branch_cash_summary(branch_id: int, start: datetime | None = None, end: datetime | None = None) -> dict:
    """
    Net cash per entry type and overall for a branch.

    net_cash is always the plain sum across SALE_DELIVERED, PAYMENT, RETURN
    and ADJUSTMENT; dashboards must not compute it any other way.
    """
    branch = db.session.get(Branch, branch_id)
    if not branch:
        raise NotFoundError(f"Branch {branch_id} not found", {"branch_id": branch_id})

    rows = (
        _ledger_query(branch_id, start, end)
        .with_entities(
            LedgerEntry.entry_type,
            func.count(LedgerEntry.id),
            func.coalesce(func.sum(LedgerEntry.net_cash), 0),
        )
        .group_by(LedgerEntry.entry_type)
        .all()
    )

    by_type = {t: {"count": 0, "net_cash": ZERO} for t in ENTRY_TYPES}
    for entry_type, count, total in rows:
        by_type[entry_type] = {"count": count, "net_cash": as_money(total)}

    net = sum((v["net_cash"] for v in by_type.values()), ZERO)
    outstanding = as_money(
        db.session.query(func.coalesce(func.sum(OutstandingPayment.remaining_balance), 0))
        .filter(OutstandingPayment.branch_id == branch_id)
        .scalar()
    )

    return {
        "branch_id": branch.id,
        "region": branch.region,
        "by_type": {t: {"count": v["count"], "net_cash": money_str(v["net_cash"])} for t, v in by_type.items()},
        "net_cash": money_str(net),
        "outstanding_balance": money_str(outstanding),
    }


def get_shop_credit_summary(shop_id: int) -> dict:
    """Open credit for a shop: outstanding orders and their total."""
    shop = db.session.get(Shop, shop_id)
    if not shop:
        raise NotFoundError(f"Shop {shop_id} not found", {"shop_id": shop_id})

    records = (
        db.session.query(OutstandingPayment)
        .filter_by(shop_id=shop.id)
        .order_by(OutstandingPayment.created_at.asc(), OutstandingPayment.id.asc())
        .all()
    )
    total = sum((r.remaining_balance for r in records), ZERO)

    return {
        "shop_id": shop.id,
        "shop_code": shop.shop_code,
        "shop_name": shop.name,
        "open_orders": len(records),
        "outstanding_total": money_str(total),
        "outstanding": [r.to_dict() for r in records],
    }
