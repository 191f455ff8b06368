from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .organization import MONEY, money_str


class LedgerEntry(db.Model):
    """
    Branch cash ledger row (immutable once written).

    entry_type:
    - SALE_DELIVERED: +grand_total, one per order
    - PAYMENT:        +amount collected after delivery, one per (order, payment_sequence)
    - RETURN:         -return value, one per approved return, never deleted
    - ADJUSTMENT:     signed correction, notes required

    Branch net cash is the plain sum of net_cash.
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        db.Index("ix_ledger_entries_branch_created", "branch_id", "created_at"),
        db.Index("ix_ledger_entries_order_type", "order_id", "entry_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    entry_type = db.Column(db.String(24), nullable=False, index=True)
    net_cash = db.Column(MONEY, nullable=False)

    # Audit copies of the order's frozen totals (SALE_DELIVERED only)
    gross_amount = db.Column(MONEY, nullable=False, default=0)
    discount_given = db.Column(MONEY, nullable=False, default=0)
    discount_allowed = db.Column(MONEY, nullable=False, default=0)
    unauthorized_discount = db.Column(MONEY, nullable=False, default=0)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)
    return_id = db.Column(db.Integer, db.ForeignKey("stock_returns.id"), nullable=True, index=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=True, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True)
    region = db.Column(db.String(120), nullable=True)

    order_number = db.Column(db.String(64), nullable=True)
    return_number = db.Column(db.String(64), nullable=True)
    payment_sequence = db.Column(db.Integer, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    notes = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entry_type": self.entry_type,
            "net_cash": money_str(self.net_cash),
            "gross_amount": money_str(self.gross_amount),
            "discount_given": money_str(self.discount_given),
            "discount_allowed": money_str(self.discount_allowed),
            "unauthorized_discount": money_str(self.unauthorized_discount),
            "order_id": self.order_id,
            "return_id": self.return_id,
            "shop_id": self.shop_id,
            "branch_id": self.branch_id,
            "region": self.region,
            "order_number": self.order_number,
            "return_number": self.return_number,
            "payment_sequence": self.payment_sequence,
            "created_by_user_id": self.created_by_user_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
