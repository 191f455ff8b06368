from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .organization import MONEY, money_str


class BookerDiscountMonth(db.Model):
    """Running unauthorized-discount total per (booker, YYYY-MM)."""
    __tablename__ = "booker_discount_months"
    __table_args__ = (
        db.UniqueConstraint("booker_id", "month_key", name="uq_booker_discount_month"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    booker_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    month_key = db.Column(db.String(7), nullable=False)
    amount = db.Column(MONEY, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "booker_id": self.booker_id,
            "month_key": self.month_key,
            "amount": money_str(self.amount),
            "updated_at": to_utc_z(self.updated_at),
        }


class BookerDiscountContribution(db.Model):
    """
    One row per order that added to a booker's month.

    The unique order_id makes aggregation idempotent. reset_at marks rows
    cleared by a month reset; they stay so the same order can never be
    re-added after a reset.
    """
    __tablename__ = "booker_discount_contributions"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_booker_discount_contribution_order"),
        db.Index("ix_booker_discount_contrib_month", "booker_id", "month_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    booker_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    month_key = db.Column(db.String(7), nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    amount = db.Column(MONEY, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    reset_at = db.Column(db.DateTime(timezone=True), nullable=True)


class DiscountResetAudit(db.Model):
    __tablename__ = "discount_reset_audits"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    booker_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    month_key = db.Column(db.String(7), nullable=False)
    amount_reset = db.Column(MONEY, nullable=False)
    order_ids = db.Column(db.Text, nullable=True)  # comma-separated
    reset_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    reset_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "booker_id": self.booker_id,
            "month_key": self.month_key,
            "amount_reset": money_str(self.amount_reset),
            "order_ids": [int(x) for x in self.order_ids.split(",")] if self.order_ids else [],
            "reset_by_user_id": self.reset_by_user_id,
            "reset_at": to_utc_z(self.reset_at),
        }
