from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .organization import MONEY, money_str


class StockReturn(db.Model):
    """
    Goods returned by a shop.

    Lifecycle: pending -> approved | rejected. Approval posts a negative
    RETURN ledger entry for total_value.
    """
    __tablename__ = "stock_returns"
    __table_args__ = (
        db.UniqueConstraint("return_number", name="uq_stock_returns_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_number = db.Column(db.String(64), nullable=False)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    total_value = db.Column(MONEY, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    rejection_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)

    shop = db.relationship("Shop")
    lines = db.relationship("StockReturnLine", backref="stock_return", lazy=True, cascade="all, delete-orphan")

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "return_number": self.return_number,
            "shop_id": self.shop_id,
            "branch_id": self.branch_id,
            "order_id": self.order_id,
            "status": self.status,
            "total_value": money_str(self.total_value),
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "rejection_reason": self.rejection_reason,
            "created_at": to_utc_z(self.created_at),
            "approved_at": to_utc_z(self.approved_at),
            "rejected_at": to_utc_z(self.rejected_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class StockReturnLine(db.Model):
    __tablename__ = "stock_return_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("stock_returns.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(MONEY, nullable=False)
    unit_price = db.Column(MONEY, nullable=False)
    line_value = db.Column(MONEY, nullable=False)
    reason = db.Column(db.String(64), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": money_str(self.quantity),
            "unit_price": money_str(self.unit_price),
            "line_value": money_str(self.line_value),
            "reason": self.reason,
        }
