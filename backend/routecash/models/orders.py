from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .organization import MONEY, PERCENT, money_str


class Order(db.Model):
    """
    Booker order document.

    WHY: Orders carry their own frozen financial snapshot. Once submitted,
    totals are never recomputed from the catalog; the ledger, outstanding
    balances and salary deductions all read these columns.

    Orders are never hard-deleted; cancelled is a terminal status.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_branch_status_created", "branch_id", "status", "created_at"),
        db.Index("ix_orders_booker_created", "booker_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(64), nullable=False)

    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    booker_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    status = db.Column(db.String(24), nullable=False, default="draft", index=True)

    # Frozen totals
    subtotal = db.Column(MONEY, nullable=False, default=0)
    total_discount = db.Column(MONEY, nullable=False, default=0)
    allowed_discount = db.Column(MONEY, nullable=False, default=0)
    line_unauthorized_discount = db.Column(MONEY, nullable=False, default=0)
    order_level_excess = db.Column(MONEY, nullable=False, default=0)
    unauthorized_discount = db.Column(MONEY, nullable=False, default=0)
    grand_total = db.Column(MONEY, nullable=False, default=0)

    # Booker's order-level cap at pricing time (0 = no cap)
    booker_max_discount_amount = db.Column(MONEY, nullable=False, default=0)
    unauthorized_acknowledged = db.Column(db.Boolean, nullable=False, default=False)

    # Payment (cash only)
    payment_mode = db.Column(db.String(16), nullable=False, default="cash")
    payment_status = db.Column(db.String(16), nullable=False, default="UNPAID", index=True)
    paid_amount = db.Column(MONEY, nullable=False, default=0)
    remaining_balance = db.Column(MONEY, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    finalized_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    status_note = db.Column(db.String(255), nullable=True)

    shop = db.relationship("Shop", backref=db.backref("orders", lazy=True))
    booker = db.relationship("User", foreign_keys=[booker_id])
    branch = db.relationship("Branch")
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.line_no",
        cascade="all, delete-orphan",
    )

    @property
    def has_unauthorized_discount(self) -> bool:
        return bool(self.unauthorized_discount) and self.unauthorized_discount > 0

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "shop_id": self.shop_id,
            "booker_id": self.booker_id,
            "branch_id": self.branch_id,
            "status": self.status,
            "subtotal": money_str(self.subtotal),
            "total_discount": money_str(self.total_discount),
            "allowed_discount": money_str(self.allowed_discount),
            "line_unauthorized_discount": money_str(self.line_unauthorized_discount),
            "order_level_excess": money_str(self.order_level_excess),
            "unauthorized_discount": money_str(self.unauthorized_discount),
            "has_unauthorized_discount": self.has_unauthorized_discount,
            "grand_total": money_str(self.grand_total),
            "booker_max_discount_amount": money_str(self.booker_max_discount_amount),
            "unauthorized_acknowledged": self.unauthorized_acknowledged,
            "payment_mode": self.payment_mode,
            "payment_status": self.payment_status,
            "paid_amount": money_str(self.paid_amount),
            "remaining_balance": money_str(self.remaining_balance),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "submitted_at": to_utc_z(self.submitted_at),
            "finalized_at": to_utc_z(self.finalized_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "status_note": self.status_note,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    Priced order line.

    Product name, category, unit price and the effective discount ceiling are
    snapshotted so the line can be re-priced from its own columns.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.UniqueConstraint("order_id", "line_no", name="uq_order_items_order_line"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    line_no = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_name = db.Column(db.String(160), nullable=False)
    category = db.Column(db.String(32), nullable=False)
    quantity = db.Column(MONEY, nullable=False)
    unit_price = db.Column(MONEY, nullable=False)
    discount_percent = db.Column(PERCENT, nullable=False, default=0)
    max_allowed_discount = db.Column(PERCENT, nullable=False, default=0)

    line_total = db.Column(MONEY, nullable=False)
    discount_amount = db.Column(MONEY, nullable=False)
    final_amount = db.Column(MONEY, nullable=False)
    is_unauthorized_discount = db.Column(db.Boolean, nullable=False, default=False)
    unauthorized_amount = db.Column(MONEY, nullable=False, default=0)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "line_no": self.line_no,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "category": self.category,
            "quantity": money_str(self.quantity),
            "unit_price": money_str(self.unit_price),
            "discount_percent": money_str(self.discount_percent),
            "max_allowed_discount": money_str(self.max_allowed_discount),
            "line_total": money_str(self.line_total),
            "discount_amount": money_str(self.discount_amount),
            "final_amount": money_str(self.final_amount),
            "is_unauthorized_discount": self.is_unauthorized_discount,
            "unauthorized_amount": money_str(self.unauthorized_amount),
        }
