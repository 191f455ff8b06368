from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .organization import MONEY, money_str


class Delivery(db.Model):
    """
    Delivery record for a deliverable order (one per order).

    INVARIANT: paid_amount + remaining_balance == total_amount, and
    paid_amount equals the signed sum of the payment history.
    """
    __tablename__ = "deliveries"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_deliveries_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    salesman_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    total_amount = db.Column(MONEY, nullable=False)
    paid_amount = db.Column(MONEY, nullable=False, default=0)
    remaining_balance = db.Column(MONEY, nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default="UNPAID", index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("delivery", uselist=False, lazy=True))
    salesman = db.relationship("User", foreign_keys=[salesman_id])
    payments = db.relationship(
        "DeliveryPayment",
        backref="delivery",
        lazy=True,
        order_by="DeliveryPayment.sequence",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_history: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_id": self.order_id,
            "salesman_id": self.salesman_id,
            "total_amount": money_str(self.total_amount),
            "paid_amount": money_str(self.paid_amount),
            "remaining_balance": money_str(self.remaining_balance),
            "payment_status": self.payment_status,
            "created_at": to_utc_z(self.created_at),
            "assigned_at": to_utc_z(self.assigned_at),
            "delivered_at": to_utc_z(self.delivered_at),
        }
        if include_history:
            data["payment_history"] = [p.to_dict() for p in self.payments]
        return data


class DeliveryPayment(db.Model):
    """
    Append-only payment history row.

    kind:
    - DELIVERY:   cash taken at the door
    - COLLECTION: later collection against the outstanding balance
    - ADJUSTMENT: downward correction of a recorded amount (negative)

    (delivery_id, sequence) is the idempotency key for every payment mutation.
    """
    __tablename__ = "delivery_payments"
    __table_args__ = (
        db.UniqueConstraint("delivery_id", "sequence", name="uq_delivery_payments_sequence"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    delivery_id = db.Column(db.Integer, db.ForeignKey("deliveries.id"), nullable=False, index=True)
    sequence = db.Column(db.Integer, nullable=False)
    kind = db.Column(db.String(16), nullable=False)
    amount = db.Column(MONEY, nullable=False)
    # Delivery paid_amount right after this row was applied
    paid_after = db.Column(MONEY, nullable=False)
    notes = db.Column(db.String(500), nullable=True)
    collected_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "delivery_id": self.delivery_id,
            "sequence": self.sequence,
            "kind": self.kind,
            "amount": money_str(self.amount),
            "paid_after": money_str(self.paid_after),
            "notes": self.notes,
            "collected_by_user_id": self.collected_by_user_id,
            "paid_at": to_utc_z(self.paid_at),
        }


class OutstandingPayment(db.Model):
    """
    Open credit against a delivered order. Exists exactly while the order's
    remaining balance is above zero.
    """
    __tablename__ = "outstanding_payments"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_outstanding_payments_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    delivery_id = db.Column(db.Integer, db.ForeignKey("deliveries.id"), nullable=False, index=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    booker_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    salesman_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    total_amount = db.Column(MONEY, nullable=False)
    paid_amount = db.Column(MONEY, nullable=False)
    remaining_balance = db.Column(MONEY, nullable=False)
    payment_status = db.Column(db.String(16), nullable=False)
    # PARTIAL: something was collected; FULL_CREDIT: nothing collected yet
    credit_status = db.Column(db.String(16), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    order = db.relationship("Order")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "order_number": self.order.order_number if self.order else None,
            "delivery_id": self.delivery_id,
            "shop_id": self.shop_id,
            "branch_id": self.branch_id,
            "booker_id": self.booker_id,
            "salesman_id": self.salesman_id,
            "total_amount": money_str(self.total_amount),
            "paid_amount": money_str(self.paid_amount),
            "remaining_balance": money_str(self.remaining_balance),
            "payment_status": self.payment_status,
            "credit_status": self.credit_status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
