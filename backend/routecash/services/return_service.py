# Overview: Service-layer operations for shop stock returns; encapsulates business logic and database work.

"""
Stock Returns

Lifecycle: pending -> approved | rejected. Approval is the only step with a
cash effect: it posts one RETURN ledger entry of -total_value. Approving an
already approved return returns it unchanged.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from ..errors import IllegalStateTransitionError, InvalidInputError, NotFoundError
from ..extensions import db
from ..models import Order, Product, Shop, StockReturn, StockReturnLine
from ..time_utils import utcnow
from ..validation import parse_int, parse_money, parse_quantity, require_text
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_return_number
from .ledger_service import post_return

logger = logging.getLogger(__name__)

RETURN_PENDING = "pending"
RETURN_APPROVED = "approved"
RETURN_REJECTED = "rejected"

ZERO = Decimal("0")


def create_return(
    shop_id: int,
    lines: list[dict],
    *,
    order_id: int | None = None,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> StockReturn:
    """
    Record goods handed back by a shop.

    Each line is {"product_id", "quantity", "unit_price"?, "reason"?}; the
    unit price defaults to the product's current price.
    """
    def _op() -> StockReturn:
        shop = db.session.get(Shop, shop_id)
        if not shop:
            raise NotFoundError(f"Shop {shop_id} not found", {"shop_id": shop_id})
        if order_id is not None:
            order = db.session.get(Order, order_id)
            if not order or order.shop_id != shop.id:
                raise InvalidInputError("Return order must belong to the same shop", {"order_id": order_id})
        if not lines:
            raise InvalidInputError("Return has no lines")

        stock_return = StockReturn(
            return_number=next_return_number(shop.branch_id),
            shop_id=shop.id,
            branch_id=shop.branch_id,
            order_id=order_id,
            status=RETURN_PENDING,
            notes=notes,
            created_by_user_id=actor_user_id,
        )

        total = ZERO
        for index, raw in enumerate(lines, start=1):
            product_id = parse_int(raw.get("product_id"), f"lines[{index}].product_id")
            product = db.session.get(Product, product_id)
            if not product:
                raise NotFoundError(f"Product {product_id} not found", {"product_id": product_id})
            quantity = parse_quantity(raw.get("quantity"), f"lines[{index}].quantity")
            if quantity <= ZERO:
                raise InvalidInputError(f"lines[{index}].quantity must be positive")
            unit_price = (
                parse_money(raw["unit_price"], f"lines[{index}].unit_price")
                if raw.get("unit_price") is not None
                else product.unit_price
            )
            value = quantity * unit_price
            total += value
            stock_return.lines.append(StockReturnLine(
                product_id=product.id,
                quantity=quantity,
                unit_price=unit_price,
                line_value=value,
                reason=raw.get("reason"),
            ))

        stock_return.total_value = total
        db.session.add(stock_return)
        db.session.commit()
        logger.info("Created return %s for shop %s (%s)", stock_return.return_number, shop.shop_code, total)
        return stock_return

    return run_with_retry(_op)


def _lock_return(return_id: int) -> StockReturn:
    stock_return = lock_for_update(db.session.query(StockReturn).filter_by(id=return_id)).first()
    if not stock_return:
        raise NotFoundError(f"Return {return_id} not found", {"return_id": return_id})
    return stock_return


def approve_return(return_id: int, actor_user_id: int | None = None) -> StockReturn:
    def _op() -> StockReturn:
        stock_return = _lock_return(return_id)
        if stock_return.status == RETURN_APPROVED:
            return stock_return
        if stock_return.status != RETURN_PENDING:
            raise IllegalStateTransitionError(stock_return.status, RETURN_APPROVED)

        stock_return.status = RETURN_APPROVED
        stock_return.approved_at = utcnow()
        stock_return.approved_by_user_id = actor_user_id
        db.session.flush()
        post_return(stock_return.id, actor_user_id=actor_user_id)
        db.session.commit()
        return stock_return

    return run_with_retry(_op)


def reject_return(return_id: int, reason: str, actor_user_id: int | None = None) -> StockReturn:
    reason = require_text(reason, "reason")

    def _op() -> StockReturn:
        stock_return = _lock_return(return_id)
        if stock_return.status == RETURN_REJECTED:
            return stock_return
        if stock_return.status != RETURN_PENDING:
            raise IllegalStateTransitionError(stock_return.status, RETURN_REJECTED)

        stock_return.status = RETURN_REJECTED
        stock_return.rejected_at = utcnow()
        stock_return.rejection_reason = reason
        db.session.commit()
        logger.info("Rejected return %s by user %s: %s", stock_return.return_number, actor_user_id, reason)
        return stock_return

    return run_with_retry(_op)


def get_return(return_id: int) -> StockReturn:
    stock_return = db.session.get(StockReturn, return_id)
    if not stock_return:
        raise NotFoundError(f"Return {return_id} not found", {"return_id": return_id})
    return stock_return
