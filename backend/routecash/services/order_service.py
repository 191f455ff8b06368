# Overview: Service-layer operations for booker orders; encapsulates business logic and database work.

"""
Order Workflow Service

WHY: Orders are the entry point of the order-to-cash flow. This module owns
every status change so the guards (items present, shop active,
unauthorized-discount acknowledgement, recorded payment) live in one place
next to the state table in order_state.

DESIGN:
- Items are priced when added (catalog snapshot) and may change only while
  the order is draft.
- Submission re-derives totals from the snapshots and freezes them.
- An order with unauthorized discount is only submitted once the caller
  acknowledges the amount; until then nothing changes.
- After the submit commits, the booker's monthly aggregate is updated as a
  best-effort follow-up.
"""

from __future__ import annotations

import logging
from typing import Iterable

from ..errors import IllegalStateTransitionError, InvalidInputError, NotFoundError, UnauthorizedDiscountNotAcknowledgedError
from ..extensions import db
from ..models import Delivery, DeliveryPayment, Order, OrderItem, Product, Shop, User
from ..time_utils import utcnow
from ..validation import parse_int
from .concurrency import lock_for_update, run_with_retry
from .delivery_service import ensure_delivery
from .discount_ledger_service import record_unauthorized_discount
from .discount_policy import get_policy
from .document_service import next_order_number
from .order_state import OrderStatus, check_transition, parse_status
from .order_totals import OrderTotals, calculate_order, recalculate_frozen
from .side_effects import run_best_effort

logger = logging.getLogger(__name__)


# =============================================================================
# HELPERS
# =============================================================================

def _get_user(user_id: int, label: str) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(f"{label.capitalize()} {user_id} not found", {f"{label}_id": user_id})
    return user


def _get_shop(shop_id: int) -> Shop:
    shop = db.session.get(Shop, shop_id)
    if not shop:
        raise NotFoundError(f"Shop {shop_id} not found", {"shop_id": shop_id})
    return shop


def _lock_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise NotFoundError(f"Order {order_id} not found", {"order_id": order_id})
    return order


def _resolve_items(items: Iterable[dict]) -> list[tuple]:
    resolved = []
    for index, raw in enumerate(items or [], start=1):
        if not isinstance(raw, dict):
            raise InvalidInputError(f"Item {index} must be an object")
        product_id = parse_int(raw.get("product_id"), f"items[{index}].product_id")
        product = db.session.get(Product, product_id)
        if not product:
            raise NotFoundError(f"Product {product_id} not found", {"product_id": product_id})
        if not product.is_active:
            raise InvalidInputError(f"Product {product.sku} is inactive", {"product_id": product_id})
        resolved.append((product, raw.get("quantity"), raw.get("discount_percent", 0)))
    return resolved


def _write_items(order: Order, booker: User, items: Iterable[dict]) -> OrderTotals:
    lines, totals = calculate_order(_resolve_items(items), get_policy(), user=booker)

    order.items.clear()
    db.session.flush()
    for line_no, line in enumerate(lines, start=1):
        order.items.append(OrderItem(
            line_no=line_no,
            product_id=line.product_id,
            product_name=line.product_name,
            category=line.category,
            quantity=line.quantity,
            unit_price=line.unit_price,
            discount_percent=line.discount_percent,
            max_allowed_discount=line.max_allowed_discount,
            line_total=line.line_total,
            discount_amount=line.discount_amount,
            final_amount=line.final_amount,
            is_unauthorized_discount=line.is_unauthorized,
            unauthorized_amount=line.unauthorized_amount,
        ))

    order.booker_max_discount_amount = booker.max_discount_amount or 0
    _store_totals(order, totals)
    return totals


def _store_totals(order: Order, totals: OrderTotals) -> None:
    order.subtotal = totals.subtotal
    order.total_discount = totals.total_discount
    order.allowed_discount = totals.allowed_discount
    order.line_unauthorized_discount = totals.line_unauthorized_discount
    order.order_level_excess = totals.order_level_excess
    order.unauthorized_discount = totals.unauthorized_discount
    order.grand_total = totals.grand_total
    order.remaining_balance = totals.grand_total


# =============================================================================
# DRAFTS
# =============================================================================

def create_order(shop_id: int, booker_id: int, items: list[dict], notes: str | None = None) -> Order:
    """
    Create a draft order for a shop, pricing each item for the booker.

    Args:
        shop_id: Shop the order is taken at
        booker_id: Booker taking the order
        items: [{"product_id", "quantity", "discount_percent"}]
        notes: Optional free text

    Raises:
        NotFoundError: shop, booker or product missing
        InvalidInputError: bad quantity/percent
    """
    def _op() -> Order:
        shop = _get_shop(shop_id)
        booker = _get_user(booker_id, "booker")
        if not booker.is_active:
            raise InvalidInputError(f"Booker {booker.id} is inactive", {"booker_id": booker.id})

        order = Order(
            order_number=next_order_number(shop.branch_id),
            shop_id=shop.id,
            booker_id=booker.id,
            branch_id=shop.branch_id,
            status=OrderStatus.DRAFT.value,
            notes=notes,
        )
        db.session.add(order)
        _write_items(order, booker, items)
        db.session.commit()

        logger.info(
            "Created order %s for shop %s (grand total %s, unauthorized %s)",
            order.order_number, shop.shop_code, order.grand_total, order.unauthorized_discount,
        )
        return order

    return run_with_retry(_op)


def update_order_items(order_id: int, items: list[dict]) -> Order:
    """Replace a draft order's items and re-price them."""
    def _op() -> Order:
        order = _lock_order(order_id)
        if order.status != OrderStatus.DRAFT.value:
            raise IllegalStateTransitionError(
                order.status,
                OrderStatus.DRAFT.value,
                message=f"Items can only change while the order is draft (status is {order.status})",
            )
        _write_items(order, order.booker, items)
        order.unauthorized_acknowledged = False
        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# STATUS CHANGES
# =============================================================================

def submit_order(order_id: int, acknowledge_unauthorized: bool = False) -> Order:
    """
    Submit a draft order for KPO review and freeze its totals.

    Two-phase when the order carries unauthorized discount: the first call
    raises UnauthorizedDiscountNotAcknowledgedError with the amount and
    changes nothing; repeating it with acknowledge_unauthorized=True commits.
    Submitting an already submitted order returns it unchanged.
    """
    def _op() -> tuple[Order, bool]:
        order = _lock_order(order_id)
        if not check_transition(order.status, OrderStatus.SUBMITTED):
            return order, False

        if not order.items:
            raise InvalidInputError("Order has no items", {"order_id": order.id})
        shop = _get_shop(order.shop_id)
        if not shop.is_active:
            raise InvalidInputError(f"Shop {shop.shop_code} is inactive", {"shop_id": shop.id})

        totals = recalculate_frozen(order)
        if totals.has_unauthorized_discount and not acknowledge_unauthorized:
            raise UnauthorizedDiscountNotAcknowledgedError(totals.unauthorized_discount)

        _store_totals(order, totals)
        order.unauthorized_acknowledged = totals.has_unauthorized_discount
        order.status = OrderStatus.SUBMITTED.value
        order.submitted_at = utcnow()
        db.session.commit()
        return order, True

    order, submitted = run_with_retry(_op)
    if submitted:
        logger.info("Order %s submitted (grand total %s)", order.order_number, order.grand_total)
        if order.has_unauthorized_discount:
            run_best_effort("booker discount aggregate", record_unauthorized_discount, order.id)
    return order


def transition_order(
    order_id: int,
    target_status,
    *,
    actor_user_id: int | None = None,
    salesman_id: int | None = None,
    note: str | None = None,
) -> Order:
    """
    Move an order along the lifecycle.

    - submitted goes through submit_order (no acknowledgement)
    - load_form_ready creates the delivery record
    - assigned requires a salesman
    - delivered only happens through a recorded delivery payment

    Raises:
        IllegalStateTransitionError: transition not allowed from the current status
    """
    target = parse_status(target_status)
    if target == OrderStatus.SUBMITTED:
        return submit_order(order_id)

    def _op() -> Order:
        order = _lock_order(order_id)
        if not check_transition(order.status, target):
            return order

        now = utcnow()
        if target == OrderStatus.DELIVERED:
            if not _has_delivery_payment(order):
                raise IllegalStateTransitionError(
                    order.status,
                    target.value,
                    message="Record the delivery payment before marking the order delivered",
                )
        elif target == OrderStatus.FINALIZED:
            order.finalized_at = now
            order.finalized_by_user_id = actor_user_id
        elif target == OrderStatus.CANCELLED:
            order.cancelled_at = now
            order.cancelled_by_user_id = actor_user_id
        elif target == OrderStatus.LOAD_FORM_READY:
            ensure_delivery(order)
        elif target == OrderStatus.ASSIGNED:
            if salesman_id is None:
                raise InvalidInputError("salesman_id is required to assign an order")
            salesman = _get_user(salesman_id, "salesman")
            delivery = ensure_delivery(order, salesman_id=salesman.id)
            delivery.assigned_at = now

        previous = order.status
        order.status = target.value
        if note:
            order.status_note = note
        db.session.commit()

        logger.info("Order %s: %s -> %s", order.order_number, previous, target.value)
        return order

    return run_with_retry(_op)


def _has_delivery_payment(order: Order) -> bool:
    return (
        db.session.query(DeliveryPayment.id)
        .join(Delivery, Delivery.id == DeliveryPayment.delivery_id)
        .filter(Delivery.order_id == order.id)
        .first()
        is not None
    )


# =============================================================================
# QUERIES
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError(f"Order {order_id} not found", {"order_id": order_id})
    return order


def list_orders(
    *,
    branch_id: int | None = None,
    status: str | None = None,
    booker_id: int | None = None,
    shop_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Order], int]:
    query = db.session.query(Order)
    if branch_id:
        query = query.filter(Order.branch_id == branch_id)
    if status:
        query = query.filter(Order.status == parse_status(status).value)
    if booker_id:
        query = query.filter(Order.booker_id == booker_id)
    if shop_id:
        query = query.filter(Order.shop_id == shop_id)

    total = query.count()
    limit = max(1, min(limit, 500))
    orders = query.order_by(Order.created_at.desc(), Order.id.desc()).offset(max(0, offset)).limit(limit).all()
    return orders, total
