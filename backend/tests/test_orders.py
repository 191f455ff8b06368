# Overview: Pytest coverage for order creation, submission and lifecycle guards.

from decimal import Decimal

import pytest

from routecash.errors import (
    IllegalStateTransitionError,
    InvalidInputError,
    NotFoundError,
    UnauthorizedDiscountNotAcknowledgedError,
)
from routecash.extensions import db
from routecash.models import BookerDiscountMonth, Delivery, Order, Product
from routecash.services import order_service
from routecash.services.order_state import OrderStatus
from routecash.services.order_totals import recalculate_frozen


class TestCreateOrder:

    def test_creates_priced_draft(self, db_session, branch, shop, booker, product):
        """Draft carries line snapshots, totals and a branch-scoped number."""
        order = order_service.create_order(
            shop_id=shop.id,
            booker_id=booker.id,
            items=[{"product_id": product.id, "quantity": 10, "discount_percent": 20}],
        )

        assert order.status == "draft"
        assert order.order_number == f"ORD-{branch.id:03d}-00001"
        assert order.branch_id == branch.id
        assert order.subtotal == Decimal("1000")
        assert order.total_discount == Decimal("200")
        assert order.grand_total == Decimal("800")
        assert order.unauthorized_discount == Decimal("150")

        item = order.items[0]
        assert item.product_name == product.name
        assert item.unit_price == Decimal("100")
        assert item.max_allowed_discount == Decimal("5")
        assert item.is_unauthorized_discount is True

    def test_numbers_increase_per_branch(self, db_session, branch, shop, booker, product):
        first = order_service.create_order(shop.id, booker.id, [])
        second = order_service.create_order(shop.id, booker.id, [])
        assert first.order_number.endswith("00001")
        assert second.order_number.endswith("00002")

    def test_missing_references(self, db_session, shop, booker, product):
        with pytest.raises(NotFoundError):
            order_service.create_order(99999, booker.id, [])
        with pytest.raises(NotFoundError):
            order_service.create_order(shop.id, 99999, [])
        with pytest.raises(NotFoundError):
            order_service.create_order(shop.id, booker.id, [{"product_id": 99999, "quantity": 1}])

    def test_invalid_quantity_creates_nothing(self, db_session, shop, booker, product):
        with pytest.raises(InvalidInputError):
            order_service.create_order(shop.id, booker.id, [{"product_id": product.id, "quantity": -2}])
        assert db_session.query(Order).count() == 0

    def test_update_items_only_while_draft(self, db_session, shop, booker, product):
        order = order_service.create_order(shop.id, booker.id, [{"product_id": product.id, "quantity": 1}])
        order = order_service.update_order_items(order.id, [{"product_id": product.id, "quantity": 3, "discount_percent": 5}])
        assert len(order.items) == 1
        assert order.grand_total == Decimal("285")

        order_service.submit_order(order.id)
        with pytest.raises(IllegalStateTransitionError):
            order_service.update_order_items(order.id, [{"product_id": product.id, "quantity": 5}])


class TestSubmitOrder:

    def test_unauthorized_requires_acknowledgement(self, db_session, shop, booker, product):
        """First submit returns the amount and changes nothing."""
        order = order_service.create_order(
            shop.id, booker.id, [{"product_id": product.id, "quantity": 10, "discount_percent": 20}]
        )

        with pytest.raises(UnauthorizedDiscountNotAcknowledgedError) as exc:
            order_service.submit_order(order.id)
        assert exc.value.unauthorized_amount == Decimal("150")
        assert exc.value.to_dict()["requires_confirmation"] is True

        db_session.expire_all()
        assert db_session.get(Order, order.id).status == "draft"
        assert db_session.query(BookerDiscountMonth).count() == 0

        submitted = order_service.submit_order(order.id, acknowledge_unauthorized=True)
        assert submitted.status == "submitted"
        assert submitted.unauthorized_acknowledged is True
        assert submitted.submitted_at is not None

    def test_clean_order_submits_directly(self, db_session, shop, booker, product):
        order = order_service.create_order(shop.id, booker.id, [{"product_id": product.id, "quantity": 2, "discount_percent": 5}])
        assert order_service.submit_order(order.id).status == "submitted"

    def test_resubmit_is_noop(self, db_session, shop, booker, product):
        order = order_service.create_order(shop.id, booker.id, [{"product_id": product.id, "quantity": 2}])
        first = order_service.submit_order(order.id)
        submitted_at = first.submitted_at
        again = order_service.submit_order(order.id)
        assert again.status == "submitted"
        assert again.submitted_at == submitted_at

    def test_empty_order_rejected(self, db_session, shop, booker):
        order = order_service.create_order(shop.id, booker.id, [])
        with pytest.raises(InvalidInputError):
            order_service.submit_order(order.id)

    def test_inactive_shop_rejected(self, db_session, shop, booker, product):
        order = order_service.create_order(shop.id, booker.id, [{"product_id": product.id, "quantity": 1}])
        shop.is_active = False
        db_session.commit()
        with pytest.raises(InvalidInputError):
            order_service.submit_order(order.id)

    def test_frozen_totals_recompute_exactly(self, db_session, shop, booker, product, bulk_product):
        """Catalog price changes after submission do not move frozen totals."""
        order = order_service.create_order(
            shop.id,
            booker.id,
            [
                {"product_id": product.id, "quantity": "7", "discount_percent": "4.75"},
                {"product_id": bulk_product.id, "quantity": "3", "discount_percent": "12.5"},
            ],
        )
        order = order_service.submit_order(order.id, acknowledge_unauthorized=True)

        product.unit_price = Decimal("999")
        db_session.commit()
        db_session.expire_all()

        order = db_session.get(Order, order.id)
        totals = recalculate_frozen(order)
        assert totals.subtotal == order.subtotal
        assert totals.total_discount == order.total_discount
        assert totals.allowed_discount == order.allowed_discount
        assert totals.unauthorized_discount == order.unauthorized_discount
        assert totals.grand_total == order.grand_total

    def test_cent_price_and_percent_survive_reload(self, db_session, shop, booker):
        """Stored columns hold every digit of a 0.99 x 3.33% line."""
        product = Product(sku="NIM-099", name="Nimco Sachet", category="nimco", unit_price=Decimal("0.99"))
        db_session.add(product)
        db_session.commit()

        order = order_service.create_order(
            shop.id,
            booker.id,
            [{"product_id": product.id, "quantity": "13", "discount_percent": "3.33"}],
        )
        order = order_service.submit_order(order.id)
        db_session.expire_all()

        order = db_session.get(Order, order.id)
        assert order.total_discount == Decimal("0.428571")
        totals = recalculate_frozen(order)
        assert totals.subtotal == order.subtotal
        assert totals.total_discount == order.total_discount
        assert totals.allowed_discount == order.allowed_discount
        assert totals.unauthorized_discount == order.unauthorized_discount
        assert totals.grand_total == order.grand_total

    def test_fractional_quantity_rejected(self, db_session, shop, booker, product):
        with pytest.raises(InvalidInputError):
            order_service.create_order(
                shop.id, booker.id, [{"product_id": product.id, "quantity": "1.25", "discount_percent": "3.33"}]
            )
        assert db_session.query(Order).count() == 0


class TestTransitions:

    def test_illegal_transition_leaves_order_unchanged(self, db_session, shop, booker, product):
        order = order_service.create_order(shop.id, booker.id, [{"product_id": product.id, "quantity": 1}])
        with pytest.raises(IllegalStateTransitionError) as exc:
            order_service.transition_order(order.id, "billed")
        assert exc.value.details == {"current": "draft", "attempted": "billed"}

        db_session.expire_all()
        assert db_session.get(Order, order.id).status == "draft"

    def test_load_form_creates_delivery(self, db_session, shop, booker, kpo, product, advance_order):
        order = order_service.create_order(shop.id, booker.id, [{"product_id": product.id, "quantity": 10}])
        order = advance_order(order.id, kpo_id=kpo.id)

        assert order.status == "load_form_ready"
        delivery = db_session.query(Delivery).filter_by(order_id=order.id).one()
        assert delivery.total_amount == Decimal("1000")
        assert delivery.remaining_balance == Decimal("1000")
        assert delivery.payment_status == "UNPAID"

    def test_assign_requires_salesman(self, db_session, shop, booker, kpo, product, advance_order):
        order = order_service.create_order(shop.id, booker.id, [{"product_id": product.id, "quantity": 1}])
        advance_order(order.id, kpo_id=kpo.id)
        with pytest.raises(InvalidInputError):
            order_service.transition_order(order.id, OrderStatus.ASSIGNED)

    def test_assign_records_salesman(self, db_session, deliverable_order, salesman):
        assert deliverable_order.status == "assigned"
        delivery = db_session.query(Delivery).filter_by(order_id=deliverable_order.id).one()
        assert delivery.salesman_id == salesman.id
        assert delivery.assigned_at is not None

    def test_delivered_requires_recorded_payment(self, db_session, deliverable_order):
        with pytest.raises(IllegalStateTransitionError):
            order_service.transition_order(deliverable_order.id, "delivered")
        db_session.expire_all()
        assert db_session.get(Order, deliverable_order.id).status == "assigned"

    def test_cancel_and_reject(self, db_session, shop, booker, kpo, product):
        draft = order_service.create_order(shop.id, booker.id, [{"product_id": product.id, "quantity": 1}])
        cancelled = order_service.transition_order(draft.id, "cancelled", actor_user_id=booker.id)
        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_by_user_id == booker.id

        other = order_service.create_order(shop.id, booker.id, [{"product_id": product.id, "quantity": 1}])
        order_service.submit_order(other.id)
        rejected = order_service.transition_order(other.id, "rejected", actor_user_id=kpo.id, note="Shop closed")
        assert rejected.status == "rejected"
        assert rejected.status_note == "Shop closed"

        with pytest.raises(IllegalStateTransitionError):
            order_service.transition_order(other.id, "finalized")

    def test_orders_are_never_deleted(self, db_session, shop, booker, product):
        order = order_service.create_order(shop.id, booker.id, [{"product_id": product.id, "quantity": 1}])
        order_service.transition_order(order.id, "cancelled")
        assert db.session.get(Order, order.id) is not None
