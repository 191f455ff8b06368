# Overview: Pytest coverage for delivery payments, outstanding collection and adjustments.

"""
Delivery Payment Tests

Every scenario runs against an order worth exactly 10000 (see the
deliverable_order fixture) and checks the three places money shows up:
the delivery, the outstanding record and the branch ledger.
"""

from decimal import Decimal

import pytest

from routecash.errors import (
    AmountOutOfRangeError,
    DefaultAmountNotConfirmedError,
    DuplicatePostingError,
    IllegalStateTransitionError,
    InvalidInputError,
)
from routecash.models import Delivery, DeliveryPayment, LedgerEntry, Order, OutstandingPayment
from routecash.services import delivery_service, order_service
from routecash.services.delivery_service import (
    adjust_delivery_payment,
    collect_outstanding_payment,
    record_delivery_payment,
)


def _delivery(db_session, order):
    return db_session.query(Delivery).filter_by(order_id=order.id).one()


def _ledger(db_session, order):
    return (
        db_session.query(LedgerEntry)
        .filter_by(order_id=order.id)
        .order_by(LedgerEntry.id.asc())
        .all()
    )


def _net_cash(db_session, order):
    return sum((e.net_cash for e in _ledger(db_session, order)), Decimal("0"))


def _assert_balanced(delivery):
    assert delivery.paid_amount + delivery.remaining_balance == delivery.total_amount
    assert sum((p.amount for p in delivery.payments), Decimal("0")) == delivery.paid_amount


class TestPartialDelivery:

    def test_partial_payment_opens_outstanding(self, db_session, deliverable_order, salesman):
        """10000 order, 6000 collected: PARTIAL with 4000 outstanding."""
        delivery = _delivery(db_session, deliverable_order)

        outcome = record_delivery_payment(delivery.id, "6000", sequence=1, actor_user_id=salesman.id)

        assert outcome.replayed is False
        assert outcome.defaulted is False
        delivery = outcome.delivery
        assert delivery.paid_amount == Decimal("6000")
        assert delivery.remaining_balance == Decimal("4000")
        assert delivery.payment_status == "PARTIAL"
        assert delivery.delivered_at is not None
        _assert_balanced(delivery)

        order = db_session.get(Order, deliverable_order.id)
        assert order.status == "delivered"
        assert order.payment_status == "PARTIAL"
        assert order.remaining_balance == Decimal("4000")

        outstanding = db_session.query(OutstandingPayment).filter_by(order_id=order.id).one()
        assert outstanding.remaining_balance == Decimal("4000")
        assert outstanding.credit_status == "PARTIAL"

        entries = _ledger(db_session, order)
        assert [(e.entry_type, e.net_cash) for e in entries] == [
            ("SALE_DELIVERED", Decimal("10000")),
            ("ADJUSTMENT", Decimal("-4000")),
        ]
        assert entries[1].payment_sequence == 1
        assert _net_cash(db_session, order) == Decimal("6000")

    def test_collecting_the_rest_clears_outstanding(self, db_session, deliverable_order, salesman):
        delivery = _delivery(db_session, deliverable_order)
        record_delivery_payment(delivery.id, "6000", sequence=1, actor_user_id=salesman.id)

        outcome = collect_outstanding_payment(deliverable_order.id, "4000", sequence=2, actor_user_id=salesman.id)

        assert outcome.delivery.payment_status == "PAID"
        assert outcome.delivery.remaining_balance == Decimal("0")
        assert outcome.payment.kind == "COLLECTION"
        _assert_balanced(outcome.delivery)
        assert db_session.query(OutstandingPayment).filter_by(order_id=deliverable_order.id).count() == 0

        payment_entries = (
            db_session.query(LedgerEntry)
            .filter_by(order_id=deliverable_order.id, entry_type="PAYMENT")
            .all()
        )
        assert len(payment_entries) == 1
        assert payment_entries[0].net_cash == Decimal("4000")
        assert payment_entries[0].payment_sequence == 2
        assert _net_cash(db_session, deliverable_order) == Decimal("10000")

    def test_pay_4000_then_6000(self, db_session, deliverable_order):
        delivery = _delivery(db_session, deliverable_order)

        first = record_delivery_payment(delivery.id, "4000", sequence=1)
        assert first.delivery.payment_status == "PARTIAL"
        assert first.delivery.remaining_balance == Decimal("6000")

        second = collect_outstanding_payment(deliverable_order.id, "6000", sequence=2)
        assert second.delivery.payment_status == "PAID"
        assert second.delivery.remaining_balance == Decimal("0")
        _assert_balanced(second.delivery)

    def test_nothing_collected_is_full_credit(self, db_session, deliverable_order, salesman):
        delivery = _delivery(db_session, deliverable_order)
        outcome = record_delivery_payment(delivery.id, 0, sequence=1, actor_user_id=salesman.id)

        assert outcome.delivery.payment_status == "UNPAID"
        outstanding = db_session.query(OutstandingPayment).filter_by(order_id=deliverable_order.id).one()
        assert outstanding.credit_status == "FULL_CREDIT"
        assert outstanding.remaining_balance == Decimal("10000")
        assert _net_cash(db_session, deliverable_order) == Decimal("0")

    def test_collections_step_down_the_balance(self, db_session, deliverable_order, salesman):
        delivery = _delivery(db_session, deliverable_order)
        record_delivery_payment(delivery.id, "2500.50", sequence=1)
        collect_outstanding_payment(deliverable_order.id, "2500", sequence=2)
        outcome = collect_outstanding_payment(deliverable_order.id, "1000.25", sequence=3)

        assert outcome.delivery.paid_amount == Decimal("6000.75")
        assert outcome.delivery.remaining_balance == Decimal("3999.25")
        _assert_balanced(outcome.delivery)
        assert [p.paid_after for p in outcome.delivery.payments] == [
            Decimal("2500.50"), Decimal("5000.50"), Decimal("6000.75"),
        ]
        assert _net_cash(db_session, deliverable_order) == Decimal("6000.75")


class TestFullPaymentAdjustment:

    def test_wrongly_marked_paid_is_reopened(self, db_session, deliverable_order, salesman, kpo):
        """Marked 10000 paid, really 7000: 3000 reopened as outstanding."""
        delivery = _delivery(db_session, deliverable_order)
        record_delivery_payment(delivery.id, "10000", sequence=1, actor_user_id=salesman.id)
        assert db_session.query(OutstandingPayment).filter_by(order_id=deliverable_order.id).count() == 0

        outcome = adjust_delivery_payment(
            delivery.id, "7000", "Shop paid 7000, not 10000", sequence=2, actor_user_id=kpo.id,
        )

        delivery = outcome.delivery
        assert delivery.paid_amount == Decimal("7000")
        assert delivery.remaining_balance == Decimal("3000")
        assert delivery.payment_status == "PARTIAL"
        assert outcome.payment.kind == "ADJUSTMENT"
        assert outcome.payment.amount == Decimal("-3000")
        _assert_balanced(delivery)

        outstanding = db_session.query(OutstandingPayment).filter_by(order_id=deliverable_order.id).one()
        assert outstanding.remaining_balance == Decimal("3000")
        assert outstanding.credit_status == "PARTIAL"

        adjustment = (
            db_session.query(LedgerEntry)
            .filter_by(order_id=deliverable_order.id, entry_type="ADJUSTMENT")
            .one()
        )
        assert adjustment.net_cash == Decimal("-3000")
        assert adjustment.notes == "Shop paid 7000, not 10000"
        assert _net_cash(db_session, deliverable_order) == Decimal("7000")

    def test_adjust_to_zero(self, db_session, deliverable_order):
        delivery = _delivery(db_session, deliverable_order)
        record_delivery_payment(delivery.id, "10000", sequence=1)
        outcome = adjust_delivery_payment(delivery.id, "0", "Nothing was collected", sequence=2)

        assert outcome.delivery.payment_status == "UNPAID"
        outstanding = db_session.query(OutstandingPayment).filter_by(order_id=deliverable_order.id).one()
        assert outstanding.credit_status == "FULL_CREDIT"

    @pytest.mark.parametrize("new_amount", ["10000", "12000", "-1"])
    def test_adjustment_must_reduce(self, db_session, deliverable_order, new_amount):
        delivery = _delivery(db_session, deliverable_order)
        record_delivery_payment(delivery.id, "10000", sequence=1)

        with pytest.raises(AmountOutOfRangeError):
            adjust_delivery_payment(delivery.id, new_amount, "Correction", sequence=2)

        db_session.expire_all()
        assert _delivery(db_session, deliverable_order).paid_amount == Decimal("10000")

    def test_adjustment_requires_paid_status(self, db_session, deliverable_order):
        delivery = _delivery(db_session, deliverable_order)
        record_delivery_payment(delivery.id, "6000", sequence=1)

        with pytest.raises(IllegalStateTransitionError):
            adjust_delivery_payment(delivery.id, "5000", "Correction", sequence=2)

    @pytest.mark.parametrize("notes", [None, "", "   "])
    def test_adjustment_requires_reason(self, db_session, deliverable_order, notes):
        delivery = _delivery(db_session, deliverable_order)
        record_delivery_payment(delivery.id, "10000", sequence=1)

        with pytest.raises(InvalidInputError):
            adjust_delivery_payment(delivery.id, "7000", notes, sequence=2)


class TestDefaultAmount:

    def test_missing_amount_needs_confirmation(self, db_session, deliverable_order):
        delivery = _delivery(db_session, deliverable_order)

        with pytest.raises(DefaultAmountNotConfirmedError) as exc:
            record_delivery_payment(delivery.id, None, sequence=1)
        assert exc.value.proposed_amount == Decimal("10000")

        db_session.expire_all()
        assert _delivery(db_session, deliverable_order).payment_status == "UNPAID"
        assert db_session.query(DeliveryPayment).count() == 0
        assert db_session.get(Order, deliverable_order.id).status == "assigned"

    def test_confirmed_default_collects_everything(self, db_session, deliverable_order):
        delivery = _delivery(db_session, deliverable_order)
        outcome = record_delivery_payment(delivery.id, "not-a-number", sequence=1, confirm_default=True)

        assert outcome.defaulted is True
        assert outcome.delivery.payment_status == "PAID"
        assert outcome.delivery.paid_amount == Decimal("10000")


class TestPaymentGuards:

    @pytest.mark.parametrize("amount", ["-1", "10000.01", "15000"])
    def test_amount_out_of_range(self, db_session, deliverable_order, amount):
        delivery = _delivery(db_session, deliverable_order)

        with pytest.raises(AmountOutOfRangeError) as exc:
            record_delivery_payment(delivery.id, amount, sequence=1)
        assert exc.value.maximum == Decimal("10000")

        db_session.expire_all()
        assert db_session.query(LedgerEntry).count() == 0
        assert db_session.get(Order, deliverable_order.id).status == "assigned"

    def test_order_must_be_deliverable(self, db_session, shop, booker, product):
        order = order_service.create_order(shop.id, booker.id, [{"product_id": product.id, "quantity": 1}])
        order_service.submit_order(order.id)
        order_service.transition_order(order.id, "finalized")
        order_service.transition_order(order.id, "billed")
        order_service.transition_order(order.id, "load_form_ready")
        delivery = _delivery(db_session, order)

        # Pull the order back out of a deliverable state behind the service's back
        db_session.get(Order, order.id).status = "billed"
        db_session.commit()

        with pytest.raises(IllegalStateTransitionError):
            record_delivery_payment(delivery.id, "10", sequence=1)

    def test_delivers_straight_from_load_form(self, db_session, shop, booker, kpo, salesman, product, advance_order):
        order = order_service.create_order(shop.id, booker.id, [{"product_id": product.id, "quantity": 2}])
        order = advance_order(order.id, kpo_id=kpo.id)
        assert order.status == "load_form_ready"

        outcome = record_delivery_payment(_delivery(db_session, order).id, "200", sequence=1, actor_user_id=salesman.id)
        assert outcome.delivery.salesman_id == salesman.id
        assert db_session.get(Order, order.id).status == "delivered"

    @pytest.mark.parametrize("amount", ["0", "-5", "4000.01"])
    def test_collection_range(self, db_session, deliverable_order, amount):
        delivery = _delivery(db_session, deliverable_order)
        record_delivery_payment(delivery.id, "6000", sequence=1)

        with pytest.raises(AmountOutOfRangeError):
            collect_outstanding_payment(deliverable_order.id, amount, sequence=2)

    def test_collection_needs_a_number(self, db_session, deliverable_order):
        delivery = _delivery(db_session, deliverable_order)
        record_delivery_payment(delivery.id, "6000", sequence=1)

        with pytest.raises(InvalidInputError):
            collect_outstanding_payment(deliverable_order.id, None, sequence=2)

    def test_collection_before_delivery(self, db_session, deliverable_order):
        with pytest.raises(IllegalStateTransitionError):
            collect_outstanding_payment(deliverable_order.id, "100", sequence=1)

    def test_too_many_decimal_places(self, db_session, deliverable_order):
        delivery = _delivery(db_session, deliverable_order)
        with pytest.raises(InvalidInputError):
            record_delivery_payment(delivery.id, "10.001", sequence=1)


class TestIdempotency:

    def test_replayed_delivery_payment(self, db_session, deliverable_order):
        """Same key, same amount: original result, nothing new posted."""
        delivery = _delivery(db_session, deliverable_order)
        first = record_delivery_payment(delivery.id, "6000", sequence=1)
        second = record_delivery_payment(delivery.id, "6000", sequence=1)

        assert second.replayed is True
        assert second.payment.id == first.payment.id
        assert second.delivery.paid_amount == Decimal("6000")
        assert db_session.query(DeliveryPayment).count() == 1
        assert len(_ledger(db_session, deliverable_order)) == 2

    def test_replayed_with_different_amount(self, db_session, deliverable_order):
        delivery = _delivery(db_session, deliverable_order)
        record_delivery_payment(delivery.id, "6000", sequence=1)

        with pytest.raises(DuplicatePostingError):
            record_delivery_payment(delivery.id, "5000", sequence=1)

    def test_replayed_collection(self, db_session, deliverable_order):
        delivery = _delivery(db_session, deliverable_order)
        record_delivery_payment(delivery.id, "6000", sequence=1)
        collect_outstanding_payment(deliverable_order.id, "1000", sequence=2)
        again = collect_outstanding_payment(deliverable_order.id, "1000", sequence=2)

        assert again.replayed is True
        assert again.delivery.paid_amount == Decimal("7000")
        assert db_session.query(LedgerEntry).filter_by(entry_type="PAYMENT").count() == 1

    def test_adjustment_key_cannot_be_reused_as_collection(self, db_session, deliverable_order):
        delivery = _delivery(db_session, deliverable_order)
        record_delivery_payment(delivery.id, "10000", sequence=1)
        adjust_delivery_payment(delivery.id, "7000", "Correction", sequence=2)

        with pytest.raises(DuplicatePostingError):
            collect_outstanding_payment(deliverable_order.id, "100", sequence=2)

        replay = adjust_delivery_payment(delivery.id, "7000", "Correction", sequence=2)
        assert replay.replayed is True

    def test_sequence_cannot_skip_ahead(self, db_session, deliverable_order):
        delivery = _delivery(db_session, deliverable_order)
        with pytest.raises(InvalidInputError):
            record_delivery_payment(delivery.id, "6000", sequence=3)

    def test_sequence_assigned_when_omitted(self, db_session, deliverable_order):
        delivery = _delivery(db_session, deliverable_order)
        first = record_delivery_payment(delivery.id, "6000")
        second = collect_outstanding_payment(deliverable_order.id, "500")
        assert (first.payment.sequence, second.payment.sequence) == (1, 2)


class TestPaymentSummary:

    def test_summary_includes_history(self, db_session, deliverable_order):
        delivery = _delivery(db_session, deliverable_order)
        record_delivery_payment(delivery.id, "6000", sequence=1, notes="At the door")
        collect_outstanding_payment(deliverable_order.id, "1500", sequence=2)

        summary = delivery_service.get_payment_summary(delivery.id)
        assert summary["payment_status"] == "PARTIAL"
        assert summary["history_total"] == summary["paid_amount"]
        assert [p["kind"] for p in summary["payment_history"]] == ["DELIVERY", "COLLECTION"]
        assert summary["payment_history"][0]["notes"] == "At the door"
