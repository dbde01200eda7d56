"""
Tests for the order status state machine and its side effects.
"""

import itertools
from decimal import Decimal

import pytest

from orderflow.models import (
    Order, Variant, InventoryLogEntry, Tracking, TrackingUpdate, Payment, Refund, PartnerEarning,
)
from orderflow.services import checkout_service, order_lifecycle_service as lifecycle
from orderflow.services.order_lifecycle_service import (
    InvalidTransition, TransitionContext, ALLOWED_TRANSITIONS, VALID_STATUSES,
    PENDING, PROCESSING, PAID, SHIPPED, DELIVERED, CANCELLED, REFUNDED,
)
from orderflow.services.payment_gateway import ExternalCollaboratorFailure
from orderflow.validation import NotFoundError

from conftest import USER_ID, ADMIN_ID, add_cart_line


# Shortest legal path from PENDING to each status
PATHS = {
    PENDING: [],
    PROCESSING: [PROCESSING],
    PAID: [PAID],
    SHIPPED: [PROCESSING, SHIPPED],
    DELIVERED: [PROCESSING, SHIPPED, DELIVERED],
    CANCELLED: [CANCELLED],
    REFUNDED: [PAID, REFUNDED],
}


@pytest.fixture
def place_order(db_session, make_variant, address):
    def _place(quantity=2, price="50.00", stock=10, coupon_code=None, payment=None):
        v = make_variant(price=price, quantity=stock)
        add_cart_line(db_session, v, quantity)
        order = checkout_service.checkout(USER_ID, address.id, coupon_code=coupon_code, payment=payment)
        return order, v

    return _place


def _drive(order_id, path):
    for status in path:
        lifecycle.transition(order_id, status, TransitionContext(actor_id=ADMIN_ID))


class TestTransitionTable:
    def test_table_matches_documented_edges(self):
        assert ALLOWED_TRANSITIONS[PENDING] == {PROCESSING, PAID, CANCELLED}
        assert ALLOWED_TRANSITIONS[PROCESSING] == {PAID, SHIPPED, CANCELLED}
        assert ALLOWED_TRANSITIONS[PAID] == {PROCESSING, SHIPPED, CANCELLED, REFUNDED}
        assert ALLOWED_TRANSITIONS[SHIPPED] == {DELIVERED, PROCESSING, CANCELLED}
        assert ALLOWED_TRANSITIONS[DELIVERED] == {REFUNDED}
        assert ALLOWED_TRANSITIONS[CANCELLED] == {REFUNDED}
        assert ALLOWED_TRANSITIONS[REFUNDED] == set()

    @pytest.mark.parametrize(
        "source,target",
        [
            (s, t) for s, t in itertools.product(VALID_STATUSES, VALID_STATUSES)
            if t not in ALLOWED_TRANSITIONS[s]
        ],
    )
    def test_rejected_pairs_have_no_side_effects(self, db_session, place_order, gateway, source, target):
        order, v = place_order()
        _drive(order.id, PATHS[source])

        before_status = db_session.get(Order, order.id).status
        before_stock = db_session.get(Variant, v.id).quantity
        before_logs = db_session.query(InventoryLogEntry).count()
        before_updates = db_session.query(TrackingUpdate).count()
        before_refunds = len(gateway.refunds)

        with pytest.raises(InvalidTransition) as exc:
            lifecycle.transition(order.id, target, TransitionContext(actor_id=ADMIN_ID))
        assert exc.value.details["from_status"] == source

        db_session.expire_all()
        assert db_session.get(Order, order.id).status == before_status == source
        assert db_session.get(Variant, v.id).quantity == before_stock
        assert db_session.query(InventoryLogEntry).count() == before_logs
        assert db_session.query(TrackingUpdate).count() == before_updates
        assert len(gateway.refunds) == before_refunds

    def test_pending_to_delivered_is_rejected(self, db_session, place_order):
        order, _ = place_order()
        with pytest.raises(InvalidTransition):
            lifecycle.transition(order.id, DELIVERED)
        db_session.expire_all()
        assert db_session.get(Order, order.id).status == PENDING

    def test_unknown_status_is_rejected(self, db_session, place_order):
        order, _ = place_order()
        with pytest.raises(InvalidTransition):
            lifecycle.transition(order.id, "LOST")

    def test_unknown_order(self, db_session):
        with pytest.raises(NotFoundError):
            lifecycle.transition(424242, PROCESSING)


class TestSideEffects:
    def test_cancel_returns_stock_with_one_log_per_item(self, db_session, place_order):
        order, v = place_order(quantity=3, stock=10)
        assert db_session.get(Variant, v.id).quantity == 7

        lifecycle.transition(order.id, CANCELLED, TransitionContext(actor_id=ADMIN_ID, notes="Customer request"))

        db_session.expire_all()
        o = db_session.get(Order, order.id)
        assert o.status == CANCELLED
        assert o.cancel_reason == "Customer request"
        assert o.cancelled_by == ADMIN_ID
        assert o.cancelled_at is not None
        assert db_session.get(Variant, v.id).quantity == 10

        returns = db_session.query(InventoryLogEntry).filter_by(reason="return").all()
        assert len(returns) == 1
        assert (returns[0].previous_quantity, returns[0].new_quantity) == (7, 10)
        assert returns[0].reference_id == str(order.id)

    def test_cancel_with_failing_carrier_still_commits(self, db_session, place_order, carrier):
        order, v = place_order(quantity=1)
        assert db_session.get(Order, order.id).carrier_order_id == "CO-1"

        carrier.fail_cancel = True
        lifecycle.transition(order.id, CANCELLED, TransitionContext(actor_id=ADMIN_ID))

        db_session.expire_all()
        o = db_session.get(Order, order.id)
        assert o.status == CANCELLED
        assert o.carrier_status == "AWB_ASSIGNED"
        assert carrier.cancelled == []

    def test_cancel_requests_carrier_cancellation(self, db_session, place_order, carrier):
        order, _ = place_order(quantity=1)
        lifecycle.transition(order.id, CANCELLED, TransitionContext(actor_id=ADMIN_ID))

        db_session.expire_all()
        assert carrier.cancelled == ["CO-1"]
        assert db_session.get(Order, order.id).carrier_status == "CANCELLED"

    def test_shipped_creates_tracking_with_placeholder_number(self, db_session, place_order):
        order, _ = place_order()
        _drive(order.id, [PROCESSING, SHIPPED])

        tracking = db_session.query(Tracking).filter_by(order_id=order.id).one()
        assert tracking.tracking_number.startswith("SHP")
        assert tracking.carrier == "Default Carrier"
        assert tracking.status == SHIPPED
        assert tracking.shipped_at is not None
        assert [(u.status, u.location, u.description) for u in tracking.updates] == [
            (SHIPPED, "Warehouse", "Order has been shipped"),
        ]

    def test_shipped_uses_supplied_tracking_details(self, db_session, place_order):
        order, _ = place_order()
        lifecycle.transition(order.id, PROCESSING)
        lifecycle.transition(order.id, SHIPPED, TransitionContext(tracking_number="TRK-1", carrier="Delhivery"))

        tracking = db_session.query(Tracking).filter_by(order_id=order.id).one()
        assert (tracking.tracking_number, tracking.carrier) == ("TRK-1", "Delhivery")

    def test_delivered_updates_tracking(self, db_session, place_order):
        order, _ = place_order()
        _drive(order.id, PATHS[DELIVERED])

        tracking = db_session.query(Tracking).filter_by(order_id=order.id).one()
        assert tracking.status == DELIVERED
        assert tracking.delivered_at is not None
        assert [u.status for u in tracking.updates] == [SHIPPED, DELIVERED]
        assert tracking.updates[-1].location == "Delivery address"

    def test_paid_captures_created_payment(self, db_session, place_order):
        order, _ = place_order(payment={"gateway": "fake", "payment_id": "pay_1"})
        assert db_session.query(Payment).one().status == "CREATED"

        lifecycle.transition(order.id, PAID)

        payment = db_session.query(Payment).one()
        assert payment.status == "CAPTURED"
        assert payment.captured_at is not None

    def test_refund_calls_gateway_with_order_total(self, db_session, place_order, gateway):
        order, _ = place_order(quantity=2, price="50.00", payment={"gateway": "fake", "payment_id": "pay_2"})
        lifecycle.transition(order.id, PAID)
        lifecycle.transition(order.id, REFUNDED, TransitionContext(actor_id=ADMIN_ID, notes="Damaged in transit"))

        assert gateway.refunds == [("pay_2", Decimal("100.00"), "Damaged in transit")]
        refund = db_session.query(Refund).one()
        assert refund.gateway_refund_id == "rfnd_1"
        assert refund.amount == Decimal("100.00")
        assert db_session.query(Payment).one().status == "REFUNDED"
        o = db_session.get(Order, order.id)
        assert o.status == REFUNDED
        assert o.refunded_at is not None

    def test_refund_failure_keeps_order_paid(self, db_session, place_order, gateway):
        order, _ = place_order(payment={"gateway": "fake", "payment_id": "pay_3"})
        lifecycle.transition(order.id, PAID)

        gateway.fail = True
        with pytest.raises(ExternalCollaboratorFailure):
            lifecycle.transition(order.id, REFUNDED, TransitionContext(actor_id=ADMIN_ID))

        db_session.expire_all()
        assert db_session.get(Order, order.id).status == PAID
        assert db_session.query(Payment).one().status == "CAPTURED"
        assert db_session.query(Refund).count() == 0

    def test_refund_without_payment_record(self, db_session, place_order, gateway):
        order, _ = place_order()
        lifecycle.transition(order.id, PAID)
        lifecycle.transition(order.id, REFUNDED)

        assert gateway.refunds == []
        assert db_session.get(Order, order.id).status == REFUNDED

    def test_notes_are_appended_to_order(self, db_session, place_order):
        order, _ = place_order()
        lifecycle.transition(order.id, PROCESSING, TransitionContext(notes="Picked"))
        lifecycle.transition(order.id, SHIPPED, TransitionContext(notes="Handed to courier"))

        notes = db_session.get(Order, order.id).notes
        assert notes.splitlines() == ["[PROCESSING] Picked", "[SHIPPED] Handed to courier"]


class TestSecondaryEdges:
    def test_processing_to_paid_captures_payment(self, db_session, place_order):
        order, _ = place_order(payment={"gateway": "fake", "payment_id": "pay_4"})
        _drive(order.id, [PROCESSING, PAID])

        assert db_session.get(Order, order.id).status == PAID
        assert db_session.query(Payment).one().status == "CAPTURED"

    def test_paid_order_ships_directly(self, db_session, place_order):
        order, _ = place_order()
        _drive(order.id, [PAID, SHIPPED])

        assert db_session.get(Order, order.id).status == SHIPPED
        tracking = db_session.query(Tracking).filter_by(order_id=order.id).one()
        assert [u.status for u in tracking.updates] == [SHIPPED]

    def test_shipped_order_can_return_to_processing_and_reship(self, db_session, place_order):
        order, _ = place_order()
        _drive(order.id, [PROCESSING, SHIPPED, PROCESSING])
        assert db_session.get(Order, order.id).status == PROCESSING

        lifecycle.transition(order.id, SHIPPED, TransitionContext(tracking_number="TRK-2"))

        tracking = db_session.query(Tracking).filter_by(order_id=order.id).one()
        assert tracking.tracking_number == "TRK-2"
        assert [u.status for u in tracking.updates] == [SHIPPED, SHIPPED]

    def test_cancelled_paid_order_is_refunded(self, db_session, place_order, gateway):
        order, v = place_order(quantity=2, price="50.00", stock=10, payment={"gateway": "fake", "payment_id": "pay_5"})
        _drive(order.id, [PAID, CANCELLED])
        assert db_session.get(Variant, v.id).quantity == 10

        lifecycle.transition(order.id, REFUNDED, TransitionContext(actor_id=ADMIN_ID, notes="Cancelled after payment"))

        db_session.expire_all()
        assert gateway.refunds == [("pay_5", Decimal("100.00"), "Cancelled after payment")]
        assert db_session.query(Refund).one().amount == Decimal("100.00")
        assert db_session.query(Payment).one().status == "REFUNDED"
        o = db_session.get(Order, order.id)
        assert o.status == REFUNDED
        assert o.refunded_at is not None
        # stock already came back on cancel
        assert db_session.get(Variant, v.id).quantity == 10
        assert db_session.query(InventoryLogEntry).filter_by(reason="return").count() == 1


class TestDeliveredCommission:
    def test_single_batch_of_earnings_on_delivery(self, db_session, place_order, partner_coupon):
        coupon, partner = partner_coupon
        # sub_total 1000, 10% coupon -> discount 100
        order, _ = place_order(quantity=10, price="100.00", stock=20, coupon_code="SAVE10")
        assert order.sub_total == Decimal("1000.00")
        assert order.discount == Decimal("100.00")

        _drive(order.id, PATHS[DELIVERED])

        earnings = db_session.query(PartnerEarning).filter_by(order_id=order.id).all()
        assert len(earnings) == 1
        assert earnings[0].partner_id == partner.id
        assert earnings[0].amount == Decimal("90.00")
        assert earnings[0].percentage == Decimal("10.00")

        with pytest.raises(InvalidTransition):
            lifecycle.transition(order.id, DELIVERED)
        assert db_session.query(PartnerEarning).filter_by(order_id=order.id).count() == 1

    def test_no_earnings_without_coupon(self, db_session, place_order, partner_coupon):
        order, _ = place_order()
        _drive(order.id, PATHS[DELIVERED])
        assert db_session.query(PartnerEarning).count() == 0
