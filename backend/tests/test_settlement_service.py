"""Tests for payments, bills, coupons and refunds."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from qrdine.core.errors import (
    BillNotFound,
    CouponInvalid,
    CouponNotFound,
    InvalidAmount,
    InvalidState,
    InvalidTransition,
    ReasonRequired,
    SessionNotActive,
    UpstreamFailure,
)
from qrdine.models import (
    Bill,
    Coupon,
    CouponType,
    OrderStatus,
    PaymentMethod,
    PaymentState,
    PaymentStatus,
    SessionStatus,
    TableSession,
)
from qrdine.services import settlement_service
from qrdine.services.order_service import OrderService
from qrdine.services.settlement_service import SettlementService


@pytest.fixture
def settlement(db_session, events):
    return SettlementService(db_session, events)


@pytest.fixture
def orders(db_session, events):
    return OrderService(db_session, events)


@pytest.fixture
def session_with_order(orders, active_session, menu_item):
    """Active session with one order worth 400."""
    orders.place_order(active_session, [{"menu_item_id": menu_item.id, "quantity": 2}])
    return active_session


@pytest.fixture
def coupon(db_session, restaurant):
    now = datetime.now(timezone.utc)
    coupon = Coupon(
        restaurant_id=restaurant.id,
        code="SAVE10",
        name="Ten percent off",
        type=CouponType.PERCENTAGE,
        value=Decimal("10"),
        max_discount_amount=Decimal("50"),
        valid_from=now - timedelta(days=1),
        valid_until=now + timedelta(days=30),
        usage_limit=100,
        used_count=0,
        is_active=True,
    )
    db_session.add(coupon)
    db_session.commit()
    db_session.refresh(coupon)
    return coupon


def _reload(db_session, session_id):
    session = db_session.get(TableSession, session_id)
    db_session.refresh(session)
    return session


class TestInitiatePayment:
    def test_records_pending_payment(self, settlement, session_with_order, events):
        events.clear()
        payment = settlement.initiate_payment(session_with_order, Decimal("150"), PaymentMethod.UPI)

        assert payment.status == PaymentState.PENDING
        assert payment.amount == Decimal("150.00")
        assert {room for room, _, _ in events.of_type("payment_status_changed")} == {
            f"session:{session_with_order}",
            f"restaurant:{payment.restaurant_id}",
        }

    def test_overpayment_is_rejected(self, settlement, session_with_order):
        with pytest.raises(InvalidAmount):
            settlement.initiate_payment(session_with_order, Decimal("400.01"), PaymentMethod.CARD)

    def test_pending_payments_count_against_balance(self, settlement, session_with_order):
        settlement.initiate_payment(session_with_order, Decimal("150"), PaymentMethod.UPI)
        with pytest.raises(InvalidAmount):
            settlement.initiate_payment(session_with_order, Decimal("300"), PaymentMethod.CARD)
        settlement.initiate_payment(session_with_order, Decimal("250"), PaymentMethod.CARD)

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-10")])
    def test_non_positive_amount_is_rejected(self, settlement, session_with_order, amount):
        with pytest.raises(InvalidAmount):
            settlement.initiate_payment(session_with_order, amount, PaymentMethod.CASH)

    def test_nothing_owed_rejects_payment(self, settlement, active_session):
        with pytest.raises(InvalidAmount):
            settlement.initiate_payment(active_session, Decimal("1"), PaymentMethod.CASH)


class TestSettlement:
    def test_full_payment_issues_bill_and_frees_table(
        self, settlement, session_with_order, dining_table, db_session, events
    ):
        payment = settlement.initiate_payment(session_with_order, Decimal("400"), PaymentMethod.CASH)
        events.clear()
        settlement.confirm_payment(payment.id, transaction_id="txn-1")

        session = _reload(db_session, session_with_order)
        assert session.payment_status == PaymentStatus.PAID
        assert session.paid_amount == Decimal("400.00")
        assert session.status == SessionStatus.COMPLETED
        assert session.ended_at is not None

        bill = settlement.get_bill(session_with_order)
        assert bill.subtotal == Decimal("400.00")
        assert bill.tax_amount == Decimal("72.00")
        assert bill.service_charge == Decimal("20.00")
        assert bill.final_amount == Decimal("492.00")
        assert bill.bill_number.startswith("BILL-")
        assert bill.payment_methods == [{"method": "CASH", "amount": 400.0, "count": 1}]
        assert [line["quantity"] for line in bill.items] == [2]

        db_session.refresh(dining_table)
        assert dining_table.current_session_id is None
        table_events = events.of_type("table_status_changed")
        assert table_events and all(e[2]["status"] == "available" for e in table_events)

    def test_bill_exactness_on_round_total(self, settlement, orders, active_session, menu_item):
        orders.place_order(active_session, [{"menu_item_id": menu_item.id, "quantity": 5}])
        payment = settlement.initiate_payment(active_session, Decimal("1000"), PaymentMethod.CARD)
        settlement.confirm_payment(payment.id)

        bill = settlement.get_bill(active_session)
        assert (bill.tax_amount, bill.service_charge, bill.final_amount) == (
            Decimal("180.00"), Decimal("50.00"), Decimal("1230.00"),
        )

    def test_partial_payments_settle_once_covered(self, settlement, session_with_order, db_session):
        first = settlement.initiate_payment(session_with_order, Decimal("150"), PaymentMethod.UPI)
        settlement.confirm_payment(first.id)

        session = _reload(db_session, session_with_order)
        assert session.payment_status == PaymentStatus.PARTIAL
        assert session.status == SessionStatus.ACTIVE
        with pytest.raises(BillNotFound):
            settlement.get_bill(session_with_order)

        second = settlement.initiate_payment(session_with_order, Decimal("250"), PaymentMethod.CARD)
        settlement.confirm_payment(second.id)

        bill = settlement.get_bill(session_with_order)
        assert {m["method"]: m["amount"] for m in bill.payment_methods} == {"UPI": 150.0, "CARD": 250.0}

    def test_confirm_is_idempotent(self, settlement, session_with_order, db_session, events):
        payment = settlement.initiate_payment(session_with_order, Decimal("400"), PaymentMethod.CASH)
        settlement.confirm_payment(payment.id)
        events.clear()

        again = settlement.confirm_payment(payment.id)

        assert again.status == PaymentState.PAID
        assert db_session.query(Bill).count() == 1
        assert events.events == []
        assert _reload(db_session, session_with_order).paid_amount == Decimal("400.00")

    def test_generate_bill_requires_full_payment(self, settlement, session_with_order):
        with pytest.raises(InvalidState):
            settlement.generate_bill(session_with_order)

    def test_generate_bill_returns_existing(self, settlement, session_with_order):
        payment = settlement.initiate_payment(session_with_order, Decimal("400"), PaymentMethod.CASH)
        settlement.confirm_payment(payment.id)
        first = settlement.get_bill(session_with_order)

        assert settlement.generate_bill(session_with_order).id == first.id

    def test_cancelled_orders_stay_off_the_bill(self, settlement, orders, session_with_order, menu_item, pizza):
        extra = orders.place_order(session_with_order, [{"menu_item_id": pizza.id, "quantity": 1}])
        orders.update_status(extra.id, OrderStatus.CANCELLED, reason="Kitchen out of dough")

        payment = settlement.initiate_payment(session_with_order, Decimal("700"), PaymentMethod.CARD)
        settlement.confirm_payment(payment.id)

        bill = settlement.get_bill(session_with_order)
        assert [line["name"] for line in bill.items] == ["Paneer Tikka"]

    def test_closed_session_rejects_new_payment(self, settlement, session_with_order):
        payment = settlement.initiate_payment(session_with_order, Decimal("400"), PaymentMethod.CASH)
        settlement.confirm_payment(payment.id)
        with pytest.raises(SessionNotActive):
            settlement.initiate_payment(session_with_order, Decimal("1"), PaymentMethod.CASH)


class TestBillNumberCollision:
    def test_exhausted_attempts_leave_session_open(
        self, settlement, orders, session_service, session_with_order, menu_item,
        dining_table, restaurant, db_session, monkeypatch,
    ):
        payment = settlement.initiate_payment(session_with_order, Decimal("400"), PaymentMethod.CASH)
        settlement.confirm_payment(payment.id)
        taken = settlement.get_bill(session_with_order).bill_number

        second = session_service.validate_scan(dining_table.qr_code, dining_table.id, restaurant.id)["session_id"]
        orders.place_order(second, [{"menu_item_id": menu_item.id, "quantity": 1}])
        payment = settlement.initiate_payment(second, Decimal("200"), PaymentMethod.UPI)

        monkeypatch.setattr(settlement_service, "new_bill_number", lambda: taken)
        with pytest.raises(UpstreamFailure):
            settlement.confirm_payment(payment.id)

        session = _reload(db_session, second)
        assert session.status == SessionStatus.ACTIVE
        assert session.payment_status == PaymentStatus.PAID
        assert db_session.query(Bill).filter(Bill.session_id == second).count() == 0

        # a retried confirmation finishes the settlement
        monkeypatch.undo()
        settlement.confirm_payment(payment.id)
        assert _reload(db_session, second).status == SessionStatus.COMPLETED
        assert settlement.get_bill(second).bill_number != taken


class TestFailAndRefund:
    def test_fail_requires_reason(self, settlement, session_with_order):
        payment = settlement.initiate_payment(session_with_order, Decimal("100"), PaymentMethod.CARD)
        with pytest.raises(ReasonRequired):
            settlement.fail_payment(payment.id, "")

    def test_failed_payment_cannot_be_confirmed(self, settlement, session_with_order):
        payment = settlement.initiate_payment(session_with_order, Decimal("100"), PaymentMethod.CARD)
        failed = settlement.fail_payment(payment.id, "Card declined")

        assert failed.status == PaymentState.FAILED
        assert failed.failure_reason == "Card declined"
        with pytest.raises(InvalidTransition):
            settlement.confirm_payment(payment.id)

    def test_fail_is_idempotent(self, settlement, session_with_order, events):
        payment = settlement.initiate_payment(session_with_order, Decimal("100"), PaymentMethod.CARD)
        settlement.fail_payment(payment.id, "Timeout")
        events.clear()

        assert settlement.fail_payment(payment.id, "Timeout").status == PaymentState.FAILED
        assert events.events == []

    def test_failed_amount_is_released(self, settlement, session_with_order):
        payment = settlement.initiate_payment(session_with_order, Decimal("400"), PaymentMethod.CARD)
        settlement.fail_payment(payment.id, "Declined")
        retry = settlement.initiate_payment(session_with_order, Decimal("400"), PaymentMethod.UPI)
        assert retry.status == PaymentState.PENDING

    def test_refund_paid_payment(self, settlement, session_with_order, db_session):
        payment = settlement.initiate_payment(session_with_order, Decimal("400"), PaymentMethod.CARD)
        settlement.confirm_payment(payment.id)

        refunded = settlement.refund_payment(payment.id, "Cold food")

        assert refunded.status == PaymentState.REFUNDED
        assert refunded.refunded_at is not None
        session = _reload(db_session, session_with_order)
        assert session.paid_amount == Decimal("0.00")
        assert session.payment_status == PaymentStatus.REFUNDED
        # the issued bill is a historical record
        assert settlement.get_bill(session_with_order).final_amount == Decimal("492.00")

    def test_refund_pending_payment_is_rejected(self, settlement, session_with_order):
        payment = settlement.initiate_payment(session_with_order, Decimal("100"), PaymentMethod.CARD)
        with pytest.raises(InvalidTransition):
            settlement.refund_payment(payment.id, "Changed mind")


class TestCoupons:
    def test_apply_previews_discounted_totals(self, settlement, session_with_order, coupon, db_session):
        preview = settlement.apply_coupon(session_with_order, "save10")

        assert preview["code"] == "SAVE10"
        assert preview["discount_amount"] == 40.0
        assert preview["final_amount"] == 452.0
        assert _reload(db_session, session_with_order).coupon_id == coupon.id

    def test_discount_applied_to_bill_and_counted(self, settlement, session_with_order, coupon, db_session):
        settlement.apply_coupon(session_with_order, "SAVE10")
        payment = settlement.initiate_payment(session_with_order, Decimal("400"), PaymentMethod.CASH)
        settlement.confirm_payment(payment.id)

        bill = settlement.get_bill(session_with_order)
        assert bill.discount_amount == Decimal("40.00")
        assert bill.final_amount == Decimal("452.00")
        db_session.refresh(coupon)
        assert coupon.used_count == 1

    def test_max_discount_caps_percentage(self, settlement, orders, active_session, menu_item, coupon):
        orders.place_order(active_session, [{"menu_item_id": menu_item.id, "quantity": 5}])
        assert settlement.apply_coupon(active_session, "SAVE10")["discount_amount"] == 50.0

    def test_minimum_order_not_met(self, settlement, session_with_order, coupon, db_session):
        coupon.min_order_amount = Decimal("1000")
        db_session.commit()
        with pytest.raises(CouponInvalid):
            settlement.apply_coupon(session_with_order, "SAVE10")

    def test_exhausted_coupon(self, settlement, session_with_order, coupon, db_session):
        coupon.usage_limit = 1
        coupon.used_count = 1
        db_session.commit()
        with pytest.raises(CouponInvalid):
            settlement.apply_coupon(session_with_order, "SAVE10")

    def test_unknown_code(self, settlement, session_with_order):
        with pytest.raises(CouponNotFound):
            settlement.apply_coupon(session_with_order, "NOPE")

    def test_lapsed_coupon_gives_no_discount_at_billing(self, settlement, session_with_order, coupon, db_session):
        settlement.apply_coupon(session_with_order, "SAVE10")
        coupon.is_active = False
        db_session.commit()

        payment = settlement.initiate_payment(session_with_order, Decimal("400"), PaymentMethod.CASH)
        settlement.confirm_payment(payment.id)

        bill = settlement.get_bill(session_with_order)
        assert bill.discount_amount == Decimal("0.00")
        assert bill.final_amount == Decimal("492.00")
