"""Tests for the pricing engine."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from qrdine.services import pricing
from qrdine.services.pricing import PricedLine


def _coupon(**overrides):
    now = datetime.now(timezone.utc)
    data = dict(
        type="PERCENTAGE",
        value=Decimal("10"),
        min_order_amount=None,
        max_discount_amount=None,
        valid_from=now - timedelta(days=1),
        valid_until=now + timedelta(days=1),
        usage_limit=None,
        used_count=0,
        is_active=True,
    )
    data.update(overrides)
    return SimpleNamespace(**data)


class TestItemPrice:
    def test_base_price_only(self):
        assert pricing.item_price(Decimal("200")) == Decimal("200.00")

    def test_variant_and_add_ons(self):
        price = pricing.item_price(
            "300",
            {"id": "lg", "price_modifier": 100},
            [{"price": 40, "quantity": 2}, {"price": 25, "quantity": 1}],
        )
        assert price == Decimal("505.00")

    def test_negative_total_clamps_to_zero(self):
        assert pricing.item_price("50", {"price_modifier": -80}) == Decimal("0.00")

    def test_rounds_half_up(self):
        assert pricing.item_price("10.005") == Decimal("10.01")


class TestTotals:
    def test_line_and_order_total(self):
        lines = [PricedLine(Decimal("200"), 2), PricedLine(Decimal("99.99"), 3)]
        assert pricing.line_total(Decimal("99.99"), 3) == Decimal("299.97")
        assert pricing.order_total(lines) == Decimal("699.97")

    def test_empty_order_total_is_zero(self):
        assert pricing.order_total([]) == Decimal("0.00")

    def test_tax_and_service_charge(self):
        assert pricing.tax(Decimal("1000"), 18) == Decimal("180.00")
        assert pricing.service_charge(Decimal("1000"), 5) == Decimal("50.00")

    def test_billing_exactness(self):
        totals = pricing.summarize_bill(Decimal("1000"), 18, 5)
        assert totals.tax_amount == Decimal("180.00")
        assert totals.service_charge == Decimal("50.00")
        assert totals.final_amount == Decimal("1230.00")

    def test_discount_does_not_reduce_tax_base(self):
        totals = pricing.summarize_bill(Decimal("1000"), 18, 5, Decimal("100"))
        assert totals.tax_amount == Decimal("180.00")
        assert totals.final_amount == Decimal("1130.00")

    @pytest.mark.parametrize(
        "discount,expected",
        [(Decimal("-5"), Decimal("0.00")), (Decimal("50"), Decimal("50.00")), (Decimal("500"), Decimal("400.00"))],
    )
    def test_clamp_discount(self, discount, expected):
        assert pricing.clamp_discount(discount, Decimal("400")) == expected


class TestCoupons:
    def test_percentage_capped_by_max_discount(self):
        coupon = _coupon(value=Decimal("50"), max_discount_amount=Decimal("100"))
        assert pricing.coupon_discount(coupon, Decimal("1000")) == Decimal("100.00")

    def test_percentage_without_cap(self):
        coupon = _coupon(value=Decimal("15"))
        assert pricing.coupon_discount(coupon, Decimal("400")) == Decimal("60.00")

    def test_fixed_never_exceeds_order(self):
        coupon = _coupon(type="FIXED", value=Decimal("150"))
        assert pricing.coupon_discount(coupon, Decimal("100")) == Decimal("100.00")

    def test_valid_coupon(self):
        assert pricing.is_coupon_valid(_coupon(), Decimal("100"))

    def test_inactive_expired_and_exhausted_coupons(self):
        now = datetime.now(timezone.utc)
        assert not pricing.is_coupon_valid(_coupon(is_active=False), Decimal("100"))
        assert not pricing.is_coupon_valid(_coupon(valid_until=now - timedelta(minutes=1)), Decimal("100"))
        assert not pricing.is_coupon_valid(_coupon(valid_from=now + timedelta(hours=1)), Decimal("100"))
        assert not pricing.is_coupon_valid(_coupon(usage_limit=5, used_count=5), Decimal("100"))

    def test_minimum_order_amount(self):
        coupon = _coupon(min_order_amount=Decimal("500"))
        assert not pricing.is_coupon_valid(coupon, Decimal("499.99"))
        assert pricing.is_coupon_valid(coupon, Decimal("500"))

    def test_naive_timestamps_are_treated_as_utc(self):
        now = datetime.now(timezone.utc)
        coupon = _coupon(
            valid_from=(now - timedelta(days=1)).replace(tzinfo=None),
            valid_until=(now + timedelta(days=1)).replace(tzinfo=None),
        )
        assert pricing.is_coupon_valid(coupon, Decimal("100"), now)


class TestPreparationEstimate:
    def test_minimum_applies_to_small_orders(self):
        assert pricing.estimate_preparation_time([PricedLine(Decimal("10"), 1, 5)], 15, 10) == 10

    def test_sum_of_prep_time_times_quantity(self):
        lines = [PricedLine(Decimal("10"), 2, 15), PricedLine(Decimal("10"), 1, 20)]
        assert pricing.estimate_preparation_time(lines, 15, 10) == 50

    def test_missing_prep_time_uses_default(self):
        assert pricing.estimate_preparation_time([PricedLine(Decimal("10"), 2)], 15, 10) == 30

    def test_monotonic_in_quantity_and_items(self):
        base = [PricedLine(Decimal("10"), 1, 12)]
        more_quantity = [PricedLine(Decimal("10"), 2, 12)]
        more_items = base + [PricedLine(Decimal("10"), 1, 3)]
        estimate = pricing.estimate_preparation_time(base, 15, 10)
        assert pricing.estimate_preparation_time(more_quantity, 15, 10) >= estimate
        assert pricing.estimate_preparation_time(more_items, 15, 10) >= estimate
