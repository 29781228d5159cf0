"""Pricing engine.

Pure functions over ``Decimal``. Every monetary result is quantized to two
places with ROUND_HALF_UP. Nothing here touches the database, so the same
functions price the cart, the order and the bill.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Mapping, Optional, Sequence

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value: Any) -> Decimal:
    """Coerce ints, floats, strings and Decimals to Decimal without float drift."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize(value: Any) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricedLine:
    """A line the estimator and totals understand: unit price, quantity, prep time."""

    unit_price: Decimal
    quantity: int
    preparation_time: Optional[int] = None


@dataclass(frozen=True)
class BillTotals:
    subtotal: Decimal
    tax_amount: Decimal
    service_charge: Decimal
    discount_amount: Decimal
    final_amount: Decimal


def item_price(
    base_price: Any,
    variant: Optional[Mapping[str, Any]] = None,
    add_ons: Iterable[Mapping[str, Any]] = (),
) -> Decimal:
    """Unit price of a configured item.

    ``base + variant.price_modifier + sum(add_on.price * add_on.quantity)``,
    clamped at zero so a large negative modifier can never produce a credit.
    """
    total = to_decimal(base_price)
    if variant:
        total += to_decimal(variant.get("price_modifier", 0))
    for add_on in add_ons:
        total += to_decimal(add_on.get("price", 0)) * int(add_on.get("quantity", 1))
    if total < 0:
        total = ZERO
    return quantize(total)


def line_total(unit_price: Any, quantity: int) -> Decimal:
    return quantize(to_decimal(unit_price) * quantity)


def order_total(lines: Iterable[PricedLine]) -> Decimal:
    return quantize(sum((line_total(line.unit_price, line.quantity) for line in lines), ZERO))


def tax(subtotal: Any, rate: Any) -> Decimal:
    """Tax on the pre-discount subtotal. ``rate`` is a percentage."""
    return quantize(to_decimal(subtotal) * to_decimal(rate) / 100)


def service_charge(subtotal: Any, rate: Any) -> Decimal:
    return quantize(to_decimal(subtotal) * to_decimal(rate) / 100)


def clamp_discount(discount: Any, subtotal: Any) -> Decimal:
    """Clamp a discount into ``[0, subtotal]``."""
    d = to_decimal(discount)
    s = to_decimal(subtotal)
    if d < 0:
        return ZERO
    if d > s:
        return quantize(s)
    return quantize(d)


def final_amount(subtotal: Any, tax_amount: Any, service_amount: Any, discount: Any) -> Decimal:
    return quantize(
        to_decimal(subtotal) + to_decimal(tax_amount) + to_decimal(service_amount) - to_decimal(discount)
    )


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo; they were written as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_coupon_valid(coupon, order_amount: Any, now: Optional[datetime] = None) -> bool:
    """Whether ``coupon`` can be redeemed against ``order_amount`` at ``now``.

    A coupon is valid when it is active, ``now`` lies inside its validity
    window, the usage limit is not exhausted and the order meets the minimum.
    """
    if coupon is None or not coupon.is_active:
        return False
    now = _as_utc(now or datetime.now(timezone.utc))
    if coupon.valid_from is not None and now < _as_utc(coupon.valid_from):
        return False
    if coupon.valid_until is not None and now > _as_utc(coupon.valid_until):
        return False
    if coupon.usage_limit is not None and (coupon.used_count or 0) >= coupon.usage_limit:
        return False
    if coupon.min_order_amount is not None and to_decimal(order_amount) < to_decimal(coupon.min_order_amount):
        return False
    return True


def coupon_discount(coupon, order_amount: Any) -> Decimal:
    """Discount a coupon grants on ``order_amount``, never more than the order."""
    amount = to_decimal(order_amount)
    coupon_type = getattr(coupon.type, "value", coupon.type)
    if coupon_type == "PERCENTAGE":
        discount = amount * to_decimal(coupon.value) / 100
        if coupon.max_discount_amount is not None:
            discount = min(discount, to_decimal(coupon.max_discount_amount))
    else:
        discount = min(to_decimal(coupon.value), amount)
    return clamp_discount(discount, amount)


def estimate_preparation_time(
    lines: Sequence[PricedLine],
    default_minutes: int,
    minimum_minutes: int,
) -> int:
    """Kitchen estimate: ``max(minimum, sum(prep_time * quantity))``.

    Items without a preparation time count as ``default_minutes``. The result
    never decreases when a quantity or a line is added.
    """
    total = 0
    for line in lines:
        prep = line.preparation_time if line.preparation_time is not None else default_minutes
        total += prep * line.quantity
    return max(minimum_minutes, total)


def summarize_bill(
    subtotal: Any,
    tax_rate: Any,
    service_rate: Any,
    discount: Any = ZERO,
) -> BillTotals:
    """Bill totals for a subtotal. Tax and service charge ignore the discount."""
    sub = quantize(subtotal)
    tax_amount = tax(sub, tax_rate)
    service_amount = service_charge(sub, service_rate)
    discount_amount = clamp_discount(discount, sub)
    return BillTotals(
        subtotal=sub,
        tax_amount=tax_amount,
        service_charge=service_amount,
        discount_amount=discount_amount,
        final_amount=final_amount(sub, tax_amount, service_amount, discount_amount),
    )
