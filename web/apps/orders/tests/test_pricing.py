"""Tests for the pricing and discount calculator."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from apps.orders.domain import CouponTerms, DiscountType, NegativeTotal, OrderLine
from apps.orders.pricing import coupon_discount, price_order, quote_coupon

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def coupon(discount_type=DiscountType.PERCENTAGE, value="10", **kwargs):
    kwargs.setdefault("valid_from", NOW - timedelta(days=1))
    kwargs.setdefault("valid_until", NOW + timedelta(days=1))
    return CouponTerms(id="c1", code="SAVE", discount_type=discount_type, discount_value=Decimal(value), **kwargs)


def lines(*prices):
    return [OrderLine(product_id=f"P{i}", name="x", unit_price_cents=p, quantity=1) for i, p in enumerate(prices)]


def test_percentage_is_capped_by_max_discount():
    prices = price_order(lines(100), shipping_cents=20, coupon=coupon(max_discount_cents=5), coupon_code="SAVE",
                         now=NOW)
    assert prices.discount_cents == 5
    assert prices.total_cents == 115


def test_percentage_rounds_half_up():
    assert coupon_discount(coupon(value="12.5"), 1004) == 126
    assert coupon_discount(coupon(value="15"), 5) == 1


def test_fixed_discount_never_exceeds_subtotal():
    assert coupon_discount(coupon(DiscountType.FIXED, "500"), 120) == 120


def test_min_purchase_rejects_with_shortfall():
    prices = price_order(lines(30), coupon=coupon(min_purchase_cents=50), coupon_code="SAVE", now=NOW)
    assert prices.discount_cents == 0
    assert prices.coupon is None
    assert prices.coupon_rejection.reason == "MIN_PURCHASE_NOT_MET"
    assert prices.coupon_rejection.shortfall_cents == 20


@pytest.mark.parametrize("kwargs", [
    {"is_active": False},
    {"valid_until": NOW - timedelta(seconds=1)},
    {"usage_limit": 3, "used_count": 3},
])
def test_invalid_coupon_is_not_applied(kwargs):
    prices = price_order(lines(1000), coupon=coupon(**kwargs), coupon_code="SAVE", now=NOW)
    assert prices.discount_cents == 0
    assert prices.coupon_rejection.reason == "COUPON_EXPIRED_OR_EXHAUSTED"


def test_total_identity_holds():
    prices = price_order(lines(999, 1), shipping_cents=250, coupon=coupon(value="33"), coupon_code="SAVE", now=NOW)
    assert prices.total_cents == prices.subtotal_cents + prices.shipping_cents - prices.discount_cents
    assert prices.discount_cents <= prices.subtotal_cents


def test_negative_shipping_is_rejected():
    with pytest.raises(NegativeTotal):
        price_order(lines(100), shipping_cents=-200)


def test_quote_without_amount():
    assert quote_coupon(coupon(), None, NOW).discount_cents == 0
    fixed = quote_coupon(coupon(DiscountType.FIXED, "700", min_purchase_cents=10000), None, NOW)
    assert fixed.valid is True
    assert fixed.discount_cents == 700
    assert fixed.final_amount_cents == 0


def test_quote_with_amount():
    quote = quote_coupon(coupon(value="20"), 5000, NOW)
    assert (quote.discount_cents, quote.final_amount_cents) == (1000, 4000)
    assert quote_coupon(None, 5000, NOW).reason == "COUPON_NOT_FOUND"
    assert quote_coupon(coupon(min_purchase_cents=6000), 5000, NOW).reason == "MIN_PURCHASE_NOT_MET"


def test_quote_below_min_purchase_reports_shortfall():
    quote = quote_coupon(coupon(min_purchase_cents=6000), 5250, NOW)
    assert quote.valid is False
    assert quote.reason == "MIN_PURCHASE_NOT_MET"
    assert quote.shortfall_cents == 750
    assert quote_coupon(coupon(), 5250, NOW).shortfall_cents is None
