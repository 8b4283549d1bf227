"""Pricing and discount calculation.

Pure functions over order lines, an optional coupon and the shipping
price. All amounts are integer minor units.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from .domain import CouponRejection, CouponTerms, DiscountType, NegativeTotal, OrderLine


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal_cents: int
    shipping_cents: int
    discount_cents: int
    total_cents: int
    coupon: Optional[CouponTerms] = None
    coupon_rejection: Optional[CouponRejection] = None


@dataclass(frozen=True)
class CouponQuote:
    """Answer to a read-only coupon validation."""

    valid: bool
    discount_cents: int = 0
    final_amount_cents: int = 0
    coupon: Optional[CouponTerms] = None
    error: Optional[str] = None
    reason: Optional[str] = None
    shortfall_cents: Optional[int] = None


def subtotal_of(lines: Iterable[OrderLine]) -> int:
    return sum(line.line_total_cents for line in lines)


def coupon_discount(coupon: CouponTerms, amount_cents: int) -> int:
    """Discount a coupon grants on ``amount_cents``, capped by the amount.

    Percentage coupons are capped by ``max_discount_cents`` when set; fixed
    coupons grant their value as is.
    """
    if coupon.discount_type == DiscountType.PERCENTAGE:
        raw = Decimal(amount_cents) * coupon.discount_value / Decimal(100)
        discount = int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        if coupon.max_discount_cents is not None:
            discount = min(discount, coupon.max_discount_cents)
    else:
        discount = int(coupon.discount_value)
    return max(0, min(discount, amount_cents))


def evaluate_coupon(coupon: Optional[CouponTerms], code: str, subtotal_cents: int,
                    now: datetime):
    """Decide whether a coupon applies to a subtotal.

    Returns:
        tuple[int, CouponRejection | None]: The discount and, when the coupon
        was not applied, the reason.
    """
    if coupon is None:
        return 0, CouponRejection(code=code, reason="COUPON_NOT_FOUND")
    if not coupon.is_valid(now):
        return 0, CouponRejection(code=code, reason="COUPON_EXPIRED_OR_EXHAUSTED")
    if coupon.min_purchase_cents and subtotal_cents < coupon.min_purchase_cents:
        return 0, CouponRejection(
            code=code,
            reason="MIN_PURCHASE_NOT_MET",
            shortfall_cents=coupon.min_purchase_cents - subtotal_cents,
        )
    return coupon_discount(coupon, subtotal_cents), None


def price_order(lines: Iterable[OrderLine], shipping_cents: int = 0,
                coupon: Optional[CouponTerms] = None, coupon_code: Optional[str] = None,
                now: Optional[datetime] = None) -> PriceBreakdown:
    """Compute subtotal, discount and total for an order.

    The discount is always recomputed from the coupon record. An unusable
    coupon yields a zero discount and a rejection instead of an error.

    Raises:
        NegativeTotal: If the resulting total would be below zero.
    """
    now = now or datetime.now(timezone.utc)
    subtotal = subtotal_of(lines)
    discount = 0
    rejection = None
    applied = None
    if coupon_code:
        discount, rejection = evaluate_coupon(coupon, coupon_code, subtotal, now)
        if rejection is None:
            applied = coupon

    total = subtotal + shipping_cents - discount
    if shipping_cents < 0 or total < 0:
        raise NegativeTotal()

    return PriceBreakdown(
        subtotal_cents=subtotal,
        shipping_cents=shipping_cents,
        discount_cents=discount,
        total_cents=total,
        coupon=applied,
        coupon_rejection=rejection,
    )


def quote_coupon(coupon: Optional[CouponTerms], order_amount_cents: Optional[int],
                 now: datetime) -> CouponQuote:
    """Read-only coupon check used before checkout.

    Without an order amount the minimum purchase is not enforced, a
    percentage coupon quotes zero and the final amount is zero. A minimum
    purchase miss reports how much is still missing in ``shortfall_cents``.
    """
    if coupon is None:
        return CouponQuote(valid=False, error="Coupon not found", reason="COUPON_NOT_FOUND")
    if not coupon.is_valid(now):
        return CouponQuote(
            valid=False,
            error="Coupon is expired or has reached usage limit",
            reason="COUPON_EXPIRED_OR_EXHAUSTED",
        )
    if order_amount_cents and coupon.min_purchase_cents and order_amount_cents < coupon.min_purchase_cents:
        return CouponQuote(
            valid=False,
            error=f"Minimum purchase of {coupon.min_purchase_cents} required",
            reason="MIN_PURCHASE_NOT_MET",
            shortfall_cents=coupon.min_purchase_cents - order_amount_cents,
        )

    if order_amount_cents:
        discount = coupon_discount(coupon, order_amount_cents)
        final = order_amount_cents - discount
    else:
        discount = 0 if coupon.discount_type == DiscountType.PERCENTAGE else int(coupon.discount_value)
        final = 0
    return CouponQuote(valid=True, discount_cents=discount, final_amount_cents=final, coupon=coupon)
