"""
Coupon validation and discount computation.

validate_coupon() never raises for a rejected coupon and never touches
used_count; usage is counted when an order is actually placed.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel

from milko.errors import CouponError
from milko.schemas import Coupon, DiscountType


class CouponResult(BaseModel):
    valid: bool
    coupon: Coupon
    discount_amount: float = 0.0
    error: Optional[CouponError] = None

    @property
    def message(self) -> str:
        return self.error.message if self.error else ""


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def compute_discount(coupon: Coupon, subtotal: float) -> float:
    """Discount the coupon gives on ``subtotal``, never more than the subtotal itself."""
    if subtotal <= 0:
        return 0.0
    if coupon.discount_type == DiscountType.PERCENTAGE:
        raw = subtotal * coupon.discount_value / 100
        if coupon.max_discount_amount is not None:
            raw = min(raw, coupon.max_discount_amount)
    else:
        raw = coupon.discount_value
    return round(min(raw, subtotal), 2)


def is_expired(coupon: Coupon, now: datetime) -> bool:
    if coupon.valid_until is None:
        return False
    return as_naive_utc(now) > as_naive_utc(coupon.valid_until)


def is_exhausted(coupon: Coupon) -> bool:
    if coupon.usage_limit is None:
        return False
    return coupon.used_count >= coupon.usage_limit


def validate_coupon(coupon: Coupon, subtotal: float, now: datetime) -> CouponResult:
    """Check a coupon against the cart subtotal at ``now``.

    Rejections are checked in a fixed order so the customer always sees the
    same message for the same coupon: inactive, outside its validity window,
    minimum purchase not met, usage limit reached.
    """
    now = as_naive_utc(now)

    if not coupon.is_active:
        error = CouponError.INACTIVE
    elif now < as_naive_utc(coupon.valid_from) or is_expired(coupon, now):
        error = CouponError.EXPIRED
    elif subtotal < (coupon.min_purchase_amount or 0):
        error = CouponError.MIN_NOT_MET
    elif is_exhausted(coupon):
        error = CouponError.LIMIT_REACHED
    else:
        error = None

    if error is not None:
        return CouponResult(valid=False, coupon=coupon, error=error)
    return CouponResult(valid=True, coupon=coupon, discount_amount=compute_discount(coupon, subtotal))


def describe_discount(coupon: Coupon) -> str:
    if coupon.discount_type == DiscountType.PERCENTAGE:
        return f"{coupon.discount_value:g}% OFF"
    return f"₹{coupon.discount_value:g} OFF"
