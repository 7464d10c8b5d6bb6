from datetime import timedelta, timezone

import pytest

from conftest import NOW, make_coupon
from milko.coupons import (
    compute_discount, describe_discount, is_exhausted, is_expired, normalize_code, validate_coupon,
)
from milko.errors import CouponError
from milko.schemas import DiscountType


def test_valid_percentage_coupon():
    result = validate_coupon(make_coupon(discount_value=10), 400, NOW)

    assert result.valid
    assert result.error is None
    assert result.discount_amount == 40


def test_percentage_cap():
    coupon = make_coupon(discount_value=20, max_discount_amount=80)
    result = validate_coupon(coupon, 500, NOW)

    assert result.discount_amount == 80


def test_fixed_discount_never_exceeds_subtotal():
    coupon = make_coupon(discount_type=DiscountType.FIXED, discount_value=1000)
    assert validate_coupon(coupon, 300, NOW).discount_amount == 300


def test_max_discount_ignored_for_fixed_coupons():
    coupon = make_coupon(discount_type=DiscountType.FIXED, discount_value=100, max_discount_amount=10)
    assert compute_discount(coupon, 500) == 100


def test_expired_yesterday_wins_over_everything_else():
    coupon = make_coupon(
        valid_until=NOW - timedelta(days=1),
        min_purchase_amount=10_000,
        usage_limit=1,
        used_count=5,
    )
    result = validate_coupon(coupon, 50, NOW)

    assert not result.valid
    assert result.error == CouponError.EXPIRED
    assert result.discount_amount == 0


def test_not_yet_valid_is_expired():
    coupon = make_coupon(valid_from=NOW + timedelta(hours=1))
    assert validate_coupon(coupon, 500, NOW).error == CouponError.EXPIRED


def test_inactive_checked_first():
    coupon = make_coupon(is_active=False, valid_until=NOW - timedelta(days=1))
    assert validate_coupon(coupon, 500, NOW).error == CouponError.INACTIVE


def test_minimum_purchase_before_usage_limit():
    coupon = make_coupon(min_purchase_amount=300, usage_limit=2, used_count=2)

    assert validate_coupon(coupon, 299, NOW).error == CouponError.MIN_NOT_MET
    assert validate_coupon(coupon, 300, NOW).error == CouponError.LIMIT_REACHED


def test_usage_limit_not_reached():
    coupon = make_coupon(usage_limit=3, used_count=2)
    assert validate_coupon(coupon, 100, NOW).valid


def test_validation_does_not_count_usage():
    coupon = make_coupon(usage_limit=3, used_count=1)
    validate_coupon(coupon, 100, NOW)
    validate_coupon(coupon, 100, NOW)

    assert coupon.used_count == 1


def test_aware_now_is_compared_as_utc():
    coupon = make_coupon(valid_until=NOW)
    aware = NOW.replace(tzinfo=timezone.utc) + timedelta(minutes=1)

    assert validate_coupon(coupon, 100, aware).error == CouponError.EXPIRED


def test_rejection_message():
    result = validate_coupon(make_coupon(is_active=False), 100, NOW)
    assert result.message == CouponError.INACTIVE.message


def test_code_is_upper_cased():
    assert make_coupon(code="  welcome10 ").code == "WELCOME10"
    assert normalize_code(" flat50") == "FLAT50"


def test_percentage_over_hundred_rejected():
    with pytest.raises(ValueError):
        make_coupon(discount_value=120)


def test_null_minimum_purchase_means_zero():
    assert make_coupon(min_purchase_amount=None).min_purchase_amount == 0


def test_admin_flags():
    assert is_expired(make_coupon(valid_until=NOW - timedelta(seconds=1)), NOW)
    assert not is_expired(make_coupon(), NOW)
    assert is_exhausted(make_coupon(usage_limit=1, used_count=1))
    assert not is_exhausted(make_coupon(used_count=500))


def test_describe_discount():
    assert describe_discount(make_coupon(discount_value=20)) == "20% OFF"
    assert describe_discount(make_coupon(discount_type=DiscountType.FIXED, discount_value=50)) == "₹50 OFF"
