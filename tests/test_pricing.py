import pytest

from conftest import make_coupon
from milko.pricing import compute_totals, unit_price, base_price, compare_price
from milko.schemas import CartItem, DiscountType, Product


def test_variation_price_overrides_multiplier(catalog):
    totals = compute_totals([CartItem(product_id=2, variation_id=21, quantity=3)], catalog)

    assert totals.subtotal == 150
    assert totals.discount == 0
    assert totals.total == 150
    assert totals.line_items[0].unit_price == 50


def test_percentage_coupon_is_capped(catalog):
    coupon = make_coupon(discount_value=20, max_discount_amount=80)
    totals = compute_totals([CartItem(product_id=2, variation_id=21, quantity=10)], catalog, coupon)

    assert totals.subtotal == 500
    assert totals.discount == 80
    assert totals.total == 420
    assert totals.coupon_code == "SAVE20"


def test_fixed_coupon_larger_than_cart(catalog):
    coupon = make_coupon(discount_type=DiscountType.FIXED, discount_value=1000)
    items = [CartItem(product_id=2, variation_id=21, quantity=6)]

    totals = compute_totals(items, catalog, coupon)
    assert totals.subtotal == 300
    assert totals.discount == 300
    assert totals.total == 0

    with_delivery = compute_totals(items, catalog, coupon, delivery_charges=40)
    assert with_delivery.total == 40
    assert with_delivery.delivery_charges == 40


def test_multiplier_applies_to_selling_price(catalog):
    totals = compute_totals([CartItem(product_id=1, variation_id=11, quantity=2)], catalog)

    line = totals.line_items[0]
    assert line.unit_price == 30
    assert line.line_total == 60
    assert line.variation_size == "500 ml"


def test_savings_use_multiplier_even_with_absolute_price(catalog):
    items = [
        CartItem(product_id=1, variation_id=11, quantity=2),
        CartItem(product_id=1, variation_id=13, quantity=1),
        CartItem(product_id=2, variation_id=21, quantity=1),
    ]
    totals = compute_totals(items, catalog)

    assert [line.savings for line in totals.line_items] == [10, 20, 0]
    assert totals.savings == 30
    assert totals.subtotal == 60 + 115 + 50


def test_savings_never_negative():
    product = Product(id=5, price_per_litre=50, selling_price=70)
    totals = compute_totals([CartItem(product_id=5, quantity=2)], {5: product})

    assert totals.savings == 0
    assert totals.subtotal == 140


def test_missing_product_is_skipped(catalog):
    items = [CartItem(product_id=99, quantity=5), CartItem(product_id=2, variation_id=21, quantity=1)]
    totals = compute_totals(items, catalog)

    assert totals.subtotal == 50
    assert totals.skipped == [99]
    assert len(totals.line_items) == 1


def test_unknown_variation_prices_as_base(catalog):
    totals = compute_totals([CartItem(product_id=1, variation_id=404, quantity=1)], catalog)

    assert totals.line_items[0].unit_price == 60
    assert totals.line_items[0].variation_id is None


@pytest.mark.parametrize("quantity,expected", [(0, 1), (-3, 1), (5, 5), (150, 99)])
def test_quantity_is_clamped(quantity, expected):
    assert CartItem(product_id=1, quantity=quantity).quantity == expected


def test_repeated_calls_are_identical(catalog):
    items = [CartItem(product_id=1, variation_id=12, quantity=4), CartItem(product_id=2, quantity=1)]
    coupon = make_coupon(discount_value=15)

    first = compute_totals(items, catalog, coupon)
    second = compute_totals(items, catalog, coupon)
    assert first == second


@pytest.mark.parametrize("coupon", [
    make_coupon(discount_value=100),
    make_coupon(discount_type=DiscountType.FIXED, discount_value=5),
    make_coupon(discount_type=DiscountType.FIXED, discount_value=10_000),
    make_coupon(discount_value=0),
])
@pytest.mark.parametrize("quantity", [1, 7, 99])
def test_discount_and_total_bounds(catalog, coupon, quantity):
    totals = compute_totals([CartItem(product_id=1, variation_id=11, quantity=quantity)], catalog, coupon)

    assert 0 <= totals.discount <= totals.subtotal
    assert totals.total >= 0
    assert totals.total == pytest.approx(totals.subtotal - totals.discount + totals.delivery_charges)


def test_empty_cart(catalog):
    totals = compute_totals([], catalog, make_coupon())
    assert totals.subtotal == 0
    assert totals.discount == 0
    assert totals.total == 0


def test_price_helpers(catalog):
    cow = catalog[1]
    assert base_price(cow) == 60
    assert compare_price(cow) == 70
    assert unit_price(cow) == 60
    assert unit_price(cow, cow.variations[2]) == 115
