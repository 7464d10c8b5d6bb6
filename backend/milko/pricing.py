"""
Cart pricing: line totals, subtotal, coupon discount, savings and total.

compute_totals() is pure. Call it again whenever the cart or the coupon
changes; the same inputs always give the same CartTotals.
"""

from typing import Iterable, List, Mapping, Optional

from pydantic import Field

from milko.coupons import compute_discount
from milko.schemas import CamelModel, CartItem, Coupon, Product, Variation

DEFAULT_DELIVERY_CHARGES = 0.0


class LineItem(CamelModel):
    product_id: int
    product_name: str = ""
    variation_id: Optional[int] = None
    variation_size: Optional[str] = None
    unit_price: float
    quantity: int
    line_total: float
    savings: float = 0.0
    suffix_after_price: str = "/litre"
    is_available: bool = True


class CartTotals(CamelModel):
    subtotal: float = 0.0
    discount: float = 0.0
    delivery_charges: float = 0.0
    total: float = 0.0
    savings: float = 0.0
    line_items: List[LineItem] = Field(default_factory=list)
    # product ids in the cart that the catalog no longer has
    skipped: List[int] = Field(default_factory=list)
    coupon_code: Optional[str] = None


def _money(amount: float) -> float:
    return round(amount + 0.0, 2)


def base_price(product: Product) -> float:
    if product.selling_price is not None:
        return product.selling_price
    return product.price_per_litre


def compare_price(product: Product) -> float:
    if product.compare_at_price is not None:
        return product.compare_at_price
    return product.price_per_litre


def find_variation(product: Product, variation_id: Optional[int]) -> Optional[Variation]:
    if variation_id is None:
        return None
    for variation in product.variations:
        if variation.id == variation_id:
            return variation
    return None


def unit_price(product: Product, variation: Optional[Variation] = None) -> float:
    if variation is not None and variation.price is not None:
        return variation.price
    multiplier = variation.price_multiplier if variation is not None else 1
    return base_price(product) * multiplier


def price_line(product: Product, item: CartItem) -> LineItem:
    variation = find_variation(product, item.variation_id)
    multiplier = variation.price_multiplier if variation is not None else 1
    price = unit_price(product, variation)
    saving_per_unit = max(0.0, compare_price(product) - base_price(product)) * multiplier

    return LineItem(
        product_id=product.id,
        product_name=product.name,
        variation_id=variation.id if variation else None,
        variation_size=variation.size if variation else None,
        unit_price=_money(price),
        quantity=item.quantity,
        line_total=_money(price * item.quantity),
        savings=_money(saving_per_unit * item.quantity),
        suffix_after_price=product.suffix_after_price,
        is_available=product.is_active and (variation.is_available if variation else True),
    )


def compute_totals(
    items: Iterable[CartItem],
    catalog: Mapping[int, Product],
    coupon: Optional[Coupon] = None,
    delivery_charges: float = DEFAULT_DELIVERY_CHARGES,
) -> CartTotals:
    """Price a cart against ``catalog`` (product id -> product with variations).

    Items whose product is missing from the catalog are left out of every
    figure and reported in ``skipped``. The coupon is assumed to be validated
    already; only its discount formula is applied here.
    """
    line_items = []
    skipped = []
    for item in items:
        product = catalog.get(item.product_id)
        if product is None:
            skipped.append(item.product_id)
            continue
        line_items.append(price_line(product, item))

    subtotal = _money(sum(line.line_total for line in line_items))
    savings = _money(sum(line.savings for line in line_items))

    discount = 0.0
    if coupon is not None:
        discount = min(compute_discount(coupon, subtotal), subtotal)

    total = max(0.0, subtotal - discount + delivery_charges)

    return CartTotals(
        subtotal=subtotal,
        discount=_money(discount),
        delivery_charges=_money(delivery_charges),
        total=_money(total),
        savings=savings,
        line_items=line_items,
        skipped=skipped,
        coupon_code=coupon.code if coupon else None,
    )
