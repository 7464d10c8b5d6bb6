"""
Domain types shared by the pricing, coupon, order-status and checkout code.

Field names are snake_case in Python and camelCase on the wire.
"""

import enum
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

MIN_QUANTITY = 1
MAX_QUANTITY = 99


def clamp_quantity(quantity: int) -> int:
    return max(MIN_QUANTITY, min(MAX_QUANTITY, int(quantity)))


class CamelModel(BaseModel):
    class Config:
        from_attributes = True
        populate_by_name = True
        alias_generator = to_camel


# ==================== ENUMS ====================

class OrderStatus(str, enum.Enum):
    PLACED = "placed"
    CONFIRMED = "confirmed"
    PACKAGE_PREPARED = "package_prepared"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentMethod(str, enum.Enum):
    COD = "cod"
    ONLINE = "online"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


# ==================== CATALOG ====================

class Variation(CamelModel):
    id: int
    product_id: Optional[int] = None
    size: str
    price_multiplier: float = Field(1.0, gt=0)
    price: Optional[float] = Field(None, ge=0)
    is_available: bool = True


class Product(CamelModel):
    id: int
    name: str = ""
    description: Optional[str] = None
    price_per_litre: float = Field(..., ge=0)
    selling_price: Optional[float] = Field(None, ge=0)
    compare_at_price: Optional[float] = Field(None, ge=0)
    suffix_after_price: str = "/litre"
    image_url: Optional[str] = None
    is_active: bool = True
    variations: List[Variation] = Field(default_factory=list)


class CartItem(CamelModel):
    product_id: int
    variation_id: Optional[int] = None
    quantity: int = 1

    @field_validator("quantity")
    @classmethod
    def clamp(cls, v):
        return clamp_quantity(v)


# ==================== COUPONS ====================

class Coupon(CamelModel):
    id: Optional[int] = None
    code: str = Field(..., min_length=1)
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: float = Field(..., ge=0)
    min_purchase_amount: Optional[float] = Field(0.0, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=0)
    used_count: int = Field(0, ge=0)
    valid_from: datetime
    valid_until: Optional[datetime] = None
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def upper_code(cls, v):
        return v.strip().upper()

    @field_validator("min_purchase_amount")
    @classmethod
    def default_min_purchase(cls, v):
        return v or 0.0

    @model_validator(mode="after")
    def check_percentage(self):
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        return self


# ==================== ORDERS ====================

class Order(CamelModel):
    id: int
    order_number: str
    status: OrderStatus = OrderStatus.PLACED
    payment_method: PaymentMethod = PaymentMethod.COD
    payment_status: PaymentStatus = PaymentStatus.PENDING
    subtotal: float = Field(..., ge=0)
    discount: float = Field(0.0, ge=0)
    delivery_charges: float = Field(0.0, ge=0)
    total: float = Field(..., ge=0)
    created_at: datetime
    package_prepared_at: Optional[datetime] = None
    out_for_delivery_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    delivery_date: Optional[datetime] = None

    @model_validator(mode="after")
    def check_totals(self):
        if self.discount > self.subtotal + 0.005:
            raise ValueError("Discount cannot exceed subtotal")
        expected = self.subtotal - self.discount + self.delivery_charges
        if abs(self.total - expected) > 0.01:
            raise ValueError("Total must equal subtotal - discount + delivery charges")
        return self


# ==================== ADDRESSES ====================

class Address(CamelModel):
    id: Optional[int] = None
    name: str = ""
    street: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = "India"
    phone: str = ""
    is_default: bool = False
