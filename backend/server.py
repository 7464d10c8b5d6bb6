"""
Milko - FastAPI Server
Storefront backend for the milk subscription shop: catalog, coupons,
addresses, checkout and order tracking. Pricing, coupon rules, order status
display and checkout validation live in the ``milko`` package.
Run with: python server.py
"""

import os
import random
import string
import logging
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Tuple
from contextlib import asynccontextmanager

# FastAPI imports
from fastapi import FastAPI, Depends, HTTPException, status, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

# Pydantic imports
from pydantic import EmailStr, Field, ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings

# SQLAlchemy imports
from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, Text, ForeignKey, select, func
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase, relationship, selectinload

# Security imports
from jose import JWTError, jwt
from passlib.context import CryptContext

# Engine imports
from milko import schemas
from milko.schemas import CamelModel, OrderStatus, PaymentMethod, PaymentStatus, DiscountType
from milko.errors import MilkoError, NotFound, ValidationError
from milko.pricing import CartTotals, compute_totals
from milko.coupons import (
    normalize_code, validate_coupon, describe_discount, is_expired, is_exhausted, as_naive_utc,
)
from milko.order_status import (
    TimelineStep, StatusBadge, build_timeline, resolve_payment_label, resolve_cod_badge,
    resolve_delivery_display, can_transition, timestamp_field,
)
from milko.checkout import AddressForm, missing_address_fields

logger = logging.getLogger(__name__)

# ==================== CONFIGURATION ====================

class Settings(BaseSettings):
    APP_NAME: str = "Milko"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str = "change-me-milko-dev-secret"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440  # 24 hours
    DATABASE_URL: str = "sqlite+aiosqlite:///./milko.db"
    ADMIN_EMAIL: str = "admin@milko.in"
    DELIVERY_CHARGES: float = 0.0  # free delivery
    CURRENCY: str = "INR"
    SEED_SAMPLE_DATA: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "allow"

settings = Settings()

# ==================== DATABASE SETUP ====================

engine = create_async_engine(settings.DATABASE_URL, echo=settings.DEBUG)
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

class Base(DeclarativeBase):
    pass

async def get_db():
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

# ==================== DATABASE MODELS ====================

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), default="customer")
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    addresses = relationship("Address", back_populates="user", cascade="all, delete-orphan")
    orders = relationship("Order", back_populates="user", cascade="all, delete-orphan")


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False, index=True)
    slug = Column(String(200), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    price_per_litre = Column(Float, nullable=False)
    selling_price = Column(Float, nullable=True)
    compare_at_price = Column(Float, nullable=True)
    suffix_after_price = Column(String(30), default="/litre")
    image_url = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    variations = relationship(
        "ProductVariation", back_populates="product", cascade="all, delete-orphan", order_by="ProductVariation.id"
    )


class ProductVariation(Base):
    __tablename__ = "product_variations"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    size = Column(String(50), nullable=False)
    price_multiplier = Column(Float, default=1.0)
    price = Column(Float, nullable=True)
    is_available = Column(Boolean, default=True)

    product = relationship("Product", back_populates="variations")


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, index=True, nullable=False)
    description = Column(Text, nullable=True)
    discount_type = Column(String(20), nullable=False)
    discount_value = Column(Float, nullable=False)
    min_purchase_amount = Column(Float, default=0.0)
    max_discount_amount = Column(Float, nullable=True)
    usage_limit = Column(Integer, nullable=True)
    used_count = Column(Integer, default=0)
    valid_from = Column(DateTime, default=datetime.utcnow)
    valid_until = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Address(Base):
    __tablename__ = "addresses"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    name = Column(String(100), nullable=False)
    street = Column(Text, nullable=False)
    city = Column(String(100), nullable=False)
    state = Column(String(100), nullable=False)
    postal_code = Column(String(10), nullable=False)
    country = Column(String(100), default="India")
    phone = Column(String(15), default="")
    is_default = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="addresses")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), unique=True, index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(String(50), default=OrderStatus.PLACED.value)
    payment_status = Column(String(50), default=PaymentStatus.PENDING.value)
    payment_method = Column(String(50), default=PaymentMethod.COD.value)
    currency = Column(String(3), default="INR")
    subtotal = Column(Float, nullable=False)
    discount = Column(Float, default=0.0)
    delivery_charges = Column(Float, default=0.0)
    total = Column(Float, nullable=False)
    coupon_code = Column(String(50), nullable=True)
    delivery_name = Column(String(100), nullable=False)
    delivery_street = Column(Text, nullable=False)
    delivery_city = Column(String(100), nullable=False)
    delivery_state = Column(String(100), nullable=False)
    delivery_postal_code = Column(String(10), nullable=False)
    delivery_country = Column(String(100), nullable=False)
    delivery_phone = Column(String(15), nullable=False)
    customer_notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    package_prepared_at = Column(DateTime, nullable=True)
    out_for_delivery_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    delivery_date = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True)
    variation_id = Column(Integer, nullable=True)
    product_name = Column(String(200), nullable=False)
    variation_size = Column(String(50), nullable=True)
    image_url = Column(String(500), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    line_total = Column(Float, nullable=False)

    order = relationship("Order", back_populates="items")


# ==================== PYDANTIC SCHEMAS ====================

# User Schemas
class UserCreate(CamelModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(CamelModel):
    email: EmailStr
    password: str


class UserResponse(CamelModel):
    id: int
    name: str
    email: str
    role: str
    created_at: datetime


class TokenResponse(CamelModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


# Address Schemas
class AddressCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    postal_code: str = Field(..., pattern=r'^\d{6}$')
    country: str = "India"
    phone: str = Field(..., max_length=15, pattern=r'^\s*\S')
    is_default: bool = False


class AddressUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    street: Optional[str] = Field(None, min_length=1)
    city: Optional[str] = Field(None, min_length=1, max_length=100)
    state: Optional[str] = Field(None, min_length=1, max_length=100)
    postal_code: Optional[str] = Field(None, pattern=r'^\d{6}$')
    country: Optional[str] = None
    phone: Optional[str] = Field(None, max_length=15, pattern=r'^\s*\S')
    is_default: Optional[bool] = None


# Cart Schemas
class CartQuoteRequest(CamelModel):
    items: List[schemas.CartItem]
    coupon_code: Optional[str] = None


class CartQuote(CartTotals):
    coupon_error: Optional[str] = None
    coupon_message: Optional[str] = None


# Coupon Schemas
class CouponValidateRequest(CamelModel):
    code: str
    cart_amount: float = Field(0.0, ge=0)


class CouponValidateResponse(schemas.Coupon):
    discount_amount: float
    label: str


class CouponCreate(CamelModel):
    code: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: float = Field(..., ge=0)
    min_purchase_amount: Optional[float] = Field(0.0, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True


class CouponUpdate(CamelModel):
    code: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[float] = Field(None, ge=0)
    min_purchase_amount: Optional[float] = Field(None, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: Optional[bool] = None


class AdminCouponResponse(schemas.Coupon):
    label: str
    is_expired: bool
    is_exhausted: bool


# Order Schemas
class OrderItemResponse(CamelModel):
    product_id: Optional[int] = None
    variation_id: Optional[int] = None
    product_name: str
    variation_size: Optional[str] = None
    image_url: Optional[str] = None
    quantity: int
    unit_price: float
    line_total: float


class OrderResponse(schemas.Order):
    currency: str = "INR"
    coupon_code: Optional[str] = None
    delivery_address: schemas.Address
    customer_notes: Optional[str] = None
    items: List[OrderItemResponse] = []
    timeline: List[TimelineStep] = []
    payment_label: StatusBadge
    cod_badge: Optional[StatusBadge] = None
    delivery_display: str


class CreateOrderRequest(CamelModel):
    items: List[schemas.CartItem] = Field(..., min_length=1)
    address_id: Optional[int] = None
    address: Optional[AddressForm] = None
    payment_method: PaymentMethod = PaymentMethod.COD
    coupon_code: Optional[str] = None
    customer_notes: Optional[str] = None


class AdminOrderResponse(CamelModel):
    order_id: int
    order_number: str
    ordered_at: datetime
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    amount: float
    currency: str
    status: OrderStatus
    payment_label: StatusBadge
    cod_badge: Optional[StatusBadge] = None
    delivery_display: str
    items_count: int


class OrderStatusUpdate(CamelModel):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None


# ==================== SECURITY ====================

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
security = HTTPBearer(auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not credentials:
        raise credentials_exception

    payload = decode_token(credentials.credentials)
    if payload is None:
        raise credentials_exception

    user_id = payload.get("sub")
    if user_id is None or not str(user_id).isdigit():
        raise credentials_exception

    result = await db.execute(select(User).where(User.id == int(user_id)))
    user = result.scalar_one_or_none()

    if user is None or not user.is_active:
        raise credentials_exception

    return user


async def get_current_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin only")
    return current_user


# ==================== HELPER FUNCTIONS ====================

def generate_order_number() -> str:
    timestamp = datetime.now().strftime("%Y%m%d%H%M")
    random_part = ''.join(random.choices(string.digits, k=4))
    return f"MK{timestamp}{random_part}"


async def load_catalog(db: AsyncSession, product_ids) -> Dict[int, schemas.Product]:
    """Active products (with variations) for the given ids, keyed by id."""
    if not product_ids:
        return {}
    result = await db.execute(
        select(Product)
        .options(selectinload(Product.variations))
        .where(Product.id.in_(list(product_ids)), Product.is_active == True)
    )
    return {p.id: schemas.Product.model_validate(p) for p in result.scalars().all()}


async def find_coupon(db: AsyncSession, code: str) -> Optional[Coupon]:
    result = await db.execute(select(Coupon).where(Coupon.code == normalize_code(code)))
    return result.scalar_one_or_none()


async def price_cart(
    db: AsyncSession,
    items: List[schemas.CartItem],
    coupon_code: Optional[str] = None,
) -> Tuple[CartQuote, Optional[Coupon], Dict[int, schemas.Product]]:
    """Price the cart and apply the coupon if it passes validation.

    A rejected coupon never fails the request; the quote just carries no
    discount and says why.
    """
    catalog = await load_catalog(db, {item.product_id for item in items})
    totals = compute_totals(items, catalog, delivery_charges=settings.DELIVERY_CHARGES)
    quote = CartQuote(**totals.model_dump())

    if not coupon_code:
        return quote, None, catalog

    coupon_row = await find_coupon(db, coupon_code)
    if coupon_row is None:
        quote.coupon_message = "Invalid coupon code"
        return quote, None, catalog

    result = validate_coupon(schemas.Coupon.model_validate(coupon_row), totals.subtotal, datetime.utcnow())
    if not result.valid:
        logger.info("Coupon %s rejected: %s", coupon_row.code, result.error.value)
        quote.coupon_error = result.error.value
        quote.coupon_message = result.message
        return quote, None, catalog

    totals = compute_totals(items, catalog, result.coupon, delivery_charges=settings.DELIVERY_CHARGES)
    return CartQuote(**totals.model_dump()), coupon_row, catalog


def build_order_response(order: Order) -> OrderResponse:
    view = schemas.Order.model_validate(order)
    return OrderResponse(
        **view.model_dump(),
        currency=order.currency,
        coupon_code=order.coupon_code,
        customer_notes=order.customer_notes,
        delivery_address=schemas.Address(
            name=order.delivery_name,
            street=order.delivery_street,
            city=order.delivery_city,
            state=order.delivery_state,
            postal_code=order.delivery_postal_code,
            country=order.delivery_country,
            phone=order.delivery_phone,
        ),
        items=[OrderItemResponse.model_validate(item) for item in order.items],
        timeline=build_timeline(view),
        payment_label=resolve_payment_label(view),
        cod_badge=resolve_cod_badge(view),
        delivery_display=resolve_delivery_display(view),
    )


def build_coupon_response(coupon: Coupon) -> AdminCouponResponse:
    view = schemas.Coupon.model_validate(coupon)
    return AdminCouponResponse(
        **view.model_dump(),
        label=describe_discount(view),
        is_expired=is_expired(view, datetime.utcnow()),
        is_exhausted=is_exhausted(view),
    )


def check_coupon(data: dict) -> schemas.Coupon:
    try:
        coupon = schemas.Coupon(**data)
    except PydanticValidationError as e:
        raise ValidationError(e.errors()[0]["msg"])
    coupon.valid_from = as_naive_utc(coupon.valid_from)
    if coupon.valid_until is not None:
        coupon.valid_until = as_naive_utc(coupon.valid_until)
    return coupon


def coupon_columns(coupon: schemas.Coupon) -> dict:
    columns = coupon.model_dump(exclude={"id", "used_count"})
    columns["discount_type"] = coupon.discount_type.value
    return columns


async def get_order_row(db: AsyncSession, order_id: int, user_id: Optional[int] = None) -> Order:
    query = select(Order).options(selectinload(Order.items), selectinload(Order.user)).where(Order.id == order_id)
    if user_id is not None:
        query = query.where(Order.user_id == user_id)
    result = await db.execute(query)
    order = result.scalar_one_or_none()
    if not order:
        raise NotFound("Order not found")
    return order


async def get_address_row(db: AsyncSession, address_id: int, user_id: int) -> Address:
    result = await db.execute(
        select(Address).where(Address.id == address_id, Address.user_id == user_id)
    )
    address = result.scalar_one_or_none()
    if not address:
        raise NotFound("Address not found")
    return address


async def clear_default_address(db: AsyncSession, user_id: int, keep_id: Optional[int] = None):
    result = await db.execute(
        select(Address).where(Address.user_id == user_id, Address.is_default == True)
    )
    for address in result.scalars().all():
        if address.id != keep_id:
            address.is_default = False


# ==================== APP LIFESPAN ====================

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    print("🚀 Starting Milko Server...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("✅ Database initialized")

    if settings.SEED_SAMPLE_DATA:
        await seed_sample_data()

    yield

    # Shutdown
    print("👋 Shutting down Milko Server...")
    await engine.dispose()


# ==================== FASTAPI APP ====================

app = FastAPI(
    title="Milko API",
    description="Milk Subscription Storefront Backend",
    version=settings.APP_VERSION,
    lifespan=lifespan
)

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify actual origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== SEED DATA ====================

async def seed_sample_data():
    """Seed sample products and coupons"""
    async with async_session_maker() as db:
        # Check if data exists
        result = await db.execute(select(func.count(Product.id)))
        count = result.scalar()

        if count > 0:
            print("📦 Sample data already exists")
            return

        print("🌱 Seeding sample data...")

        products_data = [
            {
                "name": "Farm Fresh Cow Milk", "slug": "cow-milk", "price_per_litre": 64,
                "selling_price": 60, "compare_at_price": 70,
                "description": "Unprocessed cow milk delivered every morning",
                "variations": [
                    {"size": "500 ml", "price_multiplier": 0.5},
                    {"size": "1 L", "price_multiplier": 1.0},
                    {"size": "2 L", "price_multiplier": 2.0, "price": 115},
                ],
            },
            {
                "name": "A2 Buffalo Milk", "slug": "buffalo-milk", "price_per_litre": 80,
                "description": "Rich and creamy buffalo milk",
                "variations": [
                    {"size": "500 ml", "price_multiplier": 0.5},
                    {"size": "1 L", "price_multiplier": 1.0},
                ],
            },
            {
                "name": "Desi Ghee", "slug": "desi-ghee", "price_per_litre": 1200,
                "selling_price": 1100, "compare_at_price": 1300, "suffix_after_price": "/kg",
                "description": "Bilona ghee from A2 milk",
                "variations": [
                    {"size": "250 g", "price_multiplier": 0.25},
                    {"size": "500 g", "price_multiplier": 0.5, "is_available": False},
                ],
            },
        ]

        for prod_data in products_data:
            variations = prod_data.pop("variations")
            product = Product(**prod_data)
            product.variations = [ProductVariation(**v) for v in variations]
            db.add(product)

        coupons_data = [
            {"code": "WELCOME10", "description": "10% off your first order", "discount_type": "percentage",
             "discount_value": 10, "min_purchase_amount": 100, "max_discount_amount": 50},
            {"code": "FLAT50", "description": "₹50 off orders above ₹300", "discount_type": "fixed",
             "discount_value": 50, "min_purchase_amount": 300, "usage_limit": 100},
        ]
        for coupon_data in coupons_data:
            db.add(Coupon(**coupon_data))

        await db.commit()
        print("✅ Sample data seeded successfully")


# ==================== API ROUTES ====================

# Health Check
@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "app": settings.APP_NAME, "version": settings.APP_VERSION}


# ==================== AUTH ROUTES ====================

@app.post("/api/auth/register", response_model=TokenResponse)
async def register(user_data: UserCreate, db: AsyncSession = Depends(get_db)):
    """Register a new user"""
    result = await db.execute(select(User).where(User.email == user_data.email))
    if result.scalar_one_or_none():
        raise HTTPException(status_code=400, detail="Email already registered")

    new_user = User(
        name=user_data.name,
        email=user_data.email,
        password_hash=get_password_hash(user_data.password),
        role="admin" if user_data.email.lower() == settings.ADMIN_EMAIL.lower() else "customer",
    )
    db.add(new_user)
    await db.commit()
    await db.refresh(new_user)

    access_token = create_access_token(data={"sub": str(new_user.id)})
    return TokenResponse(access_token=access_token, user=UserResponse.model_validate(new_user))


@app.post("/api/auth/login", response_model=TokenResponse)
async def login(login_data: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Login with email and password"""
    result = await db.execute(select(User).where(User.email == login_data.email))
    user = result.scalar_one_or_none()

    if not user or not verify_password(login_data.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is disabled")

    access_token = create_access_token(data={"sub": str(user.id)})
    return TokenResponse(access_token=access_token, user=UserResponse.model_validate(user))


@app.get("/api/auth/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    return UserResponse.model_validate(current_user)


# ==================== PRODUCT ROUTES ====================

@app.get("/api/products", response_model=List[schemas.Product])
async def get_products(db: AsyncSession = Depends(get_db)):
    """Get active products with their variations"""
    result = await db.execute(
        select(Product)
        .options(selectinload(Product.variations))
        .where(Product.is_active == True)
        .order_by(Product.id)
    )
    return [schemas.Product.model_validate(p) for p in result.scalars().all()]


@app.get("/api/products/{product_id}", response_model=schemas.Product)
async def get_product(
    product_id: int,
    details: bool = Query(False),
    db: AsyncSession = Depends(get_db)
):
    """Get single product; variations are included with ?details=true"""
    catalog = await load_catalog(db, [product_id])
    product = catalog.get(product_id)
    if not product:
        raise NotFound("Product not found")
    if not details:
        product = product.model_copy(update={"variations": []})
    return product


# ==================== CART ROUTES ====================

@app.post("/api/cart/quote", response_model=CartQuote)
async def quote_cart(quote_data: CartQuoteRequest, db: AsyncSession = Depends(get_db)):
    """Price a cart (and optional coupon) against current catalog prices"""
    quote, _, _ = await price_cart(db, quote_data.items, quote_data.coupon_code)
    return quote


# ==================== COUPON ROUTES ====================

@app.post("/api/coupons/validate", response_model=CouponValidateResponse)
async def validate_coupon_code(payload: CouponValidateRequest, db: AsyncSession = Depends(get_db)):
    """Validate a coupon code against the cart amount"""
    coupon_row = await find_coupon(db, payload.code)
    if coupon_row is None:
        raise NotFound("Invalid coupon code")

    result = validate_coupon(schemas.Coupon.model_validate(coupon_row), payload.cart_amount, datetime.utcnow())
    if not result.valid:
        logger.info("Coupon %s rejected: %s", coupon_row.code, result.error.value)
        return JSONResponse(status_code=400, content={"detail": result.message, "error": result.error.value})

    return CouponValidateResponse(
        **result.coupon.model_dump(),
        discount_amount=result.discount_amount,
        label=describe_discount(result.coupon),
    )


@app.get("/api/admin/coupons", response_model=List[AdminCouponResponse])
async def admin_list_coupons(
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(select(Coupon).order_by(Coupon.created_at.desc()))
    return [build_coupon_response(c) for c in result.scalars().all()]


@app.get("/api/admin/coupons/{coupon_id}", response_model=AdminCouponResponse)
async def admin_get_coupon(
    coupon_id: int,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db)
):
    coupon = await db.get(Coupon, coupon_id)
    if not coupon:
        raise NotFound("Coupon not found")
    return build_coupon_response(coupon)


@app.post("/api/admin/coupons", response_model=AdminCouponResponse)
async def admin_create_coupon(
    coupon_data: CouponCreate,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db)
):
    """Create a coupon"""
    data = coupon_data.model_dump()
    data["valid_from"] = data["valid_from"] or datetime.utcnow()
    checked = check_coupon(data)

    if await find_coupon(db, checked.code):
        raise HTTPException(status_code=400, detail="Coupon code already exists")

    coupon = Coupon(**coupon_columns(checked))
    db.add(coupon)
    await db.commit()
    await db.refresh(coupon)
    return build_coupon_response(coupon)


@app.put("/api/admin/coupons/{coupon_id}", response_model=AdminCouponResponse)
async def admin_update_coupon(
    coupon_id: int,
    update_data: CouponUpdate,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db)
):
    """Update a coupon"""
    coupon = await db.get(Coupon, coupon_id)
    if not coupon:
        raise NotFound("Coupon not found")

    changes = update_data.model_dump(exclude_unset=True)
    checked = check_coupon({**schemas.Coupon.model_validate(coupon).model_dump(), **changes})

    if checked.code != coupon.code:
        existing = await find_coupon(db, checked.code)
        if existing and existing.id != coupon.id:
            raise HTTPException(status_code=400, detail="Coupon code already exists")

    for field, value in coupon_columns(checked).items():
        setattr(coupon, field, value)

    await db.commit()
    await db.refresh(coupon)
    return build_coupon_response(coupon)


@app.delete("/api/admin/coupons/{coupon_id}")
async def admin_delete_coupon(
    coupon_id: int,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db)
):
    coupon = await db.get(Coupon, coupon_id)
    if not coupon:
        raise NotFound("Coupon not found")
    await db.delete(coupon)
    await db.commit()
    return {"id": coupon_id, "deleted": True}


# ==================== ADDRESS ROUTES ====================

@app.get("/api/addresses", response_model=List[schemas.Address])
async def get_addresses(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get current user's addresses, default first"""
    result = await db.execute(
        select(Address)
        .where(Address.user_id == current_user.id)
        .order_by(Address.is_default.desc(), Address.created_at)
    )
    return [schemas.Address.model_validate(a) for a in result.scalars().all()]


@app.get("/api/addresses/{address_id}", response_model=schemas.Address)
async def get_address(
    address_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    address = await get_address_row(db, address_id, current_user.id)
    return schemas.Address.model_validate(address)


@app.post("/api/addresses", response_model=schemas.Address)
async def create_address(
    address_data: AddressCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Save a new address; the first one becomes the default"""
    result = await db.execute(select(func.count(Address.id)).where(Address.user_id == current_user.id))
    is_first = result.scalar() == 0

    address = Address(user_id=current_user.id, **address_data.model_dump())
    address.is_default = is_first or address_data.is_default
    if address.is_default and not is_first:
        await clear_default_address(db, current_user.id)

    db.add(address)
    await db.commit()
    await db.refresh(address)
    return schemas.Address.model_validate(address)


@app.put("/api/addresses/{address_id}", response_model=schemas.Address)
async def update_address(
    address_id: int,
    update_data: AddressUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Update an address. Un-defaulting is done by defaulting another one."""
    address = await get_address_row(db, address_id, current_user.id)
    changes = update_data.model_dump(exclude_unset=True)
    make_default = changes.pop("is_default", None)

    for field, value in changes.items():
        if value is not None:
            setattr(address, field, value)

    if make_default:
        await clear_default_address(db, current_user.id, keep_id=address.id)
        address.is_default = True

    await db.commit()
    await db.refresh(address)
    return schemas.Address.model_validate(address)


@app.delete("/api/addresses/{address_id}")
async def delete_address(
    address_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Delete an address; the oldest remaining one takes over as default"""
    address = await get_address_row(db, address_id, current_user.id)
    was_default = address.is_default
    await db.delete(address)
    await db.flush()

    if was_default:
        result = await db.execute(
            select(Address).where(Address.user_id == current_user.id).order_by(Address.created_at, Address.id)
        )
        successor = result.scalars().first()
        if successor:
            successor.is_default = True

    await db.commit()
    return {"id": address_id, "deleted": True}


# ==================== ORDER ROUTES ====================

@app.get("/api/orders", response_model=List[OrderResponse])
async def get_orders(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get user's orders"""
    result = await db.execute(
        select(Order)
        .options(selectinload(Order.items))
        .where(Order.user_id == current_user.id)
        .order_by(Order.created_at.desc())
    )
    return [build_order_response(o) for o in result.scalars().all()]


@app.get("/api/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get single order with its timeline and status badges"""
    order = await get_order_row(db, order_id, current_user.id)
    return build_order_response(order)


@app.post("/api/orders", response_model=OrderResponse)
async def create_order(
    order_data: CreateOrderRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Place an order for the submitted cart"""
    if order_data.address_id is not None:
        delivery = schemas.Address.model_validate(
            await get_address_row(db, order_data.address_id, current_user.id)
        )
    elif order_data.address is not None:
        delivery = order_data.address.to_address()
    else:
        raise ValidationError("Delivery address is required", fields=["address"])

    missing = missing_address_fields(delivery)
    if missing:
        raise ValidationError("Please fill in all address fields", fields=missing)

    quote, coupon_row, catalog = await price_cart(db, order_data.items, order_data.coupon_code)
    if not quote.line_items:
        raise ValidationError("Cart is empty")

    unavailable = [line for line in quote.line_items if not line.is_available]
    if unavailable:
        names = ", ".join(
            f"{line.product_name} ({line.variation_size})" if line.variation_size else line.product_name
            for line in unavailable
        )
        raise ValidationError(f"{names} is not available", fields=["items"])

    order = Order(
        order_number=generate_order_number(),
        user_id=current_user.id,
        status=OrderStatus.PLACED.value,
        payment_method=order_data.payment_method.value,
        payment_status=PaymentStatus.PENDING.value,
        currency=settings.CURRENCY,
        subtotal=quote.subtotal,
        discount=quote.discount,
        delivery_charges=quote.delivery_charges,
        total=quote.total,
        coupon_code=coupon_row.code if coupon_row else None,
        delivery_name=delivery.name,
        delivery_street=delivery.street,
        delivery_city=delivery.city,
        delivery_state=delivery.state,
        delivery_postal_code=delivery.postal_code,
        delivery_country=delivery.country,
        delivery_phone=delivery.phone,
        customer_notes=order_data.customer_notes,
    )
    order.items = [
        OrderItem(
            product_id=line.product_id,
            variation_id=line.variation_id,
            product_name=line.product_name,
            variation_size=line.variation_size,
            image_url=catalog[line.product_id].image_url,
            quantity=line.quantity,
            unit_price=line.unit_price,
            line_total=line.line_total,
        )
        for line in quote.line_items
    ]
    db.add(order)

    if coupon_row is not None:
        coupon_row.used_count = (coupon_row.used_count or 0) + 1

    await db.commit()
    logger.info("Order %s placed by user %s, total %.2f", order.order_number, current_user.id, order.total)

    order = await get_order_row(db, order.id, current_user.id)
    return build_order_response(order)


# ==================== ADMIN ORDER ROUTES ====================

@app.get("/api/admin/orders", response_model=List[AdminOrderResponse])
async def admin_list_orders(
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db)
):
    query = select(Order).options(selectinload(Order.items), selectinload(Order.user)).order_by(Order.created_at.desc())
    if order_status is not None:
        query = query.where(Order.status == order_status.value)
    result = await db.execute(query)

    orders = []
    for o in result.scalars().all():
        view = schemas.Order.model_validate(o)
        orders.append(AdminOrderResponse(
            order_id=o.id,
            order_number=o.order_number,
            ordered_at=o.created_at,
            customer_name=o.user.name if o.user else None,
            customer_email=o.user.email if o.user else None,
            amount=o.total,
            currency=o.currency,
            status=view.status,
            payment_label=resolve_payment_label(view),
            cod_badge=resolve_cod_badge(view),
            delivery_display=resolve_delivery_display(view),
            items_count=sum(item.quantity for item in o.items),
        ))
    return orders


@app.get("/api/admin/orders/pending-count")
async def admin_pending_count(
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db)
):
    """Number of placed orders waiting for confirmation"""
    result = await db.execute(select(func.count(Order.id)).where(Order.status == OrderStatus.PLACED.value))
    return {"count": result.scalar()}


@app.patch("/api/admin/orders/{order_id}/status", response_model=OrderResponse)
async def admin_update_order_status(
    order_id: int,
    update_data: OrderStatusUpdate,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db)
):
    """Move an order along its fulfillment flow or mark it paid"""
    order = await get_order_row(db, order_id)
    now = datetime.utcnow()

    if update_data.status is not None and update_data.status.value != order.status:
        current = OrderStatus(order.status)
        if not can_transition(current, update_data.status):
            raise ValidationError(f"Cannot move order from {current.value} to {update_data.status.value}")
        order.status = update_data.status.value
        field = timestamp_field(update_data.status)
        if field and getattr(order, field) is None:
            setattr(order, field, now)
        if update_data.status == OrderStatus.DELIVERED and order.delivery_date is None:
            order.delivery_date = now
        logger.info("Order %s moved from %s to %s", order.order_number, current.value, order.status)

    if update_data.payment_status is not None:
        order.payment_status = update_data.payment_status.value

    await db.commit()
    order = await get_order_row(db, order_id)
    return build_order_response(order)


# ==================== ERROR HANDLERS ====================

@app.exception_handler(MilkoError)
async def milko_error_handler(request: Request, exc: MilkoError):
    content = {"detail": exc.message}
    if isinstance(exc, ValidationError) and exc.fields:
        content["fields"] = exc.fields
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(500)
async def internal_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ==================== RUN SERVER ====================

if __name__ == "__main__":
    import uvicorn

    print("""
    ╔═══════════════════════════════════════════════════════════╗
    ║                                                           ║
    ║     🥛 Milko - Milk Subscription Store 🥛                 ║
    ║                                                           ║
    ║     Server running at: http://localhost:8000              ║
    ║     API Docs:          http://localhost:8000/docs         ║
    ║     Health Check:      http://localhost:8000/api/health   ║
    ║                                                           ║
    ╚═══════════════════════════════════════════════════════════╝
    """)

    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=settings.DEBUG,
        log_level="info"
    )
