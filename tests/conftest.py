import os
import tempfile
import uuid
from datetime import datetime, timedelta

import pytest

# The app reads its settings at import time
_db_dir = tempfile.mkdtemp(prefix="milko-test-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_db_dir, 'milko.db')}"
os.environ["ADMIN_EMAIL"] = "admin@milko.in"
os.environ["SEED_SAMPLE_DATA"] = "true"

from milko.schemas import Coupon, DiscountType, Order, OrderStatus, Product, Variation  # noqa: E402


NOW = datetime(2025, 6, 1, 9, 0, 0)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def catalog():
    cow = Product(
        id=1, name="Cow Milk", price_per_litre=64, selling_price=60, compare_at_price=70,
        variations=[
            Variation(id=11, size="500 ml", price_multiplier=0.5),
            Variation(id=12, size="1 L", price_multiplier=1.0),
            Variation(id=13, size="2 L", price_multiplier=2.0, price=115),
        ],
    )
    buffalo = Product(
        id=2, name="Buffalo Milk", price_per_litre=80,
        variations=[Variation(id=21, size="Jar", price=50)],
    )
    return {cow.id: cow, buffalo.id: buffalo}


def make_coupon(**overrides):
    data = {
        "code": "save20",
        "discount_type": DiscountType.PERCENTAGE,
        "discount_value": 20,
        "valid_from": NOW - timedelta(days=30),
    }
    data.update(overrides)
    return Coupon(**data)


def make_order(**overrides):
    data = {
        "id": 1,
        "order_number": "MK2025060109001234",
        "status": OrderStatus.PLACED,
        "subtotal": 120,
        "discount": 0,
        "delivery_charges": 0,
        "total": 120,
        "created_at": NOW,
    }
    data.update(overrides)
    return Order(**data)


@pytest.fixture(scope="session")
def client():
    from fastapi.testclient import TestClient
    from server import app

    with TestClient(app) as test_client:
        yield test_client


def register(client, email=None, name="Test Customer"):
    email = email or f"customer-{uuid.uuid4().hex[:8]}@milko.in"
    response = client.post("/api/auth/register", json={"name": name, "email": email, "password": "secret123"})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['accessToken']}"}


@pytest.fixture
def auth_headers(client):
    return register(client)


@pytest.fixture(scope="session")
def admin_headers(client):
    return register(client, email="admin@milko.in", name="Milko Admin")
