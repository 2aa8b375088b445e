from typing import Generator

import fakeredis
import pytest
from fastapi.testclient import TestClient

from storefront import config
from storefront.deps import get_lifecycle, get_notifier, get_storage
from storefront.main import app
from storefront.memstore import VolatileStore
from storefront.notifications import LogMailer, Notifier
from storefront.orders import OrderLifecycleManager
from storefront.redisstore import DurableStore
from storefront.schemas import OrderCreate, ProductCreate
from storefront.storage import StorageFacade

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin123"


def product_data(**overrides) -> ProductCreate:
    data = {
        "name": "Test License",
        "description": "A license used in tests",
        "image": "/test.png",
        "price": 100.0,
        "rating": 4,
        "review_count": 3,
        "category": "testing",
        "stock": 10,
    }
    data.update(overrides)
    return ProductCreate(**data)


def order_data(product, quantity: int = 1, email: str = "buyer@example.com") -> OrderCreate:
    return OrderCreate(
        customer_name="Test Buyer",
        customer_email=email,
        customer_phone="+8801700000000",
        items=[{
            "product_id": product.id,
            "product_name": product.name,
            "product_image": product.image,
            "price": product.price,
            "quantity": quantity,
        }],
        total=product.price * quantity,
    )


def order_json(product: dict, quantity: int = 1, email: str = "buyer@example.com") -> dict:
    return {
        "customerName": "Test Buyer",
        "customerEmail": email,
        "customerPhone": "+8801700000000",
        "items": [{
            "productId": product["id"],
            "productName": product["name"],
            "productImage": product["image"],
            "price": product["price"],
            "quantity": quantity,
        }],
        "total": product["price"] * quantity,
    }


@pytest.fixture(autouse=True)
def settings() -> Generator:
    # never reach for a real Redis from tests
    yield config.override_settings(
        redis_host="",
        decrement_stock_on_checkout=False,
        resend_timer=10,
        otp_expiry=600,
    )
    config.reset_settings()


@pytest.fixture(scope="function")
def store() -> StorageFacade:
    return StorageFacade(VolatileStore())


@pytest.fixture(scope="function")
async def durable() -> Generator:
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    await client.flushall()
    store = DurableStore(client)
    await store.connect()
    try:
        yield store
    finally:
        await client.flushall()
        await store.close()


@pytest.fixture(scope="function")
def outbox() -> Notifier:
    return Notifier(mailer=LogMailer(), base_delay=0)


@pytest.fixture(scope="function")
def client(store, outbox):
    manager = OrderLifecycleManager(store)
    app.dependency_overrides[get_storage] = lambda: store
    app.dependency_overrides[get_lifecycle] = lambda: manager
    app.dependency_overrides[get_notifier] = lambda: outbox
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def admin_headers(client) -> dict:
    r = client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert r.status_code == 200
    return {"Authorization": f"Bearer {r.json()['access_token']}"}
