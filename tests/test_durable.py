import json
from datetime import timedelta

import pytest

from conftest import order_data, product_data
from storefront.orders import OrderLifecycleManager
from storefront.redisstore import DurableStore
from storefront.schemas import UserCreate
from storefront.storage import InsufficientStockError, StorageError
from storefront.utils import utcnow


async def test_connect_seeds_once(durable):
    products = await durable.get_all_products()
    assert [p.id for p in products] == [1, 2, 3, 4, 5]
    assert await durable.client.exists("products:list")

    await durable.delete_product(5)
    # reconnecting with the sentinel present must not seed again
    await DurableStore(durable.client).connect()
    assert [p.id for p in await durable.get_all_products()] == [1, 2, 3, 4]


async def test_product_hash_layout(durable):
    product = await durable.create_product(product_data(price=9.99, rating=4.5))
    assert product.id == 6

    raw = await durable.client.hgetall(f"product:{product.id}")
    assert raw["price"] == "9.99"
    assert raw["reviewCount"] == "3"
    # optional fields that are unset are not written at all
    assert "originalPrice" not in raw
    assert "badge" not in raw
    assert await durable.client.sismember("products:list", str(product.id))
    assert await durable.client.get("products:nextId") == "7"

    loaded = await durable.get_product_by_id(product.id)
    assert loaded == product
    assert loaded.original_price is None
    assert loaded.rating == 4.5


async def test_update_product_merges_and_clears_fields(durable):
    product = await durable.create_product(product_data(original_price=150.0, badge="Sale"))

    updated = await durable.update_product(product.id, {"name": "Renamed", "badge": None})
    assert updated.name == "Renamed"
    assert updated.badge is None
    assert updated.original_price == 150.0

    raw = await durable.client.hgetall(f"product:{product.id}")
    assert "badge" not in raw
    assert raw["name"] == "Renamed"
    assert raw["originalPrice"] == "150.0"
    assert await durable.update_product(999, {"name": "x"}) is None


async def test_stock_updates(durable):
    product = await durable.create_product(product_data(stock=2))
    assert (await durable.update_product_stock(product.id, -2)).stock == 0
    with pytest.raises(InsufficientStockError):
        await durable.update_product_stock(product.id, -1)
    assert (await durable.get_product_by_id(product.id)).stock == 0
    assert await durable.update_product_stock(999, 1) is None


async def test_delete_product(durable):
    assert await durable.delete_product(1) is True
    assert await durable.delete_product(1) is False
    assert not await durable.client.sismember("products:list", "1")
    assert await durable.get_product_by_id(1) is None


async def test_put_product_keeps_id_and_moves_counter(durable):
    product = (await durable.get_product_by_id(2)).model_copy(update={"id": 40, "badge": None})
    await durable.put_product(product)
    assert (await durable.get_product_by_id(40)).name == product.name
    created = await durable.create_product(product_data())
    assert created.id == 41


async def test_orders_are_json_blobs(durable):
    product = await durable.get_product_by_id(1)
    order = await durable.create_order(order_data(product, quantity=2, email="Buyer@example.com"))

    blob = json.loads(await durable.client.get(f"order:{order.id}"))
    assert blob["customerEmail"] == "Buyer@example.com"
    assert blob["status"] == "received"
    assert blob["items"][0]["productId"] == 1
    assert await durable.client.sismember("orders:list", order.id)
    assert await durable.client.sismember("email:orders:buyer@example.com", order.id)

    assert await durable.get_order_by_id(order.id) == order
    assert [o.id for o in await durable.get_orders_by_email("buyer@example.com")] == [order.id]

    moved = await durable.update_order_status(order.id, "completed")
    assert moved.status == "completed"
    assert (await durable.get_order_by_id(order.id)).status == "completed"
    assert await durable.update_order_status("ORD-missing", "completed") is None


async def test_all_orders_newest_first(durable):
    product = await durable.get_product_by_id(1)
    older = await durable.create_order(order_data(product))
    older = older.model_copy(update={"created_at": older.created_at - timedelta(hours=1)})
    await durable.put_order(older)
    newer = await durable.create_order(order_data(product))

    assert [o.id for o in await durable.get_all_orders()] == [newer.id, older.id]


async def test_corrupt_order_raises_storage_error(durable):
    await durable.client.set("order:ORD-bad", "{not json")
    with pytest.raises(StorageError):
        await durable.get_order_by_id("ORD-bad")


async def test_lifecycle_round_trip_on_redis(durable):
    manager = OrderLifecycleManager(durable)
    product = await durable.create_product(product_data(stock=10))
    order = await manager.create_order(order_data(product, quantity=3))

    await manager.transition(order.id, "cancelled")
    assert (await durable.get_product_by_id(product.id)).stock == 13
    await manager.transition(order.id, "processing")
    assert (await durable.get_product_by_id(product.id)).stock == 10


async def test_users_and_email_index(durable):
    user = await durable.create_user(UserCreate(email="Sam@Example.com", password="hashed-value", name="Sam"))
    assert await durable.client.get("user:email:sam@example.com") == user.id
    raw = await durable.client.hgetall(f"user:{user.id}")
    assert raw["isEmailVerified"] == "false"

    assert (await durable.get_user_by_email("SAM@example.com")) == user
    assert await durable.get_user("missing") is None

    updated = await durable.update_user(user.id, {"email": "sam2@example.com", "role": "admin"})
    assert updated.email == "sam2@example.com"
    assert await durable.client.get("user:email:sam@example.com") is None
    assert await durable.get_user_by_email("sam2@example.com") == updated
    assert [u.id for u in await durable.get_admin_users()] == [user.id]
    assert await durable.has_admin_account()

    assert await durable.delete_user(user.id) is True
    assert await durable.get_user_by_email("sam2@example.com") is None
    assert not await durable.client.sismember("users:list", user.id)


async def test_delete_unverified_users(durable):
    stale = await durable.create_user(UserCreate(email="stale@example.com", password="x" * 6, name="Stale"))
    await durable.client.hset(f"user:{stale.id}", "createdAt", (utcnow() - timedelta(hours=1)).isoformat())
    fresh = await durable.create_user(UserCreate(email="fresh@example.com", password="x" * 6, name="Fresh"))
    await durable.create_otp("stale@example.com", "123456", "email_verification", utcnow() + timedelta(minutes=5))

    assert await durable.delete_unverified_users(600) == 1
    assert await durable.get_user(stale.id) is None
    assert await durable.get_user(fresh.id) is not None
    assert await durable.get_otp("stale@example.com", "123456", "email_verification") is None


async def test_otp_storage(durable):
    expires = utcnow() + timedelta(minutes=10)
    otp = await durable.create_otp("Code@Example.com", "654321", "password_reset", expires)
    assert 0 < await durable.client.ttl("otp:code@example.com:password_reset") <= 600

    assert await durable.get_otp("code@example.com", "000000", "password_reset") is None
    assert (await durable.get_otp("code@example.com", "654321", "password_reset")).id == otp.id
    assert await durable.get_last_otp_time("code@example.com", "password_reset") == otp.created_at

    assert await durable.delete_otp(otp) is True
    assert await durable.get_otp("code@example.com", "654321", "password_reset") is None
