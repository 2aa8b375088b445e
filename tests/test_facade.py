import asyncio

import fakeredis
import pytest

from conftest import product_data
from storefront import config
from storefront.memstore import VolatileStore
from storefront.redisstore import DurableStore
from storefront.storage import StorageFacade


@pytest.fixture
def redis_configured():
    return config.override_settings(redis_host="redis.invalid", connect_timeout=0.05)


async def test_without_redis_host_stays_volatile():
    facade = StorageFacade()
    active = await facade.connect()
    assert isinstance(active, VolatileStore)
    assert facade.backend_name == "VolatileStore"
    assert len(await facade.get_all_products()) == 5


async def test_connect_timeout_falls_back(monkeypatch, redis_configured, caplog):
    async def hang(self):
        await asyncio.sleep(10)

    monkeypatch.setattr(DurableStore, "connect", hang)
    facade = StorageFacade()
    active = await facade.connect()

    assert isinstance(active, VolatileStore)
    assert [p.id for p in await facade.get_all_products()] == [1, 2, 3, 4, 5]
    assert "falling back to in-memory storage" in caplog.text


async def test_connection_error_falls_back(monkeypatch, redis_configured):
    async def refuse(self):
        raise ConnectionError("refused")

    monkeypatch.setattr(DurableStore, "connect", refuse)
    facade = StorageFacade()
    assert isinstance(await facade.connect(), VolatileStore)


async def test_connect_switches_to_redis(monkeypatch, redis_configured):
    fake = fakeredis.FakeAsyncRedis(decode_responses=True)
    await fake.flushall()
    monkeypatch.setattr(DurableStore, "from_settings", classmethod(lambda cls, settings: cls(fake)))

    facade = StorageFacade()
    active = await facade.connect()
    assert isinstance(active, DurableStore)
    assert facade.backend_name == "DurableStore"
    assert len(await facade.get_all_products()) == 5
    assert await fake.exists("products:list")

    # the backend is chosen once
    assert await facade.connect() is active
    await facade.close()


async def test_facade_delegates_to_active(store):
    product = await store.create_product(product_data(name="Copy"))
    assert product.id == 6
    assert (await store.active.get_product_by_id(6)).name == "Copy"
