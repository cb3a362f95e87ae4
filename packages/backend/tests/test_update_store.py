"""Redis-backed last-update store tests.

Learn: RedisUpdateStore takes a getter rather than a client so it can be
built before the Redis pool exists (app factory) and fail cleanly when
the pool never comes up.
"""

import pytest

from storefront.cache import get_redis
from storefront.realtime import RedisUpdateStore, UpdateEvent, UpdateStoreError

KEY = "last_product_update"


@pytest.fixture()
def store(fake_redis):
    return RedisUpdateStore(get_redis, key=KEY, ttl_seconds=3600)


@pytest.mark.asyncio
async def test_save_then_get_returns_event(store, fake_redis):
    event = UpdateEvent.create({"type": "stock_change", "productId": "p1", "inStock": False})
    await store.save(event)

    assert await store.get_last() == {
        "type": "stock_change",
        "productId": "p1",
        "inStock": False,
        "timestamp": event.timestamp,
    }
    assert fake_redis.ttls[KEY] == 3600


@pytest.mark.asyncio
async def test_save_overwrites_previous_entry(store, fake_redis):
    await store.save(UpdateEvent.create({"productId": "p1"}))
    await store.save(UpdateEvent.create({"productId": "p2"}))

    assert (await store.get_last())["productId"] == "p2"
    assert list(fake_redis.data) == [KEY]


@pytest.mark.asyncio
async def test_get_last_empty_store(store):
    assert await store.get_last() is None


@pytest.mark.asyncio
async def test_get_last_after_expiry(store, fake_redis):
    await store.save(UpdateEvent.create({"productId": "p1"}))
    fake_redis.expire_now(KEY)
    assert await store.get_last() is None


@pytest.mark.asyncio
async def test_malformed_entry_treated_as_absent(store, fake_redis):
    await fake_redis.set(KEY, "{not json")
    assert await store.get_last() is None


@pytest.mark.asyncio
async def test_non_object_entry_treated_as_absent(store, fake_redis):
    await fake_redis.set(KEY, "[1, 2, 3]")
    assert await store.get_last() is None


@pytest.mark.asyncio
async def test_non_utf8_entry_treated_as_absent(store, fake_redis):
    await fake_redis.set(KEY, b"\xff\xfe{}")
    assert await store.get_last() is None


@pytest.mark.asyncio
async def test_nan_in_entry_treated_as_absent(store, fake_redis):
    await fake_redis.set(KEY, '{"productId": "p1", "price": NaN}')
    assert await store.get_last() is None


@pytest.mark.asyncio
async def test_backend_errors_raise_update_store_error(store, fake_redis):
    fake_redis.fail = True
    with pytest.raises(UpdateStoreError):
        await store.get_last()
    with pytest.raises(UpdateStoreError):
        await store.save(UpdateEvent.create({"productId": "p1"}))


@pytest.mark.asyncio
async def test_uninitialized_redis_raises_update_store_error():
    store = RedisUpdateStore(get_redis, key=KEY, ttl_seconds=3600)
    with pytest.raises(UpdateStoreError):
        await store.get_last()


def test_event_create_rejects_non_objects():
    with pytest.raises(TypeError):
        UpdateEvent.create(["not", "a", "dict"])
    with pytest.raises(TypeError):
        UpdateEvent.create({"when": object()})


def test_event_create_rejects_nan_and_infinity():
    with pytest.raises(ValueError):
        UpdateEvent.create({"price": float("nan")})
    with pytest.raises(ValueError):
        UpdateEvent.create({"price": float("inf")})


def test_event_is_detached_from_caller_payload():
    payload = {"productId": "p1", "tags": ["a"]}
    event = UpdateEvent.create(payload)
    payload["tags"].append("b")
    assert event.payload == {"productId": "p1", "tags": ["a"]}
