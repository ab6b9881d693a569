"""Unit tests for the Redis revocation store against stub clients."""

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from authcore.storage.errors import StoreUnavailable
from authcore.storage.redis_cache import RedisRevocationStore, _SyncClientAdapter


class StubAsyncRedis:
    def __init__(self):
        self.data = {}
        self.ttls = {}
        self.closed = False

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def get(self, key):
        return self.data.get(key)

    async def ttl(self, key):
        if key not in self.data:
            return -2
        return self.ttls[key] if self.ttls[key] is not None else -1

    async def ping(self):
        return True

    async def aclose(self):
        self.closed = True


class SlowRedis(StubAsyncRedis):
    async def get(self, key):
        await asyncio.sleep(1)
        return None


class BrokenRedis(StubAsyncRedis):
    async def set(self, key, value, ex=None):
        raise RedisConnectionError("connection refused")

    async def get(self, key):
        raise RedisConnectionError("connection refused")


class StubSyncRedis:
    def __init__(self):
        self.data = {}
        self.closed = False

    def set(self, key, value, ex=None):
        self.data[key] = (value, ex)

    def get(self, key):
        entry = self.data.get(key)
        return entry[0] if entry else None

    def ttl(self, key):
        entry = self.data.get(key)
        return entry[1] if entry else -2

    def ping(self):
        return True

    def close(self):
        self.closed = True


def _store(client, timeout=0.5):
    return RedisRevocationStore("redis://stub", client=client, operation_timeout=timeout)


@pytest.mark.asyncio
async def test_set_with_ttl_uses_native_expiry():
    client = StubAsyncRedis()
    store = _store(client)

    await store.set_with_ttl("auth:revoked:abc", "invalid", 120)

    assert client.data["auth:revoked:abc"] == "invalid"
    assert client.ttls["auth:revoked:abc"] == 120
    assert await store.get("auth:revoked:abc") == "invalid"
    assert await store.ttl("auth:revoked:abc") == 120


@pytest.mark.asyncio
async def test_non_positive_ttl_skips_write():
    client = StubAsyncRedis()
    store = _store(client)

    await store.set_with_ttl("k", "invalid", 0)

    assert client.data == {}
    assert await store.ttl("k") is None


@pytest.mark.asyncio
async def test_timeout_raises_store_unavailable():
    store = _store(SlowRedis(), timeout=0.05)
    with pytest.raises(StoreUnavailable) as exc_info:
        await store.get("k")
    assert exc_info.value.store == "redis"
    assert isinstance(exc_info.value.cause, asyncio.TimeoutError)


@pytest.mark.asyncio
async def test_client_errors_raise_store_unavailable():
    store = _store(BrokenRedis())
    with pytest.raises(StoreUnavailable):
        await store.get("k")
    with pytest.raises(StoreUnavailable):
        await store.set_with_ttl("k", "invalid", 10)


@pytest.mark.asyncio
async def test_close_closes_client():
    client = StubAsyncRedis()
    await _store(client).close()
    assert client.closed is True


@pytest.mark.asyncio
async def test_sync_adapter_exposes_awaitable_interface():
    sync_client = StubSyncRedis()
    store = _store(_SyncClientAdapter(sync_client))

    await store.set_with_ttl("k", "invalid", 30)
    await store.ping()

    assert await store.get("k") == "invalid"
    assert await store.ttl("k") == 30
    await store.close()
    assert sync_client.closed is True
