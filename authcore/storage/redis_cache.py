from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from authcore.logging import get_logger
from authcore.storage.errors import StoreUnavailable

logger = get_logger(__name__)

T = TypeVar("T")


class RedisRevocationStore:
    """Revocation entries held in Redis with native key expiry.

    Every call is bounded by ``operation_timeout``; a timeout or any client
    error surfaces as :class:`StoreUnavailable`, never as a miss.
    """

    DEFAULT_OPERATION_TIMEOUT = 2.0

    def __init__(
        self,
        redis_url: str,
        *,
        socket_timeout: float = 5.0,
        operation_timeout: float = DEFAULT_OPERATION_TIMEOUT,
        client: Any = None,
    ):
        self.redis_url = redis_url
        self.operation_timeout = operation_timeout
        self.client = client or aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity with a short-lived sync client."""
        sync_client = Redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_timeout=self.operation_timeout,
            socket_connect_timeout=self.operation_timeout,
        )
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def _bounded(self, op: str, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await asyncio.wait_for(call(), timeout=self.operation_timeout)
        except asyncio.TimeoutError as exc:
            logger.error("revocation_store_timeout", op=op, timeout=self.operation_timeout)
            raise StoreUnavailable("redis", f"redis {op} timed out", cause=exc) from exc
        except RedisError as exc:
            logger.error("revocation_store_error", op=op, error=str(exc))
            raise StoreUnavailable("redis", f"redis {op} failed", cause=exc) from exc

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        await self._bounded("set", lambda: self.client.set(key, value, ex=int(ttl_seconds)))

    async def get(self, key: str) -> Optional[str]:
        return await self._bounded("get", lambda: self.client.get(key))

    async def ttl(self, key: str) -> Optional[int]:
        remaining = await self._bounded("ttl", lambda: self.client.ttl(key))
        # -2 means missing, -1 means no expiry
        if remaining is None or remaining < 0:
            return None
        return remaining

    async def ping(self) -> None:
        await self._bounded("ping", lambda: self.client.ping())

    async def close(self) -> None:
        await self.client.aclose()


class _SyncClientAdapter:
    """Expose a sync Redis client behind awaitable methods."""

    def __init__(self, sync_client: Redis):
        self._client = sync_client

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> Any:
        return self._client.set(key, value, ex=ex)

    async def get(self, key: str) -> Any:
        return self._client.get(key)

    async def ttl(self, key: str) -> Any:
        return self._client.ttl(key)

    async def ping(self) -> Any:
        return self._client.ping()

    async def aclose(self) -> None:
        self._client.close()


class SyncRedisRevocationStore(RedisRevocationStore):
    """Revocation store over a synchronous Redis client, for tests.

    Avoids binding a connection pool to one event loop when each test runs
    under its own ``asyncio.run`` while keeping the async interface.
    """

    def __init__(
        self,
        redis_url: str,
        *,
        socket_timeout: float = 5.0,
        operation_timeout: float = RedisRevocationStore.DEFAULT_OPERATION_TIMEOUT,
    ):
        self._sync_client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        super().__init__(
            redis_url,
            socket_timeout=socket_timeout,
            operation_timeout=operation_timeout,
            client=_SyncClientAdapter(self._sync_client),
        )

    def verify_connection(self) -> None:
        self._sync_client.ping()
