"""Per-key mutual exclusion for single-writer order updates."""

import asyncio
import contextlib
from collections.abc import AsyncIterator

import redis.asyncio as aioredis
import structlog

logger = structlog.get_logger()


class KeyedLock:
    """In-process asyncio lock per key. Idle locks are dropped on release."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    def is_held(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


class RedisKeyedLock:
    """Cross-process lock per key backed by Redis (SET NX with expiry)."""

    def __init__(
        self,
        redis_url: str,
        prefix: str = "orderguard:lock:",
        timeout_seconds: float = 30.0,
        blocking_timeout_seconds: float = 10.0,
    ) -> None:
        self._client = aioredis.from_url(redis_url)
        self._prefix = prefix
        self._timeout = timeout_seconds
        self._blocking_timeout = blocking_timeout_seconds

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._client.lock(
            f"{self._prefix}{key}",
            timeout=self._timeout,
            blocking_timeout=self._blocking_timeout,
        )
        async with lock:
            yield

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("redis_lock_client_closed")
