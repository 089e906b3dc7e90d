"""
Expiring key/value store — the only shared mutable state of the gateway.

Rate-limit buckets and daily usage records live here. Two backends:
  - RedisKVStore:    production, keys expire via Redis TTLs
  - InMemoryKVStore: local development and tests, single process only

Backend failures surface as StoreUnavailableError; callers decide whether to
fail open (rate limiter) or drop the write (usage ledger).
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ai_engine.app.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


class KVStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def put(self, key: str, value: str, expiration_ttl: int) -> None: ...


class InMemoryKVStore:
    """
    Dict-backed store honouring per-key TTLs. Expired keys are dropped on read
    and swept on every write, so stale hourly and daily keys don't pile up.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[str, float]] = {}

    async def get(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def put(self, key: str, value: str, expiration_ttl: int) -> None:
        now = self._clock()
        self._evict_expired(now)
        self._data[key] = (value, now + expiration_ttl)

    def _evict_expired(self, now: float) -> None:
        expired = [k for k, (_, expires_at) in self._data.items() if now >= expires_at]
        for k in expired:
            del self._data[k]

    def __len__(self) -> int:
        return len(self._data)


class RedisKVStore:
    """Redis-backed store. Values are stored as strings with ``SET ... EX``."""

    def __init__(self, client: Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> RedisKVStore:
        return cls(Redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        try:
            value = await self.client.get(key)
        except RedisError as e:
            raise StoreUnavailableError(f"Redis GET {key} failed: {e}") from e
        if isinstance(value, bytes):
            return value.decode()
        return value

    async def put(self, key: str, value: str, expiration_ttl: int) -> None:
        try:
            await self.client.set(key, value, ex=expiration_ttl)
        except RedisError as e:
            raise StoreUnavailableError(f"Redis SET {key} failed: {e}") from e

    async def close(self) -> None:
        await self.client.aclose()


def build_kv_store(backend: str, redis_url: str | None = None) -> KVStore | None:
    """
    Build the configured store. ``auto`` picks Redis when a URL is set and the
    in-memory store otherwise; ``none`` disables the store entirely.
    """
    if backend == "none":
        logger.warning("No KV store configured: rate limiting and usage accounting are disabled")
        return None
    if backend == "redis" or (backend == "auto" and redis_url):
        logger.info("Using Redis KV store")
        return RedisKVStore.from_url(redis_url)
    logger.info("Using in-memory KV store (single process only)")
    return InMemoryKVStore()
