"""
Rate Limiter — hourly request counter per caller, stored in the KV store.

Buckets are keyed by caller and UTC hour (``rate:{caller}:{YYYY-MM-DD}-{HH}``)
and expire an hour after their last write. The counter is read, compared and
written back; concurrent requests from one caller can race past the limit by
a few requests, which is acceptable for a cost guard.

Rate limiting protects spend, not security: if the store fails, the limiter
fails open instead of blocking every request.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from ai_engine.app.kv_store import KVStore

logger = logging.getLogger(__name__)

BUCKET_TTL_SECONDS = 3600
NO_STORE_REMAINING = 999
FAIL_OPEN_REMAINING = -1


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def hour_bucket(now: datetime) -> str:
    return now.strftime("%Y-%m-%d-%H")


def next_hour_reset(now: datetime) -> datetime:
    return now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    current: int
    limit: int
    reset_at: datetime


class RateLimiter:
    def __init__(
        self,
        store: KVStore | None,
        max_per_hour: int = 120,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.max_per_hour = max_per_hour
        self._clock = clock

    def bucket_key(self, caller_id: str, now: datetime | None = None) -> str:
        return f"rate:{caller_id}:{hour_bucket(now or self._clock())}"

    async def check_and_increment(self, caller_id: str = "global") -> RateLimitResult:
        """
        Count one request against the caller's current hour.

        Never raises: a missing store allows with a sentinel ``remaining``,
        a failing store allows with ``remaining=-1``.
        """
        now = self._clock()
        reset_at = next_hour_reset(now)

        if self.store is None:
            return RateLimitResult(True, NO_STORE_REMAINING, 0, self.max_per_hour, reset_at)

        key = self.bucket_key(caller_id, now)
        try:
            current = _parse_count(await self.store.get(key))

            if current >= self.max_per_hour:
                logger.warning(f"Rate limit exceeded for {caller_id}: {current}/{self.max_per_hour}")
                return RateLimitResult(False, 0, current, self.max_per_hour, reset_at)

            current += 1
            await self.store.put(key, str(current), expiration_ttl=BUCKET_TTL_SECONDS)
        except Exception as e:
            logger.error(f"Rate limit check failed, allowing request: {e}")
            return RateLimitResult(True, FAIL_OPEN_REMAINING, 0, self.max_per_hour, reset_at)

        return RateLimitResult(True, self.max_per_hour - current, current, self.max_per_hour, reset_at)

    async def current_count(self, caller_id: str = "global") -> int:
        """Live request count for the caller's current hour (0 on any failure)."""
        if self.store is None:
            return 0
        try:
            return _parse_count(await self.store.get(self.bucket_key(caller_id)))
        except Exception as e:
            logger.error(f"Rate limit read failed: {e}")
            return 0


def _parse_count(raw: str | None) -> int:
    return int(raw) if raw else 0


def rate_limit_headers(result: RateLimitResult, now: datetime | None = None) -> dict[str, str]:
    """Response headers for a rate-limit rejection."""
    now = now or utc_now()
    retry_after = max(0, math.ceil((result.reset_at - now).total_seconds()))
    return {
        "Retry-After": str(retry_after),
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(max(result.remaining, 0)),
        "X-RateLimit-Reset": result.reset_at.isoformat(),
    }
