"""
Tests for app.rate_limiter — hourly buckets, fail-open behaviour, headers.
"""

from datetime import datetime, timezone

import pytest

from ai_engine.app.kv_store import InMemoryKVStore
from ai_engine.app.rate_limiter import (
    BUCKET_TTL_SECONDS,
    FAIL_OPEN_REMAINING,
    NO_STORE_REMAINING,
    RateLimiter,
    RateLimitResult,
    hour_bucket,
    next_hour_reset,
    rate_limit_headers,
)


class TestBuckets:
    def test_hour_bucket_format(self):
        assert hour_bucket(datetime(2025, 3, 14, 9, 5, tzinfo=timezone.utc)) == "2025-03-14-09"

    def test_next_hour_reset(self):
        now = datetime(2025, 3, 14, 23, 59, 59, tzinfo=timezone.utc)
        assert next_hour_reset(now) == datetime(2025, 3, 15, 0, 0, tzinfo=timezone.utc)

    def test_bucket_key(self, store, clock):
        limiter = RateLimiter(store, clock=clock)
        assert limiter.bucket_key("seo-app") == "rate:seo-app:2025-03-14-10"


class TestCheckAndIncrement:
    @pytest.mark.asyncio
    async def test_first_request_allowed(self, store, clock):
        limiter = RateLimiter(store, max_per_hour=3, clock=clock)
        result = await limiter.check_and_increment("global")
        assert result.allowed
        assert result.current == 1
        assert result.remaining == 2
        assert result.limit == 3
        assert await store.get("rate:global:2025-03-14-10") == "1"

    @pytest.mark.asyncio
    async def test_last_allowed_request_leaves_zero_remaining(self, store, clock):
        limiter = RateLimiter(store, max_per_hour=2, clock=clock)
        await limiter.check_and_increment()
        result = await limiter.check_and_increment()
        assert result.allowed
        assert result.remaining == 0
        assert result.current == 2

    @pytest.mark.asyncio
    async def test_request_at_limit_rejected(self, store, clock):
        limiter = RateLimiter(store, max_per_hour=2, clock=clock)
        await limiter.check_and_increment()
        await limiter.check_and_increment()
        result = await limiter.check_and_increment()
        assert not result.allowed
        assert result.remaining == 0
        assert result.current == 2
        # a rejected request is not counted
        assert await store.get("rate:global:2025-03-14-10") == "2"

    @pytest.mark.asyncio
    async def test_reset_at_is_next_hour(self, store, clock):
        result = await RateLimiter(store, clock=clock).check_and_increment()
        assert result.reset_at == datetime(2025, 3, 14, 11, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_new_hour_starts_fresh(self, store, clock):
        limiter = RateLimiter(store, max_per_hour=1, clock=clock)
        await limiter.check_and_increment()
        assert not (await limiter.check_and_increment()).allowed

        clock.advance(hours=1)
        result = await limiter.check_and_increment()
        assert result.allowed
        assert result.current == 1

    @pytest.mark.asyncio
    async def test_callers_are_counted_separately(self, store, clock):
        limiter = RateLimiter(store, max_per_hour=1, clock=clock)
        assert (await limiter.check_and_increment("app-a")).allowed
        assert (await limiter.check_and_increment("app-b")).allowed
        assert not (await limiter.check_and_increment("app-a")).allowed

    @pytest.mark.asyncio
    async def test_bucket_written_with_hour_ttl(self, clock):
        class RecordingStore:
            def __init__(self):
                self.puts = []

            async def get(self, key):
                return None

            async def put(self, key, value, expiration_ttl):
                self.puts.append((key, value, expiration_ttl))

        recording = RecordingStore()
        await RateLimiter(recording, clock=clock).check_and_increment()
        assert recording.puts == [("rate:global:2025-03-14-10", "1", BUCKET_TTL_SECONDS)]

    @pytest.mark.asyncio
    async def test_no_store_allows_with_sentinel(self, clock):
        result = await RateLimiter(None, clock=clock).check_and_increment()
        assert result.allowed
        assert result.remaining == NO_STORE_REMAINING

    @pytest.mark.asyncio
    async def test_failing_store_fails_open(self, failing_store, clock):
        result = await RateLimiter(failing_store, clock=clock).check_and_increment()
        assert result.allowed
        assert result.remaining == FAIL_OPEN_REMAINING

    @pytest.mark.asyncio
    async def test_corrupt_counter_fails_open(self, store, clock):
        await store.put("rate:global:2025-03-14-10", "not-a-number", expiration_ttl=60)
        result = await RateLimiter(store, clock=clock).check_and_increment()
        assert result.allowed
        assert result.remaining == FAIL_OPEN_REMAINING


class TestCurrentCount:
    @pytest.mark.asyncio
    async def test_reads_live_counter(self, store, clock):
        limiter = RateLimiter(store, clock=clock)
        await limiter.check_and_increment("seo-app")
        await limiter.check_and_increment("seo-app")
        assert await limiter.current_count("seo-app") == 2
        assert await limiter.current_count("other") == 0

    @pytest.mark.asyncio
    async def test_failing_store_reads_zero(self, failing_store, clock):
        assert await RateLimiter(failing_store, clock=clock).current_count() == 0


class TestHeaders:
    def test_rejection_headers(self):
        reset_at = datetime(2025, 3, 14, 11, 0, tzinfo=timezone.utc)
        result = RateLimitResult(False, 0, 120, 120, reset_at)
        now = datetime(2025, 3, 14, 10, 30, 0, tzinfo=timezone.utc)

        headers = rate_limit_headers(result, now)
        assert headers["Retry-After"] == "1800"
        assert headers["X-RateLimit-Limit"] == "120"
        assert headers["X-RateLimit-Remaining"] == "0"
        assert headers["X-RateLimit-Reset"] == "2025-03-14T11:00:00+00:00"

    def test_retry_after_never_negative(self):
        reset_at = datetime(2025, 3, 14, 11, 0, tzinfo=timezone.utc)
        result = RateLimitResult(False, 0, 5, 5, reset_at)
        headers = rate_limit_headers(result, datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc))
        assert headers["Retry-After"] == "0"


class TestLongRunningInMemoryStore:
    @pytest.mark.asyncio
    async def test_old_hour_buckets_do_not_accumulate(self, clock):
        now = [0.0]
        store = InMemoryKVStore(clock=lambda: now[0])
        limiter = RateLimiter(store, clock=clock)
        for _ in range(48):
            await limiter.check_and_increment("caller")
            clock.advance(hours=1)
            now[0] += 3600
        assert len(store) <= 2
