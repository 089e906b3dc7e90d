"""
Usage Ledger — daily request, token, and cost accounting.

One JSON record per UTC day (``usage:{YYYY-MM-DD}``), kept for seven days.
Each logged request is added into the day's totals and into its provider and
capability breakdowns. Accounting is best-effort: a store failure is logged
and dropped so it can never fail the request being accounted.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Callable

from pydantic import BaseModel, Field, ValidationError

from ai_engine.app.kv_store import KVStore
from ai_engine.app.rate_limiter import RateLimiter, utc_now
from ai_engine.providers.dispatcher import DispatchResult

logger = logging.getLogger(__name__)

RETENTION_DAYS = 7
RECORD_TTL_SECONDS = RETENTION_DAYS * 24 * 3600


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

class TokenCounts(BaseModel):
    input: int = 0
    output: int = 0


class ProviderUsage(BaseModel):
    requests: int = 0
    cost: float = 0.0
    tokens: TokenCounts = Field(default_factory=TokenCounts)


class CapabilityUsage(BaseModel):
    requests: int = 0
    cost: float = 0.0


class UsageEvent(BaseModel):
    """One completed request, as reported to the ledger."""
    capability: str | None = None
    provider: str
    model: str | None = None
    tokens_used: TokenCounts = Field(default_factory=TokenCounts)
    cost: float = 0.0
    duration_ms: int = 0

    @classmethod
    def from_dispatch(cls, capability: str | None, result: DispatchResult) -> UsageEvent:
        return cls(
            capability=capability,
            provider=result.provider,
            model=result.model,
            tokens_used=TokenCounts(input=result.tokens_used.input, output=result.tokens_used.output),
            cost=result.cost.estimated,
            duration_ms=result.duration_ms,
        )


class DailyUsage(BaseModel):
    """Aggregated usage for one UTC day. Every field starts at zero."""
    date: str
    requests: int = 0
    total_cost: float = 0.0
    by_provider: dict[str, ProviderUsage] = Field(default_factory=dict)
    by_capability: dict[str, CapabilityUsage] = Field(default_factory=dict)
    total_tokens: TokenCounts = Field(default_factory=TokenCounts)
    total_duration_ms: int = 0

    def add(self, event: UsageEvent) -> None:
        self.requests += 1
        self.total_cost += event.cost
        self.total_tokens.input += event.tokens_used.input
        self.total_tokens.output += event.tokens_used.output
        self.total_duration_ms += event.duration_ms

        provider = self.by_provider.setdefault(event.provider, ProviderUsage())
        provider.requests += 1
        provider.cost += event.cost
        provider.tokens.input += event.tokens_used.input
        provider.tokens.output += event.tokens_used.output

        if event.capability:
            capability = self.by_capability.setdefault(event.capability, CapabilityUsage())
            capability.requests += 1
            capability.cost += event.cost


class UsageTotals(BaseModel):
    requests: int = 0
    total_cost: float = 0.0
    total_tokens: TokenCounts = Field(default_factory=TokenCounts)
    total_duration_ms: int = 0


class RateLimitSnapshot(BaseModel):
    caller: str
    current_hour: int
    limit: int
    remaining: int


class UsageSummary(BaseModel):
    period: str
    total: UsageTotals = Field(default_factory=UsageTotals)
    daily_breakdown: list[DailyUsage] = Field(default_factory=list)
    rate_limit: RateLimitSnapshot | None = None
    message: str | None = None


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

def day_key(day: date) -> str:
    return f"usage:{day.isoformat()}"


class UsageLedger:
    def __init__(
        self,
        store: KVStore | None,
        rate_limiter: RateLimiter | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.rate_limiter = rate_limiter
        self._clock = clock

    async def log_request(self, event: UsageEvent) -> None:
        """Add a completed request to today's record. Never raises."""
        if self.store is None:
            return

        today = self._clock().date()
        key = day_key(today)
        try:
            raw = await self.store.get(key)
            record = self._load_day(raw, key, today)
            record.add(event)
            await self.store.put(key, record.model_dump_json(), expiration_ttl=RECORD_TTL_SECONDS)
        except Exception as e:
            logger.error(f"Usage log failed: {e}")

    @staticmethod
    def _load_day(raw: str | None, key: str, today: date) -> DailyUsage:
        if raw:
            try:
                return DailyUsage.model_validate_json(raw)
            except ValidationError as e:
                logger.warning(f"Unreadable usage record {key}, starting a fresh one: {e}")
        return DailyUsage(date=today.isoformat())

    async def get_summary(self, days: int = RETENTION_DAYS, caller_id: str = "global") -> UsageSummary:
        """
        Sum the last ``days`` daily records (missing days are skipped) and
        attach the live rate-limit counter for ``caller_id``.
        """
        summary = UsageSummary(period=f"Last {days} days")
        if self.store is None:
            summary.message = "No KV store configured"
            return summary

        today = self._clock().date()
        for offset in range(days):
            key = day_key(today - timedelta(days=offset))
            try:
                raw = await self.store.get(key)
                if raw:
                    summary.daily_breakdown.append(DailyUsage.model_validate_json(raw))
            except Exception as e:
                logger.error(f"Usage read failed for {key}: {e}")

        total = summary.total
        for day in summary.daily_breakdown:
            total.requests += day.requests
            total.total_cost += day.total_cost
            total.total_tokens.input += day.total_tokens.input
            total.total_tokens.output += day.total_tokens.output
            total.total_duration_ms += day.total_duration_ms
        total.total_cost = round(total.total_cost, 4)

        if self.rate_limiter is not None:
            current = await self.rate_limiter.current_count(caller_id)
            limit = self.rate_limiter.max_per_hour
            summary.rate_limit = RateLimitSnapshot(
                caller=caller_id,
                current_hour=current,
                limit=limit,
                remaining=max(0, limit - current),
            )
        return summary
