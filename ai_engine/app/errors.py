"""
Gateway Errors — the exception taxonomy shared by every layer.

Caller-visible:   AuthError, RateLimitError, CapabilityDisabledError,
                  AggregateDispatchFailure
Recovered locally: ProviderTransientError (next chain entry),
                  StoreUnavailableError (fail open / drop)
Startup only:     RegistryError
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ai_engine.app.rate_limiter import RateLimitResult


class GatewayError(Exception):
    """Base class for all gateway errors."""


class RegistryError(GatewayError):
    """The model catalog or a fallback chain violates a configuration invariant."""


class AuthError(GatewayError):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class RateLimitError(GatewayError):
    def __init__(self, result: RateLimitResult):
        super().__init__(f"Rate limit exceeded ({result.current}/{result.limit})")
        self.result = result


class CapabilityDisabledError(GatewayError):
    def __init__(self, capability: str):
        super().__init__(f"Capability disabled ({capability})")
        self.capability = capability


class StoreUnavailableError(GatewayError):
    """The expiring key/value store could not be read or written."""


class ProviderTransientError(GatewayError):
    """A single provider/model call failed; the dispatcher moves on."""

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message
        self.status_code = status_code


@dataclass(frozen=True)
class ProviderFailure:
    """One attempted chain entry and why it failed."""
    provider: str
    model_key: str
    model: str
    error: str

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "model_key": self.model_key,
            "model": self.model,
            "error": self.error,
        }


class AggregateDispatchFailure(GatewayError):
    """Every entry of a fallback chain failed, or no entry could be tried."""

    def __init__(
        self,
        capability: str,
        complexity: str,
        failures: list[ProviderFailure],
    ):
        self.capability = capability
        self.complexity = complexity
        self.failures = list(failures)
        if self.failures:
            detail = "; ".join(f"{f.provider}/{f.model_key}: {f.error}" for f in self.failures)
            message = f"All {len(self.failures)} providers failed for {capability} ({complexity}). {detail}"
        else:
            message = f"No route available for {capability} ({complexity})"
        super().__init__(message)

    @property
    def no_route(self) -> bool:
        return not self.failures
