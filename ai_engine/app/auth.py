"""
Auth Gate — classifies every /ai/* request before routing.

Strategies are tried in a fixed order; the first one that returns a decision
wins:
  1. Service binding — the trusted internal header names the caller. Trust
     comes from the deployment's network layer, no secret is checked.
  2. Bearer token   — must equal the shared secret exactly.
  3. Dev mode       — no secret configured; refused in production.
Anything left over is rejected with "No authentication provided".
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Protocol

logger = logging.getLogger(__name__)

SERVICE_HEADER = "x-ai-engine-service"
AUTHORIZATION_HEADER = "authorization"
BEARER_PREFIX = "Bearer "


class AuthMethod(str, Enum):
    SERVICE_BINDING = "service-binding"
    BEARER_TOKEN = "bearer-token"
    DEV_MODE = "dev-mode"
    NONE = "none"


@dataclass(frozen=True)
class AuthDecision:
    method: AuthMethod
    authorized: bool
    caller: str | None = None
    error: str | None = None

    @property
    def rate_limit_identity(self) -> str:
        return self.caller or "global"


class HasHeaders(Protocol):
    headers: Mapping[str, str]


class AuthStrategy(Protocol):
    def try_authenticate(self, request: HasHeaders) -> AuthDecision | None: ...


def _header(request: Any, name: str) -> str | None:
    # Starlette headers are case-insensitive; plain dicts in tests may not be.
    headers = request.headers
    value = headers.get(name)
    if value is None and isinstance(headers, dict):
        lowered = {k.lower(): v for k, v in headers.items()}
        value = lowered.get(name.lower())
    return value


class ServiceBindingStrategy:
    def try_authenticate(self, request: HasHeaders) -> AuthDecision | None:
        caller = _header(request, SERVICE_HEADER)
        if not caller:
            return None
        logger.info(f"Service binding auth from: {caller}")
        return AuthDecision(AuthMethod.SERVICE_BINDING, True, caller=caller)


class BearerTokenStrategy:
    def __init__(self, shared_secret: str | None):
        self.shared_secret = shared_secret

    def try_authenticate(self, request: HasHeaders) -> AuthDecision | None:
        header = _header(request, AUTHORIZATION_HEADER)
        if not header or not header.startswith(BEARER_PREFIX):
            return None
        token = header[len(BEARER_PREFIX):]
        if self.shared_secret and hmac.compare_digest(token.encode(), self.shared_secret.encode()):
            return AuthDecision(AuthMethod.BEARER_TOKEN, True)
        return AuthDecision(AuthMethod.BEARER_TOKEN, False, error="Invalid token")


class DevModeStrategy:
    def __init__(self, shared_secret: str | None, is_production: bool):
        self.shared_secret = shared_secret
        self.is_production = is_production

    def try_authenticate(self, request: HasHeaders) -> AuthDecision | None:
        if self.shared_secret:
            return None
        if self.is_production:
            logger.error("CRITICAL: No AI_ENGINE_TOKEN in production!")
            return AuthDecision(AuthMethod.NONE, False, error="No token configured in production")
        logger.warning("Dev mode: no AI_ENGINE_TOKEN set, allowing unauthenticated access")
        return AuthDecision(AuthMethod.DEV_MODE, True)


class AuthGate:
    def __init__(self, strategies: list[AuthStrategy]):
        self.strategies = list(strategies)

    @classmethod
    def from_settings(cls, shared_secret: str | None, is_production: bool) -> AuthGate:
        return cls([
            ServiceBindingStrategy(),
            BearerTokenStrategy(shared_secret),
            DevModeStrategy(shared_secret, is_production),
        ])

    def verify(self, request: HasHeaders) -> AuthDecision:
        for strategy in self.strategies:
            decision = strategy.try_authenticate(request)
            if decision is not None:
                return decision
        return AuthDecision(AuthMethod.NONE, False, error="No authentication provided")
