"""
Provider availability — decides whether a provider may be tried at all.

Availability is a pure function of the credential snapshot taken at startup.
There is no liveness probing: a configured key is assumed usable, and a
revoked or exhausted key is only discovered when the dispatcher's call fails
and the chain moves on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from ai_engine.providers.model_registry import DEFAULT_REGISTRY, FREE_PROVIDER, ModelRegistry


@dataclass(frozen=True)
class CredentialSnapshot:
    """Provider secrets keyed by credential key, plus the free-tier runtime binding."""
    secrets: Mapping[str, str] = field(default_factory=dict)
    ai_binding: Any = None

    def __post_init__(self):
        object.__setattr__(self, "secrets", MappingProxyType(dict(self.secrets)))

    def get(self, credential_key: str) -> str | None:
        return self.secrets.get(credential_key)


def is_available(
    provider_id: str,
    snapshot: CredentialSnapshot,
    registry: ModelRegistry = DEFAULT_REGISTRY,
) -> bool:
    """
    Check whether a provider can currently be used.

    The free provider needs its runtime binding; every other provider needs a
    non-empty secret under its credential key. Unknown providers are never
    available.
    """
    provider = registry.get_provider(provider_id)
    if provider is None:
        return False

    if provider_id == FREE_PROVIDER:
        return snapshot.ai_binding is not None

    value = snapshot.get(provider.credential_key)
    return bool(value and value.strip())


def available_providers(
    snapshot: CredentialSnapshot,
    registry: ModelRegistry = DEFAULT_REGISTRY,
) -> list[str]:
    return [pid for pid in registry.providers if is_available(pid, snapshot, registry)]
