"""
Dispatcher — Walks a capability's fallback chain until one provider succeeds.

For each model key in the chain (in authored order):
  1. Resolve its provider; skip it if the provider is unavailable.
  2. Call the provider adapter in a worker thread, bounded by a timeout.
  3. First success wins; a failure is recorded and the next entry is tried.

Entries are tried strictly one at a time and never retried. If the chain runs
out, AggregateDispatchFailure lists one failure per attempted entry.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

from ai_engine.app.errors import AggregateDispatchFailure, ProviderFailure, ProviderTransientError
from ai_engine.providers.adapters import ProviderAdapter, ProviderRequest, TokenUsage, build_adapters
from ai_engine.providers.adapters.base import DEFAULT_TIMEOUT_S
from ai_engine.providers.availability import CredentialSnapshot, is_available
from ai_engine.providers.model_registry import DEFAULT_REGISTRY, ModelInfo, ModelRegistry

logger = logging.getLogger(__name__)


@dataclass
class CostEstimate:
    estimated: float = 0.0
    input_cost: float = 0.0
    output_cost: float = 0.0
    currency: str = "USD"

    def to_dict(self) -> dict:
        return {
            "estimated": self.estimated,
            "input_cost": self.input_cost,
            "output_cost": self.output_cost,
            "currency": self.currency,
        }


def estimate_cost(model: ModelInfo | None, tokens: TokenUsage | None) -> CostEstimate:
    """Estimate the USD cost of a call from its token counts."""
    if model is None or tokens is None:
        return CostEstimate()

    input_cost = (tokens.input / 1000) * model.cost_per_1k_input
    output_cost = (tokens.output / 1000) * model.cost_per_1k_output
    return CostEstimate(
        estimated=round(input_cost + output_cost, 6),
        input_cost=round(input_cost, 6),
        output_cost=round(output_cost, 6),
    )


@dataclass
class DispatchResult:
    """The first successful provider call for a dispatch."""
    provider: str
    model: str
    model_key: str
    text: str
    tokens_used: TokenUsage
    cost: CostEstimate
    duration_ms: int
    attempt_index: int = 0
    fallback_chain: list[str] = field(default_factory=list)
    failures: list[ProviderFailure] = field(default_factory=list)
    embeddings: list[list[float]] | None = None
    stop_reason: str | None = None

    @property
    def fallback_used(self) -> bool:
        return self.attempt_index > 0

    def to_dict(self) -> dict:
        return {
            "result": self.text,
            "embeddings": self.embeddings,
            "provider": self.provider,
            "model": self.model,
            "model_key": self.model_key,
            "tokens_used": self.tokens_used.to_dict(),
            "cost": self.cost.to_dict(),
            "duration_ms": self.duration_ms,
            "stop_reason": self.stop_reason,
            "fallback_used": self.fallback_used,
            "attempt_index": self.attempt_index,
            "fallback_chain": self.fallback_chain,
            "failures": [f.to_dict() for f in self.failures],
        }


class Dispatcher:
    """Routes capability requests across providers with ordered fallback."""

    def __init__(
        self,
        snapshot: CredentialSnapshot,
        registry: ModelRegistry = DEFAULT_REGISTRY,
        adapters: dict[str, ProviderAdapter] | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ):
        self.snapshot = snapshot
        self.registry = registry
        self.adapters = adapters if adapters is not None else build_adapters(timeout_s)
        self.timeout_s = timeout_s

    def resolve_chain(
        self,
        capability_id: str,
        complexity: str,
        force_model: str | None = None,
    ) -> list[str]:
        """
        The model keys to walk, in order. A forced model (when known) goes
        first; the capability chain follows without duplicates.
        """
        chain = self.registry.get_fallback_chain(capability_id, complexity)
        if not force_model or force_model == "auto":
            return chain
        if self.registry.get_model(force_model) is None:
            logger.warning(f"Forced model '{force_model}' is not registered, using the {capability_id} chain")
            return chain
        # The chain stays behind a forced model instead of replacing it.
        return [force_model] + [key for key in chain if key != force_model]

    async def dispatch(
        self,
        capability_id: str,
        complexity: str,
        payload: ProviderRequest,
        force_model: str | None = None,
    ) -> DispatchResult:
        """
        Run a capability request through its fallback chain.

        Args:
            capability_id: Capability being served, e.g. "intent-classify".
            complexity: "simple" | "standard" | "complex", chosen by the caller.
            payload: Prompts / texts for the provider.
            force_model: Optional registry key to try before the chain.

        Returns:
            DispatchResult for the first provider that succeeded.

        Raises:
            AggregateDispatchFailure: If no entry succeeded, or none could be tried.
        """
        chain = self.resolve_chain(capability_id, complexity, force_model)

        candidates: list[tuple[str, ModelInfo, ProviderAdapter]] = []
        for key in chain:
            model = self.registry.get_model(key)
            if model is None:
                logger.warning(f"Model '{key}' in {capability_id}/{complexity} chain is not registered")
                continue
            if not is_available(model.provider, self.snapshot, self.registry):
                logger.debug(f"Skipping {model.provider}/{key}: provider unavailable")
                continue
            adapter = self.adapters.get(model.provider)
            if adapter is None:
                logger.warning(f"No adapter for provider '{model.provider}'")
                continue
            candidates.append((key, model, adapter))

        if not candidates:
            logger.error(f"No route available for {capability_id} ({complexity}); chain was {chain}")
            raise AggregateDispatchFailure(capability_id, complexity, [])

        route = [f"{model.provider}/{key}" for key, model, _ in candidates]
        failures: list[ProviderFailure] = []

        for key, model, adapter in candidates:
            logger.info(f"Trying {model.provider}/{model.id} for {capability_id} ({complexity})")
            start = time.perf_counter()
            try:
                response = await self._call(adapter, payload, model)
            except Exception as e:
                error = self._describe_failure(e)
                failures.append(ProviderFailure(
                    provider=model.provider, model_key=key, model=model.id, error=error,
                ))
                logger.warning(f"Provider {model.provider}/{model.id} failed: {error}. Trying next...")
                continue

            duration_ms = int((time.perf_counter() - start) * 1000)
            if failures:
                logger.info(f"{capability_id} served by fallback {model.provider}/{key} after {len(failures)} failure(s)")
            return DispatchResult(
                provider=model.provider,
                model=response.model or model.id,
                model_key=key,
                text=response.text,
                embeddings=response.embeddings,
                tokens_used=response.tokens_used,
                cost=estimate_cost(model, response.tokens_used),
                duration_ms=duration_ms,
                stop_reason=response.stop_reason,
                attempt_index=len(failures),
                fallback_chain=route,
                failures=failures,
            )

        logger.error(f"All {len(failures)} providers failed for {capability_id} ({complexity})")
        raise AggregateDispatchFailure(capability_id, complexity, failures)

    async def _call(self, adapter: ProviderAdapter, payload: ProviderRequest, model: ModelInfo):
        # A timed-out call is abandoned, its worker thread finishes on its own.
        return await asyncio.wait_for(
            asyncio.to_thread(adapter.run, payload, model, self.snapshot),
            timeout=self.timeout_s,
        )

    def _describe_failure(self, error: Exception) -> str:
        if isinstance(error, asyncio.TimeoutError):
            return f"timed out after {int(self.timeout_s * 1000)}ms"
        if isinstance(error, ProviderTransientError):
            return error.message
        return f"{type(error).__name__}: {error}"


def get_provider_status(
    snapshot: CredentialSnapshot,
    registry: ModelRegistry = DEFAULT_REGISTRY,
) -> dict[str, dict]:
    """Summary of every provider: availability, tier, strengths and models."""
    status = {}
    for provider_id, provider in registry.providers.items():
        status[provider_id] = {
            "name": provider.name,
            "available": is_available(provider_id, snapshot, registry),
            "tier": provider.tier,
            "strengths": list(provider.strengths),
            "models": [m.summary() for m in registry.get_models_for_provider(provider_id)],
        }
    return status
