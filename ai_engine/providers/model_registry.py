"""
Model Registry — Provider/model catalog with capability fallback chains.

This is the single source of truth for which providers and models the gateway
can route to, and in which order each capability tries them. The registry is
built once at import time, validated, and never mutated afterwards; overrides
produce a new registry via ``ModelRegistry.with_overrides``.

Chain order is authored, not computed: cost and quality preference is baked
into the static ordering below so routing stays deterministic.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from ai_engine.app.errors import RegistryError

COMPLEXITY_TIERS = ("simple", "standard", "complex")
FREE_PROVIDER = "cloudflare"


@dataclass(frozen=True)
class ProviderInfo:
    """Metadata for a single model provider."""
    id: str
    name: str
    tier: str               # "premium" | "mid" | "budget" | "free"
    credential_key: str     # settings key holding the API secret (or binding)
    strengths: tuple[str, ...]
    base_url: str | None = None


@dataclass(frozen=True)
class ModelInfo:
    """Metadata for a single model."""
    key: str                # registry key used in fallback chains
    id: str                 # provider-native identifier
    provider: str
    name: str
    context_window: int
    max_output: int
    cost_per_1k_input: float
    cost_per_1k_output: float
    speed: str              # "fastest" | "fast" | "medium" | "slow"
    quality: str            # "best" | "excellent" | "good" | "basic"
    best_for: tuple[str, ...]
    kind: str = "text"      # "text" | "embedding"
    dimensions: int | None = None
    default: bool = False

    @property
    def is_zero_cost(self) -> bool:
        return self.cost_per_1k_input == 0 and self.cost_per_1k_output == 0

    def summary(self) -> dict:
        return {
            "key": self.key,
            "id": self.id,
            "name": self.name,
            "provider": self.provider,
            "quality": self.quality,
            "speed": self.speed,
            "kind": self.kind,
            "cost_per_1k_input": self.cost_per_1k_input,
            "cost_per_1k_output": self.cost_per_1k_output,
        }


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

_PROVIDERS = [
    ProviderInfo(
        id="claude",
        name="Anthropic Claude",
        tier="premium",
        credential_key="ANTHROPIC_API_KEY",
        strengths=("reasoning", "analysis", "long-context", "structured-output", "safety"),
        base_url="https://api.anthropic.com/v1",
    ),
    ProviderInfo(
        id="openai",
        name="OpenAI",
        tier="premium",
        credential_key="OPENAI_API_KEY",
        strengths=("coding", "creative", "function-calling", "vision"),
        base_url="https://api.openai.com/v1",
    ),
    ProviderInfo(
        id="gemini",
        name="Google Gemini",
        tier="premium",
        credential_key="GOOGLE_AI_API_KEY",
        strengths=("multimodal", "speed", "long-context", "cost-efficiency"),
    ),
    ProviderInfo(
        id="mistral",
        name="Mistral AI",
        tier="mid",
        credential_key="MISTRAL_API_KEY",
        strengths=("speed", "coding", "european-compliance", "cost-efficiency"),
        base_url="https://api.mistral.ai/v1",
    ),
    ProviderInfo(
        id="deepseek",
        name="DeepSeek",
        tier="budget",
        credential_key="DEEPSEEK_API_KEY",
        strengths=("reasoning", "coding", "cost-efficiency", "math"),
        base_url="https://api.deepseek.com",
    ),
    ProviderInfo(
        id="groq",
        name="Groq",
        tier="budget",
        credential_key="GROQ_API_KEY",
        strengths=("speed", "high-volume", "cost-efficiency"),
    ),
    ProviderInfo(
        id=FREE_PROVIDER,
        name="Cloudflare Workers AI",
        tier="free",
        credential_key="AI",
        strengths=("zero-cost", "low-latency", "embeddings", "simple-tasks"),
    ),
]


# ---------------------------------------------------------------------------
# Model catalog. Order doesn't matter; fallback chains are explicit.
# ---------------------------------------------------------------------------

_MODELS = [
    # Anthropic
    ModelInfo(
        key="claude-sonnet-4", id="claude-sonnet-4-20250514", provider="claude",
        name="Claude Sonnet 4", context_window=200000, max_output=16384,
        cost_per_1k_input=0.003, cost_per_1k_output=0.015,
        speed="fast", quality="excellent",
        best_for=("analysis", "recommendations", "chat", "rewrites", "forecasting"),
        default=True,
    ),
    ModelInfo(
        key="claude-opus-4", id="claude-opus-4-20250514", provider="claude",
        name="Claude Opus 4", context_window=200000, max_output=32768,
        cost_per_1k_input=0.015, cost_per_1k_output=0.075,
        speed="slow", quality="best",
        best_for=("complex-refinement", "deep-analysis", "strategic-planning"),
    ),
    ModelInfo(
        key="claude-haiku-3.5", id="claude-3-5-haiku-20241022", provider="claude",
        name="Claude 3.5 Haiku", context_window=200000, max_output=8192,
        cost_per_1k_input=0.0008, cost_per_1k_output=0.004,
        speed="fastest", quality="good",
        best_for=("classification", "simple-tasks", "high-volume"),
    ),
    # OpenAI
    ModelInfo(
        key="gpt-4o", id="gpt-4o", provider="openai",
        name="GPT-4o", context_window=128000, max_output=16384,
        cost_per_1k_input=0.0025, cost_per_1k_output=0.01,
        speed="fast", quality="excellent",
        best_for=("analysis", "creative-writing", "function-calling", "rewrites"),
    ),
    ModelInfo(
        key="gpt-4o-mini", id="gpt-4o-mini", provider="openai",
        name="GPT-4o Mini", context_window=128000, max_output=16384,
        cost_per_1k_input=0.00015, cost_per_1k_output=0.0006,
        speed="fastest", quality="good",
        best_for=("classification", "simple-tasks", "high-volume"),
    ),
    ModelInfo(
        key="o1", id="o1", provider="openai",
        name="o1 (Reasoning)", context_window=200000, max_output=100000,
        cost_per_1k_input=0.015, cost_per_1k_output=0.06,
        speed="slow", quality="best",
        best_for=("complex-reasoning", "strategic-planning", "deep-analysis"),
    ),
    ModelInfo(
        key="o3-mini", id="o3-mini", provider="openai",
        name="o3-mini (Reasoning)", context_window=200000, max_output=100000,
        cost_per_1k_input=0.0011, cost_per_1k_output=0.0044,
        speed="medium", quality="excellent",
        best_for=("reasoning", "analysis", "forecasting"),
    ),
    ModelInfo(
        key="codex-mini", id="codex-mini-latest", provider="openai",
        name="Codex Mini", context_window=200000, max_output=100000,
        cost_per_1k_input=0.0015, cost_per_1k_output=0.006,
        speed="fast", quality="excellent",
        best_for=("coding", "structured-output", "json-generation", "data-analysis"),
    ),
    # Google
    ModelInfo(
        key="gemini-2.0-flash", id="gemini-2.0-flash", provider="gemini",
        name="Gemini 2.0 Flash", context_window=1048576, max_output=8192,
        cost_per_1k_input=0.0001, cost_per_1k_output=0.0004,
        speed="fastest", quality="good",
        best_for=("speed", "simple-tasks", "high-volume", "cost-sensitive"),
    ),
    ModelInfo(
        key="gemini-2.5-pro", id="gemini-2.5-pro", provider="gemini",
        name="Gemini 2.5 Pro", context_window=1048576, max_output=65536,
        cost_per_1k_input=0.00125, cost_per_1k_output=0.01,
        speed="medium", quality="excellent",
        best_for=("complex-analysis", "long-context", "multimodal"),
    ),
    # Mistral
    ModelInfo(
        key="mistral-large", id="mistral-large-latest", provider="mistral",
        name="Mistral Large", context_window=128000, max_output=8192,
        cost_per_1k_input=0.002, cost_per_1k_output=0.006,
        speed="fast", quality="excellent",
        best_for=("analysis", "multilingual", "european-compliance"),
    ),
    ModelInfo(
        key="codestral", id="codestral-latest", provider="mistral",
        name="Codestral", context_window=256000, max_output=8192,
        cost_per_1k_input=0.0003, cost_per_1k_output=0.0009,
        speed="fast", quality="excellent",
        best_for=("coding", "structured-output", "json-generation"),
    ),
    ModelInfo(
        key="mistral-small", id="mistral-small-latest", provider="mistral",
        name="Mistral Small", context_window=32000, max_output=8192,
        cost_per_1k_input=0.0001, cost_per_1k_output=0.0003,
        speed="fastest", quality="good",
        best_for=("classification", "simple-tasks", "high-volume"),
    ),
    # DeepSeek
    ModelInfo(
        key="deepseek-chat", id="deepseek-chat", provider="deepseek",
        name="DeepSeek-V3", context_window=64000, max_output=8192,
        cost_per_1k_input=0.00027, cost_per_1k_output=0.0011,
        speed="fast", quality="excellent",
        best_for=("analysis", "reasoning", "cost-sensitive"),
    ),
    ModelInfo(
        key="deepseek-reasoner", id="deepseek-reasoner", provider="deepseek",
        name="DeepSeek-R1 (Reasoning)", context_window=64000, max_output=8192,
        cost_per_1k_input=0.00055, cost_per_1k_output=0.00219,
        speed="medium", quality="excellent",
        best_for=("complex-reasoning", "math", "deep-analysis"),
    ),
    # Groq
    ModelInfo(
        key="groq-llama-70b", id="llama-3.3-70b-versatile", provider="groq",
        name="Llama 3.3 70B (Groq)", context_window=131072, max_output=32768,
        cost_per_1k_input=0.00059, cost_per_1k_output=0.00079,
        speed="fastest", quality="good",
        best_for=("analysis", "high-volume", "speed"),
    ),
    ModelInfo(
        key="groq-llama-8b", id="llama-3.1-8b-instant", provider="groq",
        name="Llama 3.1 8B (Groq)", context_window=131072, max_output=8192,
        cost_per_1k_input=0.00005, cost_per_1k_output=0.00008,
        speed="fastest", quality="basic",
        best_for=("classification", "simple-tasks", "high-volume"),
    ),
    # Cloudflare Workers AI (free)
    ModelInfo(
        key="cf-llama-70b", id="@cf/meta/llama-3.3-70b-instruct-fp8-fast", provider=FREE_PROVIDER,
        name="Llama 3.3 70B", context_window=8192, max_output=4096,
        cost_per_1k_input=0, cost_per_1k_output=0,
        speed="medium", quality="good",
        best_for=("simple-tasks", "fallback", "free-tier"),
    ),
    ModelInfo(
        key="cf-llama-8b", id="@cf/meta/llama-3.1-8b-instruct-fast", provider=FREE_PROVIDER,
        name="Llama 3.1 8B", context_window=4096, max_output=2048,
        cost_per_1k_input=0, cost_per_1k_output=0,
        speed="fastest", quality="basic",
        best_for=("classification", "simple-extraction", "free-tier"),
    ),
    ModelInfo(
        key="cf-bge-embedding", id="@cf/baai/bge-base-en-v1.5", provider=FREE_PROVIDER,
        name="BGE Base Embeddings", context_window=512, max_output=768,
        cost_per_1k_input=0, cost_per_1k_output=0,
        speed="fastest", quality="good",
        best_for=("embeddings",),
        kind="embedding", dimensions=768,
    ),
]


# ---------------------------------------------------------------------------
# Capability → model chains. First available model wins; every chain ends
# in a free-tier model so paid-provider exhaustion never fails a request.
# ---------------------------------------------------------------------------

_CAPABILITY_CHAINS: dict[str, dict[str, tuple[str, ...]]] = {
    "intent-classify": {
        "simple": ("claude-haiku-3.5", "gpt-4o-mini", "gemini-2.0-flash", "mistral-small", "groq-llama-8b", "cf-llama-8b"),
        "standard": ("claude-sonnet-4", "gpt-4o", "gemini-2.0-flash", "mistral-large", "groq-llama-70b", "cf-llama-70b"),
        "complex": ("claude-sonnet-4", "gpt-4o", "gemini-2.5-pro", "mistral-large", "cf-llama-70b"),
    },
    "anomaly-diagnose": {
        "simple": ("claude-haiku-3.5", "gpt-4o-mini", "deepseek-chat", "cf-llama-70b"),
        "standard": ("claude-sonnet-4", "gpt-4o", "deepseek-chat", "mistral-large", "cf-llama-70b"),
        "complex": ("claude-sonnet-4", "o3-mini", "deepseek-reasoner", "gemini-2.5-pro", "cf-llama-70b"),
    },
    "embedding-cluster": {
        "simple": ("cf-bge-embedding",),
        "standard": ("cf-bge-embedding",),
        "complex": ("cf-bge-embedding",),
    },
    "chat": {
        "simple": ("claude-haiku-3.5", "gpt-4o-mini", "gemini-2.0-flash", "groq-llama-8b", "cf-llama-8b"),
        "standard": ("claude-sonnet-4", "gpt-4o", "gemini-2.0-flash", "deepseek-chat", "groq-llama-70b", "cf-llama-70b"),
        "complex": ("claude-sonnet-4", "gpt-4o", "gemini-2.5-pro", "deepseek-chat", "cf-llama-70b"),
    },
    "content-rewrite": {
        "simple": ("claude-haiku-3.5", "gpt-4o-mini", "mistral-small", "cf-llama-8b"),
        "standard": ("claude-sonnet-4", "gpt-4o", "mistral-large", "deepseek-chat", "cf-llama-70b"),
        "complex": ("claude-sonnet-4", "gpt-4o", "gemini-2.5-pro", "mistral-large", "cf-llama-70b"),
    },
    "refine-recs": {
        "simple": ("claude-sonnet-4", "gpt-4o", "deepseek-chat", "cf-llama-70b"),
        "standard": ("claude-sonnet-4", "gpt-4o", "gemini-2.5-pro", "deepseek-chat", "cf-llama-70b"),
        "complex": ("claude-opus-4", "o1", "claude-sonnet-4", "deepseek-reasoner", "cf-llama-70b"),
    },
    "smart-forecast": {
        "simple": ("claude-haiku-3.5", "gpt-4o-mini", "deepseek-chat", "cf-llama-70b"),
        "standard": ("claude-sonnet-4", "o3-mini", "deepseek-chat", "mistral-large", "cf-llama-70b"),
        "complex": ("claude-sonnet-4", "o3-mini", "deepseek-reasoner", "gemini-2.5-pro", "cf-llama-70b"),
    },
    "cannibalization-detect": {
        "simple": ("claude-haiku-3.5", "gpt-4o-mini", "groq-llama-70b", "cf-llama-70b"),
        "standard": ("claude-sonnet-4", "gpt-4o", "deepseek-chat", "groq-llama-70b", "cf-llama-70b"),
        "complex": ("claude-sonnet-4", "o3-mini", "deepseek-reasoner", "cf-llama-70b"),
    },
    "content-gaps": {
        "simple": ("claude-haiku-3.5", "gpt-4o-mini", "gemini-2.0-flash", "cf-llama-70b"),
        "standard": ("claude-sonnet-4", "gpt-4o", "gemini-2.0-flash", "deepseek-chat", "cf-llama-70b"),
        "complex": ("claude-sonnet-4", "gpt-4o", "gemini-2.5-pro", "deepseek-reasoner", "cf-llama-70b"),
    },
    "page-score": {
        "simple": ("claude-haiku-3.5", "gpt-4o-mini", "codestral", "cf-llama-8b"),
        "standard": ("claude-sonnet-4", "codex-mini", "codestral", "deepseek-chat", "cf-llama-70b"),
        "complex": ("claude-sonnet-4", "gpt-4o", "gemini-2.5-pro", "deepseek-chat", "cf-llama-70b"),
    },
}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class ModelRegistry:
    """Immutable provider/model catalog plus capability fallback chains."""

    def __init__(
        self,
        providers: Mapping[str, ProviderInfo],
        models: Mapping[str, ModelInfo],
        chains: Mapping[str, Mapping[str, tuple[str, ...] | list[str]]],
    ):
        self._providers = MappingProxyType(dict(providers))
        self._models = MappingProxyType(dict(models))
        self._chains = MappingProxyType({
            capability: MappingProxyType({tier: tuple(keys) for tier, keys in tiers.items()})
            for capability, tiers in chains.items()
        })

    @property
    def providers(self) -> Mapping[str, ProviderInfo]:
        return self._providers

    @property
    def models(self) -> Mapping[str, ModelInfo]:
        return self._models

    @property
    def capabilities(self) -> list[str]:
        return list(self._chains)

    def get_provider(self, provider_id: str) -> ProviderInfo | None:
        return self._providers.get(provider_id)

    def get_model(self, key: str) -> ModelInfo | None:
        """Look up a model by registry key. Returns None if not found."""
        return self._models.get(key)

    def get_models_for_provider(self, provider_id: str) -> list[ModelInfo]:
        return [m for m in self._models.values() if m.provider == provider_id]

    def get_fallback_chain(self, capability_id: str, complexity: str) -> list[str]:
        """
        Return the ordered model keys to try for a capability and tier.

        Unknown capabilities or tiers return an empty chain; callers treat
        that as "no route available".
        """
        tiers = self._chains.get(capability_id)
        if tiers is None:
            return []
        return list(tiers.get(complexity, ()))

    def validate(self) -> None:
        """
        Check every configuration invariant and raise RegistryError listing
        all violations at once.
        """
        problems: list[str] = []

        for key, model in self._models.items():
            if key != model.key:
                problems.append(f"Model '{key}' is registered under a different key ('{model.key}')")
            if model.provider not in self._providers:
                problems.append(f"Model '{key}' references unknown provider '{model.provider}'")

        for capability, tiers in self._chains.items():
            for tier in COMPLEXITY_TIERS:
                if tier not in tiers:
                    problems.append(f"{capability}: missing '{tier}' chain")
            for tier, chain in tiers.items():
                label = f"{capability}/{tier}"
                if tier not in COMPLEXITY_TIERS:
                    problems.append(f"{label}: unknown complexity tier")
                if not chain:
                    problems.append(f"{label}: empty chain")
                    continue

                unknown = [k for k in chain if k not in self._models]
                if unknown:
                    problems.append(f"{label}: unknown model keys {unknown}")
                    continue

                kinds = {self._models[k].kind for k in chain}
                if len(kinds) > 1:
                    problems.append(f"{label}: mixes model kinds {sorted(kinds)}")

                terminal = self._models[chain[-1]]
                if terminal.provider != FREE_PROVIDER or not terminal.is_zero_cost:
                    problems.append(
                        f"{label}: chain must end in a zero-cost {FREE_PROVIDER} model, "
                        f"ends in '{terminal.key}'"
                    )

        if problems:
            raise RegistryError("Invalid model registry:\n  " + "\n  ".join(problems))

    def with_overrides(
        self,
        models: Mapping[str, ModelInfo] | None = None,
        chains: Mapping[str, Mapping[str, tuple[str, ...] | list[str]]] | None = None,
        providers: Mapping[str, ProviderInfo] | None = None,
    ) -> ModelRegistry:
        """
        Build a new, validated registry with the given entries replaced.
        The current registry is left untouched.
        """
        registry = ModelRegistry(
            providers={**self._providers, **(providers or {})},
            models={**self._models, **(models or {})},
            chains={**self._chains, **(chains or {})},
        )
        registry.validate()
        return registry

    def list_models(self) -> list[dict]:
        """Return all models as serializable dicts (for discovery endpoints)."""
        return [
            {**m.summary(), "context_window": m.context_window, "is_default": m.default}
            for m in self._models.values()
        ]


PROVIDERS: Mapping[str, ProviderInfo] = MappingProxyType({p.id: p for p in _PROVIDERS})
MODELS: Mapping[str, ModelInfo] = MappingProxyType({m.key: m for m in _MODELS})
DEFAULT_MODEL = next(m.key for m in _MODELS if m.default)

DEFAULT_REGISTRY = ModelRegistry(PROVIDERS, MODELS, _CAPABILITY_CHAINS)
DEFAULT_REGISTRY.validate()


def get_model(key: str) -> ModelInfo | None:
    return DEFAULT_REGISTRY.get_model(key)


def get_models_for_provider(provider_id: str) -> list[ModelInfo]:
    return DEFAULT_REGISTRY.get_models_for_provider(provider_id)


def get_fallback_chain(capability_id: str, complexity: str) -> list[str]:
    return DEFAULT_REGISTRY.get_fallback_chain(capability_id, complexity)


def list_models() -> list[dict]:
    return DEFAULT_REGISTRY.list_models()
