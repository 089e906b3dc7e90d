"""Provider adapters, one per provider id in the model registry."""

from __future__ import annotations

from ai_engine.providers.adapters.base import (
    DEFAULT_TIMEOUT_S,
    ProviderAdapter,
    ProviderRequest,
    ProviderResponse,
    TokenUsage,
)
from ai_engine.providers.adapters.claude import ClaudeAdapter
from ai_engine.providers.adapters.cloudflare import CloudflareAdapter, WorkersAIBinding, build_ai_binding
from ai_engine.providers.adapters.gemini import GeminiAdapter
from ai_engine.providers.adapters.groq_client import GroqAdapter
from ai_engine.providers.adapters.openai import DeepSeekAdapter, MistralAdapter, OpenAIAdapter

ADAPTER_CLASSES: dict[str, type[ProviderAdapter]] = {
    "claude": ClaudeAdapter,
    "openai": OpenAIAdapter,
    "gemini": GeminiAdapter,
    "mistral": MistralAdapter,
    "deepseek": DeepSeekAdapter,
    "groq": GroqAdapter,
    "cloudflare": CloudflareAdapter,
}


def build_adapters(timeout_s: float = DEFAULT_TIMEOUT_S) -> dict[str, ProviderAdapter]:
    return {provider_id: cls(timeout_s=timeout_s) for provider_id, cls in ADAPTER_CLASSES.items()}


__all__ = [
    "ADAPTER_CLASSES",
    "ProviderAdapter",
    "ProviderRequest",
    "ProviderResponse",
    "TokenUsage",
    "WorkersAIBinding",
    "build_adapters",
    "build_ai_binding",
]
