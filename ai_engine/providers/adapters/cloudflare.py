"""
Cloudflare Workers AI adapter — the zero-cost, always-on tier.

The gateway reaches Workers AI through a runtime binding: a small client built
once at startup from the account id and API token. When the binding exists
the free tier is available; when it doesn't, the free tier is skipped.
Workers AI reports no billable token counts, so usage is recorded as zero.
"""

from __future__ import annotations

import logging
from typing import Any

from ai_engine.app.errors import ProviderTransientError
from ai_engine.providers.adapters.base import (
    DEFAULT_TIMEOUT_S,
    ProviderAdapter,
    ProviderRequest,
    ProviderResponse,
    TokenUsage,
    json_instruction,
    post_json,
)
from ai_engine.providers.availability import CredentialSnapshot
from ai_engine.providers.model_registry import FREE_PROVIDER, ModelInfo

logger = logging.getLogger(__name__)

API_BASE = "https://api.cloudflare.com/client/v4/accounts"


class WorkersAIBinding:
    """Runtime binding to Workers AI: ``run(model_id, inputs) -> result``."""

    def __init__(self, account_id: str, api_token: str, timeout_s: float = DEFAULT_TIMEOUT_S):
        self.account_id = account_id
        self._api_token = api_token
        self.timeout_s = timeout_s

    def run(self, model_id: str, inputs: dict[str, Any]) -> dict[str, Any]:
        data = post_json(
            FREE_PROVIDER,
            f"{API_BASE}/{self.account_id}/ai/run/{model_id}",
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_token}",
            },
            payload=inputs,
            timeout_s=self.timeout_s,
        )
        if data.get("success") is False:
            errors = data.get("errors") or [{"message": "unknown error"}]
            raise ProviderTransientError(FREE_PROVIDER, f"Workers AI error: {errors[0].get('message')}")
        result = data.get("result")
        if not isinstance(result, dict):
            raise ProviderTransientError(FREE_PROVIDER, "malformed response: no result")
        return result


def build_ai_binding(
    account_id: str | None,
    api_token: str | None,
    timeout_s: float = DEFAULT_TIMEOUT_S,
) -> WorkersAIBinding | None:
    """Return the binding when both credentials are configured, else None."""
    if not account_id or not api_token:
        logger.warning("No Workers AI binding (CLOUDFLARE_ACCOUNT_ID / CLOUDFLARE_API_TOKEN unset)")
        return None
    return WorkersAIBinding(account_id, api_token, timeout_s=timeout_s)


class CloudflareAdapter(ProviderAdapter):
    provider_id = FREE_PROVIDER

    def run(
        self,
        request: ProviderRequest,
        model: ModelInfo,
        snapshot: CredentialSnapshot,
    ) -> ProviderResponse:
        binding = snapshot.ai_binding
        if binding is None:
            raise ProviderTransientError(self.provider_id, "Cloudflare AI binding not available")

        if model.kind == "embedding":
            return self._embed(binding, request, model)

        result = binding.run(model.id, {
            "messages": [
                {"role": "system", "content": request.system_prompt + json_instruction(request)},
                {"role": "user", "content": request.user_prompt},
            ],
            "max_tokens": min(request.max_tokens, model.max_output),
        })

        text = result.get("response")
        if not isinstance(text, str):
            raise self._fail("malformed response: no text")

        return ProviderResponse(
            provider=self.provider_id,
            model=model.id,
            text=text,
            tokens_used=TokenUsage(),
            stop_reason="complete",
        )

    def _embed(self, binding: WorkersAIBinding, request: ProviderRequest, model: ModelInfo) -> ProviderResponse:
        if not request.texts:
            raise self._fail("embedding request has no texts")

        result = binding.run(model.id, {"text": request.texts})
        vectors = result.get("data")
        if not isinstance(vectors, list) or len(vectors) != len(request.texts):
            raise self._fail("malformed response: embedding count mismatch")

        return ProviderResponse(
            provider=self.provider_id,
            model=model.id,
            embeddings=vectors,
            tokens_used=TokenUsage(),
            stop_reason="complete",
        )
