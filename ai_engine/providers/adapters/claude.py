"""
Anthropic Claude adapter — Messages API.

In JSON mode the assistant turn is prefilled with "{" to anchor the output;
the brace is restored on the returned text.
"""

from __future__ import annotations

from ai_engine.providers.adapters.base import (
    ProviderAdapter,
    ProviderRequest,
    ProviderResponse,
    TokenUsage,
    json_instruction,
    post_json,
)
from ai_engine.providers.availability import CredentialSnapshot
from ai_engine.providers.model_registry import ModelInfo

API_URL = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"


class ClaudeAdapter(ProviderAdapter):
    provider_id = "claude"

    def run(
        self,
        request: ProviderRequest,
        model: ModelInfo,
        snapshot: CredentialSnapshot,
    ) -> ProviderResponse:
        api_key = self._require_secret(snapshot, "ANTHROPIC_API_KEY")
        wants_json = request.json_mode or bool(request.json_schema)

        messages = [{"role": "user", "content": request.user_prompt}]
        if wants_json:
            messages.append({"role": "assistant", "content": "{"})

        payload = {
            "model": model.id,
            "max_tokens": min(request.max_tokens, model.max_output),
            "system": request.system_prompt + json_instruction(request),
            "messages": messages,
        }
        if request.temperature is not None:
            payload["temperature"] = request.temperature

        data = post_json(
            self.provider_id,
            API_URL,
            headers={
                "Content-Type": "application/json",
                "x-api-key": api_key,
                "anthropic-version": API_VERSION,
            },
            payload=payload,
            timeout_s=self.timeout_s,
        )

        try:
            text = data["content"][0]["text"]
        except (KeyError, IndexError, TypeError):
            raise self._fail("malformed response: no content block")

        stripped = text.lstrip()
        if wants_json and text and not stripped.startswith(("{", "[")):
            text = "{" + text

        usage = data.get("usage") or {}
        return ProviderResponse(
            provider=self.provider_id,
            model=model.id,
            text=text,
            tokens_used=TokenUsage(
                input=usage.get("input_tokens", 0),
                output=usage.get("output_tokens", 0),
            ),
            stop_reason=data.get("stop_reason"),
        )
