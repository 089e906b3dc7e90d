"""
OpenAI-compatible chat completion adapters: OpenAI, Mistral and DeepSeek.

All three speak the same chat/completions dialect; they differ in base URL,
credential key and how much of the structured-output surface they accept.
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

# o-series models take no system message and use max_completion_tokens
REASONING_MODELS = frozenset({"o1", "o1-mini", "o1-preview", "o3-mini"})


class OpenAICompatibleAdapter(ProviderAdapter):
    base_url = "https://api.openai.com/v1"
    credential_key = "OPENAI_API_KEY"
    supports_json_schema = False

    def build_payload(self, request: ProviderRequest, model: ModelInfo) -> dict:
        max_tokens = min(request.max_tokens, model.max_output)
        payload: dict = {"model": model.id, "max_tokens": max_tokens}

        if self.supports_json_schema and request.json_schema:
            system = request.system_prompt
            payload["response_format"] = {"type": "json_schema", "json_schema": request.json_schema}
        elif request.json_mode or request.json_schema:
            system = request.system_prompt + json_instruction(request)
            payload["response_format"] = {"type": "json_object"}
        else:
            system = request.system_prompt

        payload["messages"] = [
            {"role": "system", "content": system},
            {"role": "user", "content": request.user_prompt},
        ]
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        return payload

    def run(
        self,
        request: ProviderRequest,
        model: ModelInfo,
        snapshot: CredentialSnapshot,
    ) -> ProviderResponse:
        api_key = self._require_secret(snapshot, self.credential_key)
        data = post_json(
            self.provider_id,
            f"{self.base_url}/chat/completions",
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
            },
            payload=self.build_payload(request, model),
            timeout_s=self.timeout_s,
        )

        try:
            choice = data["choices"][0]
            text = choice["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            raise self._fail("malformed response: no choices")

        usage = data.get("usage") or {}
        return ProviderResponse(
            provider=self.provider_id,
            model=model.id,
            text=text,
            tokens_used=TokenUsage(
                input=usage.get("prompt_tokens", 0),
                output=usage.get("completion_tokens", 0),
            ),
            stop_reason=choice.get("finish_reason"),
        )


class OpenAIAdapter(OpenAICompatibleAdapter):
    provider_id = "openai"
    supports_json_schema = True

    def build_payload(self, request: ProviderRequest, model: ModelInfo) -> dict:
        if model.id not in REASONING_MODELS:
            return super().build_payload(request, model)

        prompt = f"{request.system_prompt}{json_instruction(request)}\n\n{request.user_prompt}"
        return {
            "model": model.id,
            "max_completion_tokens": min(request.max_tokens, model.max_output),
            "messages": [{"role": "user", "content": prompt}],
        }


class MistralAdapter(OpenAICompatibleAdapter):
    provider_id = "mistral"
    base_url = "https://api.mistral.ai/v1"
    credential_key = "MISTRAL_API_KEY"


class DeepSeekAdapter(OpenAICompatibleAdapter):
    provider_id = "deepseek"
    base_url = "https://api.deepseek.com"
    credential_key = "DEEPSEEK_API_KEY"
