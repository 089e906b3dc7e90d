"""
Groq adapter — fast Llama inference through the Groq SDK.

Groq's OpenAI-compatible API has a generous free allowance and very low
latency, which makes it a cheap stop before the Workers AI free tier.
"""

from __future__ import annotations

import logging

import groq
from groq import Groq

from ai_engine.providers.adapters.base import (
    ProviderAdapter,
    ProviderRequest,
    ProviderResponse,
    TokenUsage,
    json_instruction,
)
from ai_engine.providers.availability import CredentialSnapshot
from ai_engine.providers.model_registry import ModelInfo

logger = logging.getLogger(__name__)


class GroqAdapter(ProviderAdapter):
    provider_id = "groq"

    def _get_client(self, api_key: str) -> Groq:
        # Retries are the dispatcher's job (next chain entry), not the SDK's.
        return Groq(api_key=api_key, timeout=self.timeout_s, max_retries=0)

    def run(
        self,
        request: ProviderRequest,
        model: ModelInfo,
        snapshot: CredentialSnapshot,
    ) -> ProviderResponse:
        api_key = self._require_secret(snapshot, "GROQ_API_KEY")
        wants_json = request.json_mode or bool(request.json_schema)

        kwargs = {
            "model": model.id,
            "messages": [
                {"role": "system", "content": request.system_prompt + json_instruction(request)},
                {"role": "user", "content": request.user_prompt},
            ],
            "max_tokens": min(request.max_tokens, model.max_output),
            "temperature": 0.2 if request.temperature is None else request.temperature,
        }
        if wants_json:
            kwargs["response_format"] = {"type": "json_object"}

        logger.info(f"Calling Groq API with model: {model.id}")
        try:
            response = self._get_client(api_key).chat.completions.create(**kwargs)
        except groq.APIStatusError as e:
            raise self._fail(f"API error ({e.status_code}): {e.message}", status_code=e.status_code) from e
        except groq.APIError as e:
            raise self._fail(f"request failed: {e.message}") from e

        if not response.choices:
            raise self._fail("malformed response: no choices")

        choice = response.choices[0]
        usage = response.usage
        return ProviderResponse(
            provider=self.provider_id,
            model=model.id,
            text=choice.message.content or "",
            tokens_used=TokenUsage(
                input=usage.prompt_tokens if usage else 0,
                output=usage.completion_tokens if usage else 0,
            ),
            stop_reason=choice.finish_reason,
        )
