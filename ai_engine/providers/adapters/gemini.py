"""
Google Gemini adapter — google-genai SDK.
"""

from __future__ import annotations

from google import genai
from google.genai import errors, types

from ai_engine.providers.adapters.base import (
    ProviderAdapter,
    ProviderRequest,
    ProviderResponse,
    TokenUsage,
    json_instruction,
)
from ai_engine.providers.availability import CredentialSnapshot
from ai_engine.providers.model_registry import ModelInfo


class GeminiAdapter(ProviderAdapter):
    provider_id = "gemini"

    def _get_client(self, api_key: str) -> genai.Client:
        return genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(self.timeout_s * 1000)),
        )

    def run(
        self,
        request: ProviderRequest,
        model: ModelInfo,
        snapshot: CredentialSnapshot,
    ) -> ProviderResponse:
        api_key = self._require_secret(snapshot, "GOOGLE_AI_API_KEY")
        wants_json = request.json_mode or bool(request.json_schema)

        config = types.GenerateContentConfig(
            system_instruction=request.system_prompt + json_instruction(request),
            max_output_tokens=min(request.max_tokens, model.max_output),
            temperature=0.7 if request.temperature is None else request.temperature,
            response_mime_type="application/json" if wants_json else None,
        )

        try:
            response = self._get_client(api_key).models.generate_content(
                model=model.id,
                contents=request.user_prompt,
                config=config,
            )
        except errors.APIError as e:
            raise self._fail(f"API error ({e.code}): {e.message}", status_code=e.code) from e

        text = response.text
        if text is None:
            raise self._fail("malformed response: no text candidate")

        usage = response.usage_metadata
        stop_reason = None
        if response.candidates and response.candidates[0].finish_reason is not None:
            stop_reason = str(response.candidates[0].finish_reason)

        return ProviderResponse(
            provider=self.provider_id,
            model=model.id,
            text=text,
            tokens_used=TokenUsage(
                input=(usage.prompt_token_count or 0) if usage else 0,
                output=(usage.candidates_token_count or 0) if usage else 0,
            ),
            stop_reason=stop_reason,
        )
