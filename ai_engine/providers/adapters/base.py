"""
Provider adapter base — the common contract every provider integration meets.

Adapters are synchronous and stateless: the dispatcher runs them in a worker
thread under its own timeout. Every failure an adapter can hit (missing key,
network error, non-2xx status, malformed body) is raised as
ProviderTransientError so the dispatcher can advance the fallback chain.
"""

from __future__ import annotations

import abc
import json
import logging
from dataclasses import dataclass, field
from typing import Any

import requests

from ai_engine.app.errors import ProviderTransientError
from ai_engine.providers.availability import CredentialSnapshot
from ai_engine.providers.model_registry import ModelInfo

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 30.0


@dataclass
class ProviderRequest:
    """What a capability handler asks a model to do."""
    system_prompt: str = ""
    user_prompt: str = ""
    max_tokens: int = 4096
    json_mode: bool = False
    json_schema: dict | None = None
    temperature: float | None = None
    texts: list[str] = field(default_factory=list)  # embedding input


@dataclass
class TokenUsage:
    input: int = 0
    output: int = 0

    def to_dict(self) -> dict:
        return {"input": self.input, "output": self.output}


@dataclass
class ProviderResponse:
    """Normalized result of one successful provider call."""
    provider: str
    model: str
    text: str = ""
    tokens_used: TokenUsage = field(default_factory=TokenUsage)
    stop_reason: str | None = None
    embeddings: list[list[float]] | None = None


class ProviderAdapter(abc.ABC):
    """One integration per provider id."""

    provider_id: str = ""

    def __init__(self, timeout_s: float = DEFAULT_TIMEOUT_S):
        self.timeout_s = timeout_s

    @abc.abstractmethod
    def run(
        self,
        request: ProviderRequest,
        model: ModelInfo,
        snapshot: CredentialSnapshot,
    ) -> ProviderResponse:
        """Call the provider and return a normalized response."""

    def _require_secret(self, snapshot: CredentialSnapshot, credential_key: str) -> str:
        value = snapshot.get(credential_key)
        if not value:
            raise ProviderTransientError(self.provider_id, f"{credential_key} not configured")
        return value

    def _fail(self, message: str, status_code: int | None = None) -> ProviderTransientError:
        logger.error(f"[{self.provider_id}] {message}")
        return ProviderTransientError(self.provider_id, message, status_code=status_code)


def json_instruction(request: ProviderRequest) -> str:
    """System-prompt suffix for providers without a native JSON mode."""
    if request.json_schema:
        schema = request.json_schema.get("schema", request.json_schema)
        return (
            "\n\nYou MUST respond with valid JSON matching this schema:\n"
            + json.dumps(schema, indent=2)
        )
    if request.json_mode:
        return "\n\nYou MUST respond with valid JSON only. No markdown, no explanation."
    return ""


def post_json(
    provider_id: str,
    url: str,
    headers: dict[str, str],
    payload: dict[str, Any],
    timeout_s: float,
) -> dict[str, Any]:
    """
    POST a JSON body and return the decoded JSON response.

    Raises:
        ProviderTransientError: on connection errors, timeouts, non-2xx
            responses and bodies that are not a JSON object.
    """
    try:
        r = requests.post(url, headers=headers, json=payload, timeout=timeout_s)
    except requests.RequestException as e:
        raise ProviderTransientError(provider_id, f"request failed: {e}") from e

    if not r.ok:
        detail = r.reason or "error"
        try:
            body = r.json()
            err = body.get("error") if isinstance(body, dict) else None
            if isinstance(err, dict):
                detail = err.get("message") or detail
            elif isinstance(err, str):
                detail = err
            elif isinstance(body, dict) and body.get("errors"):
                detail = str(body["errors"][0].get("message", body["errors"][0]))
        except ValueError:
            pass
        logger.error(f"[{provider_id}] API error ({r.status_code}): {detail}")
        raise ProviderTransientError(
            provider_id, f"API error ({r.status_code}): {detail}", status_code=r.status_code,
        )

    try:
        data = r.json()
    except ValueError as e:
        raise ProviderTransientError(provider_id, "malformed response: body is not JSON") from e
    if not isinstance(data, dict):
        raise ProviderTransientError(provider_id, "malformed response: expected a JSON object")
    return data
