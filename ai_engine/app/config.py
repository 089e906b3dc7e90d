"""
Gateway configuration — one typed settings object, validated at startup.

Every recognised environment variable is a field here. Settings are read once
(``GatewaySettings.from_env``) and are immutable afterwards; an invalid value
fails the process at startup instead of on some later request.
"""

from __future__ import annotations

import os
from typing import Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ai_engine.providers.availability import CredentialSnapshot

# Capability kill-switches: setting the variable to "false" disables the route.
CAPABILITY_FLAGS: dict[str, str] = {
    "CAPABILITY_INTENT": "intent-classify",
    "CAPABILITY_ANOMALY": "anomaly-diagnose",
    "CAPABILITY_EMBEDDINGS": "embedding-cluster",
    "CAPABILITY_CHAT": "chat",
    "CAPABILITY_REWRITES": "content-rewrite",
    "CAPABILITY_REFINER": "refine-recs",
    "CAPABILITY_FORECAST": "smart-forecast",
    "CAPABILITY_CANNIBALIZATION": "cannibalization-detect",
    "CAPABILITY_CONTENT_GAPS": "content-gaps",
    "CAPABILITY_PAGE_SCORER": "page-score",
}

# Settings field → provider credential key used by the model registry.
CREDENTIAL_FIELDS: dict[str, str] = {
    "anthropic_api_key": "ANTHROPIC_API_KEY",
    "openai_api_key": "OPENAI_API_KEY",
    "google_ai_api_key": "GOOGLE_AI_API_KEY",
    "mistral_api_key": "MISTRAL_API_KEY",
    "deepseek_api_key": "DEEPSEEK_API_KEY",
    "groq_api_key": "GROQ_API_KEY",
}


class GatewaySettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    environment: Literal["development", "staging", "production"] = "development"
    ai_engine_token: str | None = None

    # Provider credentials
    anthropic_api_key: str | None = None
    openai_api_key: str | None = None
    google_ai_api_key: str | None = None
    mistral_api_key: str | None = None
    deepseek_api_key: str | None = None
    groq_api_key: str | None = None

    # Workers AI binding (free tier)
    cloudflare_account_id: str | None = None
    cloudflare_api_token: str | None = None

    # Governance
    max_requests_per_hour: int = Field(default=120, gt=0)
    ai_timeout_ms: int = Field(default=30000, gt=0)
    kv_backend: Literal["auto", "redis", "memory", "none"] = "auto"
    redis_url: str | None = None

    # HTTP / ops
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    disabled_capabilities: frozenset[str] = frozenset()

    @field_validator(
        "ai_engine_token", "anthropic_api_key", "openai_api_key", "google_ai_api_key",
        "mistral_api_key", "deepseek_api_key", "groq_api_key",
        "cloudflare_account_id", "cloudflare_api_token", "redis_url",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def check_kv_backend(self) -> GatewaySettings:
        if self.kv_backend == "redis" and not self.redis_url:
            raise ValueError("KV_BACKEND=redis requires REDIS_URL")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def timeout_s(self) -> float:
        return self.ai_timeout_ms / 1000

    def is_capability_enabled(self, capability: str) -> bool:
        return capability not in self.disabled_capabilities

    def credential_snapshot(self, ai_binding=None) -> CredentialSnapshot:
        """The provider secrets keyed by credential key, plus the free-tier binding."""
        secrets = {}
        for field_name, credential_key in CREDENTIAL_FIELDS.items():
            value = getattr(self, field_name)
            if value:
                secrets[credential_key] = value
        return CredentialSnapshot(secrets=secrets, ai_binding=ai_binding)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> GatewaySettings:
        """
        Build settings from environment variables.

        Raises:
            pydantic.ValidationError: If any value is missing or malformed.
        """
        env = os.environ if environ is None else environ

        values: dict = {
            field_name: env.get(credential_key)
            for field_name, credential_key in CREDENTIAL_FIELDS.items()
        }
        values.update(
            ai_engine_token=env.get("AI_ENGINE_TOKEN"),
            cloudflare_account_id=env.get("CLOUDFLARE_ACCOUNT_ID"),
            cloudflare_api_token=env.get("CLOUDFLARE_API_TOKEN"),
            redis_url=env.get("REDIS_URL"),
            disabled_capabilities=frozenset(
                capability
                for flag, capability in CAPABILITY_FLAGS.items()
                if env.get(flag, "").strip().lower() == "false"
            ),
        )

        optional = {
            "environment": "ENVIRONMENT",
            "max_requests_per_hour": "MAX_REQUESTS_PER_HOUR",
            "ai_timeout_ms": "AI_TIMEOUT_MS",
            "kv_backend": "KV_BACKEND",
        }
        for field_name, var in optional.items():
            if env.get(var):
                values[field_name] = env[var].strip().lower() if field_name in ("environment", "kv_backend") else env[var]

        if env.get("LOG_LEVEL"):
            values["log_level"] = env["LOG_LEVEL"].strip().upper()
        if env.get("CORS_ORIGINS"):
            values["cors_origins"] = [o.strip() for o in env["CORS_ORIGINS"].split(",") if o.strip()]

        return cls(**values)
