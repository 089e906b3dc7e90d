"""
Request / response bodies for the gateway HTTP API.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator

from ai_engine.providers.adapters import ProviderRequest

ComplexityTier = Literal["simple", "standard", "complex"]


class DispatchRequest(BaseModel):
    """A capability invocation forwarded by a capability handler."""
    capability: str = Field(..., min_length=1, description="Capability id, e.g. intent-classify")
    complexity: ComplexityTier = Field(default="standard", description="Chosen by the caller, never inferred")
    system_prompt: str = ""
    user_prompt: str = ""
    max_tokens: int = Field(default=4096, gt=0)
    json_mode: bool = False
    json_schema: dict | None = None
    temperature: float | None = Field(default=None, ge=0, le=2)
    texts: list[str] = Field(default_factory=list, description="Inputs for embedding capabilities")
    force_model: str | None = Field(default=None, description="Registry key to try before the chain")

    @model_validator(mode="after")
    def require_input(self) -> DispatchRequest:
        if not self.user_prompt and not self.texts:
            raise ValueError("Either user_prompt or texts must be provided")
        return self

    def to_provider_request(self) -> ProviderRequest:
        return ProviderRequest(
            system_prompt=self.system_prompt,
            user_prompt=self.user_prompt,
            max_tokens=self.max_tokens,
            json_mode=self.json_mode,
            json_schema=self.json_schema,
            temperature=self.temperature,
            texts=list(self.texts),
        )


class CapabilityInfo(BaseModel):
    id: str
    kind: str
    enabled: bool
    endpoint: str = "/ai/dispatch"
    chains: dict[str, list[str]]


class CapabilityManifest(BaseModel):
    engine: str = "ai-engine"
    version: str
    providers: list[dict]
    capabilities: list[CapabilityInfo]
