"""
AI Engine Gateway — HTTP API

Accepts capability requests and dispatches them across model providers.
Every /ai/* request passes, in order:

    Auth Gate → Rate Limiter → Dispatcher → Usage Ledger → response

/health is public. All state shared between requests lives in the KV store.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ai_engine import __version__
from ai_engine.app.auth import AuthDecision, AuthGate
from ai_engine.app.config import GatewaySettings
from ai_engine.app.errors import (
    AggregateDispatchFailure,
    AuthError,
    CapabilityDisabledError,
    RateLimitError,
)
from ai_engine.app.kv_store import KVStore, RedisKVStore, build_kv_store
from ai_engine.app.rate_limiter import RateLimiter, rate_limit_headers
from ai_engine.app.schemas import CapabilityInfo, CapabilityManifest, DispatchRequest
from ai_engine.app.usage_ledger import RETENTION_DAYS, UsageEvent, UsageLedger
from ai_engine.providers.adapters import build_ai_binding
from ai_engine.providers.availability import CredentialSnapshot, available_providers
from ai_engine.providers.dispatcher import Dispatcher, get_provider_status
from ai_engine.providers.model_registry import (
    COMPLEXITY_TIERS,
    DEFAULT_MODEL,
    DEFAULT_REGISTRY,
    ModelRegistry,
)

load_dotenv()

settings = GatewaySettings.from_env()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Gateway container, built once per process
# ---------------------------------------------------------------------------

@dataclass
class Gateway:
    settings: GatewaySettings
    registry: ModelRegistry
    snapshot: CredentialSnapshot
    store: KVStore | None
    auth_gate: AuthGate
    rate_limiter: RateLimiter
    usage_ledger: UsageLedger
    dispatcher: Dispatcher


def build_gateway(
    config: GatewaySettings,
    registry: ModelRegistry = DEFAULT_REGISTRY,
    store: KVStore | None = None,
) -> Gateway:
    """Wire every component from validated settings."""
    if store is None:
        store = build_kv_store(config.kv_backend, config.redis_url)

    binding = build_ai_binding(
        config.cloudflare_account_id, config.cloudflare_api_token, timeout_s=config.timeout_s,
    )
    snapshot = config.credential_snapshot(ai_binding=binding)
    rate_limiter = RateLimiter(store, max_per_hour=config.max_requests_per_hour)

    gateway = Gateway(
        settings=config,
        registry=registry,
        snapshot=snapshot,
        store=store,
        auth_gate=AuthGate.from_settings(config.ai_engine_token, config.is_production),
        rate_limiter=rate_limiter,
        usage_ledger=UsageLedger(store, rate_limiter=rate_limiter),
        dispatcher=Dispatcher(snapshot, registry=registry, timeout_s=config.timeout_s),
    )
    logger.info(
        f"Gateway ready ({config.environment}): providers available = "
        f"{available_providers(snapshot, registry)}"
    )
    return gateway


@lru_cache(maxsize=1)
def get_gateway() -> Gateway:
    return build_gateway(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    gateway = get_gateway()
    yield
    if isinstance(gateway.store, RedisKVStore):
        await gateway.store.close()


app = FastAPI(
    title="AI Engine Gateway",
    description="Routes capability requests across AI providers with fallback, rate limits and usage accounting.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "x-ai-engine-service"],
)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"error": "Unauthorized", "message": exc.reason},
        headers={"WWW-Authenticate": "Bearer"},
    )


@app.exception_handler(RateLimitError)
async def rate_limit_error_handler(request: Request, exc: RateLimitError):
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "error": "Rate limit exceeded",
            "limit": exc.result.limit,
            "reset_at": exc.result.reset_at.isoformat(),
        },
        headers=rate_limit_headers(exc.result),
    )


@app.exception_handler(CapabilityDisabledError)
async def capability_disabled_handler(request: Request, exc: CapabilityDisabledError):
    return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"error": str(exc)})


@app.exception_handler(AggregateDispatchFailure)
async def dispatch_failure_handler(request: Request, exc: AggregateDispatchFailure):
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE if exc.no_route else status.HTTP_502_BAD_GATEWAY,
        content={
            "error": "No route available" if exc.no_route else "All providers failed",
            "message": str(exc),
            "capability": exc.capability,
            "complexity": exc.complexity,
            "failures": [f.to_dict() for f in exc.failures],
        },
    )


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def require_caller(request: Request, gateway: Gateway = Depends(get_gateway)) -> AuthDecision:
    """Run the auth gate; raises AuthError on rejection."""
    decision = gateway.auth_gate.verify(request)
    if not decision.authorized:
        raise AuthError(decision.error or "Unauthorized")
    return decision


async def enforce_rate_limit(
    decision: AuthDecision = Depends(require_caller),
    gateway: Gateway = Depends(get_gateway),
) -> AuthDecision:
    """Count the request against the caller's hourly quota."""
    result = await gateway.rate_limiter.check_and_increment(decision.rate_limit_identity)
    if not result.allowed:
        raise RateLimitError(result)
    return decision


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------

@app.get("/", tags=["Health"])
@app.get("/health", tags=["Health"])
async def health_check(gateway: Gateway = Depends(get_gateway)):
    checks: dict[str, dict] = {}

    if gateway.store is None:
        checks["kv"] = {"status": "warn", "message": "No KV store"}
    else:
        try:
            await gateway.store.get("__health__")
            checks["kv"] = {"status": "ok"}
        except Exception as e:
            checks["kv"] = {"status": "fail", "message": str(e)}

    checks["workers_ai"] = (
        {"status": "ok"} if gateway.snapshot.ai_binding is not None
        else {"status": "warn", "message": "No AI binding"}
    )

    providers = get_provider_status(gateway.snapshot, gateway.registry)
    available = sum(1 for p in providers.values() if p["available"])
    checks["providers"] = {
        "status": "ok" if available else "fail",
        "available": available,
        "total": len(providers),
        "details": {pid: "configured" if p["available"] else "not configured" for pid, p in providers.items()},
    }

    healthy = all(c["status"] != "fail" for c in checks.values())
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "service": "ai-engine",
            "version": __version__,
            "environment": gateway.settings.environment,
            "healthy": healthy,
            "checks": checks,
        },
    )


# ---------------------------------------------------------------------------
# Protected endpoints: /ai/*
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/ai")


@router.get("/capabilities", tags=["Discovery"], response_model=CapabilityManifest)
async def get_capabilities(
    caller: AuthDecision = Depends(enforce_rate_limit),
    gateway: Gateway = Depends(get_gateway),
):
    """Self-describing manifest of capabilities and their fallback chains."""
    registry = gateway.registry
    providers = get_provider_status(gateway.snapshot, registry)
    capabilities = []
    for capability in registry.capabilities:
        chains = {tier: registry.get_fallback_chain(capability, tier) for tier in COMPLEXITY_TIERS}
        terminal = registry.get_model(chains["standard"][-1])
        capabilities.append(CapabilityInfo(
            id=capability,
            kind=terminal.kind,
            enabled=gateway.settings.is_capability_enabled(capability),
            chains=chains,
        ))
    return CapabilityManifest(
        version=__version__,
        providers=[
            {"id": pid, "name": p["name"], "tier": p["tier"]}
            for pid, p in providers.items() if p["available"]
        ],
        capabilities=capabilities,
    )


@router.get("/providers", tags=["Discovery"])
async def get_providers(
    caller: AuthDecision = Depends(enforce_rate_limit),
    gateway: Gateway = Depends(get_gateway),
):
    return get_provider_status(gateway.snapshot, gateway.registry)


@router.get("/models", tags=["Discovery"])
async def get_models(
    caller: AuthDecision = Depends(enforce_rate_limit),
    gateway: Gateway = Depends(get_gateway),
):
    """List registered models."""
    return {
        "default": DEFAULT_MODEL,
        "models": gateway.registry.list_models(),
    }


@router.get("/usage", tags=["Usage"])
async def get_usage(
    days: int = Query(default=RETENTION_DAYS, ge=1, le=RETENTION_DAYS),
    caller: AuthDecision = Depends(enforce_rate_limit),
    gateway: Gateway = Depends(get_gateway),
):
    """Usage and cost totals for the last N days plus the caller's live hourly count."""
    summary = await gateway.usage_ledger.get_summary(days, caller_id=caller.rate_limit_identity)
    return summary.model_dump()


@router.post("/dispatch", tags=["Dispatch"])
async def dispatch_capability(
    body: DispatchRequest,
    caller: AuthDecision = Depends(enforce_rate_limit),
    gateway: Gateway = Depends(get_gateway),
):
    """
    Run a capability request through its fallback chain and return the first
    provider result, with token usage and cost.
    """
    if body.capability not in gateway.registry.capabilities:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown capability '{body.capability}'",
        )
    if not gateway.settings.is_capability_enabled(body.capability):
        raise CapabilityDisabledError(body.capability)

    result = await gateway.dispatcher.dispatch(
        body.capability,
        body.complexity,
        body.to_provider_request(),
        force_model=body.force_model,
    )
    await gateway.usage_ledger.log_request(UsageEvent.from_dispatch(body.capability, result))
    return result.to_dict()


app.include_router(router)
