"""
FastAPI application entry point.

Run with:
    uvicorn seawater.app.main:app --reload --port 8000

Or from the project root:
    python -m uvicorn seawater.app.main:app --reload
"""

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from seawater.app.core.cache import CacheManager
from seawater.app.core.config import settings
from seawater.app.core.errors import register_error_handlers
from seawater.app.core.health import HealthStatus, run_health_check
from seawater.app.core.logging_config import get_logger, setup_logging
from seawater.app.core.middleware import RequestLoggingMiddleware

# ── Risk core ──
from seawater.app.risk.aggregator import Aggregator
from seawater.app.risk.orchestrator import RequestOrchestrator
from seawater.app.sources.registry import build_adapters, unconfigured_providers

# ── API routers ──
from seawater.app.api.v1.risk import router as risk_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the shared client, cache and adapter set; tear them down on exit."""
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    client = httpx.AsyncClient(
        headers={"User-Agent": f"{settings.APP_NAME}/{settings.APP_VERSION}"},
        follow_redirects=True,
    )
    cache = CacheManager.from_settings(settings)
    adapters = build_adapters(client, cache, settings)
    app.state.http_client = client
    app.state.cache = cache
    app.state.orchestrator = RequestOrchestrator(
        adapters, cache, Aggregator(config=settings), settings,
        unconfigured=unconfigured_providers(settings),
    )
    try:
        yield
    finally:
        logger.info("Shutting down %s", settings.APP_NAME)
        await app.state.orchestrator.shutdown()
        await client.aclose()
        await cache.close()


# ── Create application ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Multi-source climate risk aggregation. "
        "Queries government and premium hazard data providers concurrently, "
        "normalises every answer to a 0–100 scale, and combines them into "
        "per-hazard and overall risk scores with a confidence tier, "
        "degrading gracefully when providers fail."
    ),
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── Middleware stack (order matters — outermost first) ──

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

# ── Error handlers ──
register_error_handlers(app)

# ── Register routers ──
app.include_router(risk_router)


# ── Root & health endpoints ──

def _health_inputs(request: Request):
    orchestrator = getattr(request.app.state, "orchestrator", None)
    adapters = orchestrator.adapters if orchestrator is not None else {}
    return getattr(request.app.state, "cache", None), adapters


@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "modules": [
            "source-adapters",
            "cache",
            "orchestration",
            "risk-aggregation",
        ],
        "docs": "/docs",
    }


@app.get("/health", tags=["health"])
async def health_check(request: Request):
    """Deep health probe — cache backend and data sources."""
    report = await run_health_check(*_health_inputs(request))
    return report.to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    """Kubernetes liveness probe — is the process alive?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def readiness(request: Request):
    """Kubernetes readiness probe — can we serve traffic?"""
    report = await run_health_check(*_health_inputs(request))
    if report.status is HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()
