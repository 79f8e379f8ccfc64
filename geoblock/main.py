"""GeoBlock FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app() — testable application factory
  - lifespan — @asynccontextmanager startup/shutdown sequence
  - /        route — service discovery root
  - exception handlers — 403 geo block, 400 malformed input, uniform 4xx/5xx
  - app = create_app() — module-level instance for uvicorn

Startup sequence:
  1. load_config()                → app.state.config
  2. create_http_client()         → app.state.http_client (shared by all providers)
  3. GeoResolver(...)             → app.state.resolver
  4. BlockListStore(initial)      → app.state.block_list
  5. AccessDecisionGate(...)      → app.state.gate
  6. app.state.ready = True

Shutdown sequence (reverse):
  app.state.ready = False → close the shared HTTP client

The block list lives only in memory: every restart begins with
``blocking.initial_countries`` (empty by default).
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from geoblock import __version__
from geoblock.api.limiter import limiter
from geoblock.api.routes import router as api_router
from geoblock.blocking.gate import AccessDecisionGate, CountryBlockedError
from geoblock.blocking.store import BlockListStore
from geoblock.config import Config, load_config
from geoblock.constants import (
    POOL_KEEPALIVE_EXPIRY,
    POOL_MAX_CONNECTIONS,
    POOL_MAX_KEEPALIVE,
)
from geoblock.geo.providers import build_provider_chains
from geoblock.geo.resolver import GeoResolver
from geoblock.health import router as health_router
from geoblock.models.responses import build_error_response, build_geo_block_response
from geoblock.utils.health import LookupLatencyTracker
from geoblock.utils.logger import configure_logging, get_logger

# ─── Logging Setup ────────────────────────────────────────────────────────────
# Configure logging at module import time (before any other imports that may log).
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)

root_router = APIRouter(tags=["root"])

# Status code → machine-readable error for the uniform error body
_ERROR_CODES: dict[int, str] = {
    400: "bad_request",
    404: "not_found",
    405: "method_not_allowed",
    503: "service_unavailable",
}


@root_router.get("/")
async def root() -> dict[str, object]:
    """Root endpoint — service identity / discovery."""
    return {
        "service": "GeoBlock",
        "version": __version__,
        "health": "/health",
        "endpoints": [
            "GET  /api/ip-info",
            "GET  /api/test-access (geo-blocked)",
            "POST /api/simulate-vpn",
            "POST /api/block-countries",
            "GET  /api/block-countries",
            "POST /api/validate-blocking",
        ],
    }


# ─── Shared HTTP client ───────────────────────────────────────────────────────


def create_http_client() -> httpx.AsyncClient:
    """Create the shared httpx.AsyncClient used by every geo provider.

    Created once at lifespan startup and stored in app.state.http_client.
    No client-level timeout: each provider passes its own per-call timeout.
    """
    return httpx.AsyncClient(
        limits=httpx.Limits(
            max_connections=POOL_MAX_CONNECTIONS,
            max_keepalive_connections=POOL_MAX_KEEPALIVE,
            keepalive_expiry=POOL_KEEPALIVE_EXPIRY,
        ),
        headers={"User-Agent": f"geoblock/{__version__}", "Accept": "application/json"},
        follow_redirects=True,
    )


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan — startup and shutdown sequence."""
    logger.info("GeoBlock starting up...")

    # load_config() raises SystemExit on an invalid file, before ready=True.
    config: Config = load_config()
    app.state.config = config

    http_client = create_http_client()
    app.state.http_client = http_client

    self_lookup, echo, country_lookup = build_provider_chains(config.geo)
    resolver = GeoResolver(
        http_client,
        self_lookup=self_lookup,
        echo=echo,
        country_lookup=country_lookup,
        cache_ttl_s=config.geo.cache_ttl_s,
        latency_tracker=LookupLatencyTracker(),
    )
    app.state.resolver = resolver
    logger.info(
        "Geo resolver ready",
        self_lookup=[p.name for p in self_lookup],
        echo=[p.name for p in echo],
        country_lookup=[p.name for p in country_lookup],
        cache_ttl_s=config.geo.cache_ttl_s,
    )

    block_list = BlockListStore(config.blocking.initial_countries)
    app.state.block_list = block_list

    app.state.gate = AccessDecisionGate(
        resolver, block_list, fail_policy=config.blocking.fail_policy
    )
    logger.info(
        "Access decision gate ready",
        fail_policy=config.blocking.fail_policy.value,
        blocked_countries=sorted(block_list.snapshot()),
    )

    app.state.ready = True
    logger.info("GeoBlock ready", host=config.server.host, port=config.server.port)

    yield

    logger.info("GeoBlock shutting down...")
    app.state.ready = False

    try:
        await http_client.aclose()
        logger.info("HTTP client closed")
    except Exception as exc:
        logger.warning("HTTP client close error (non-fatal)", error=str(exc))

    logger.info("GeoBlock shutdown complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app() -> FastAPI:
    """Create and configure the GeoBlock FastAPI application.

    Call directly in tests to get an isolated app instance; the module-level
    ``app`` is what uvicorn serves.
    """
    application = FastAPI(
        title="GeoBlock",
        description="Demonstration geo-blocking service",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if DEBUG else None,
        redoc_url="/redoc" if DEBUG else None,
        openapi_url="/openapi.json" if DEBUG else None,
    )

    application.state.ready = False

    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    application.add_middleware(SlowAPIMiddleware)

    # Open CORS: test harnesses call from arbitrary origins. Registered last so
    # it is outermost and answers preflight before rate limiting.
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    application.include_router(root_router)
    application.include_router(health_router)
    application.include_router(api_router)

    # ── Exception handlers ────────────────────────────────────────────────────

    @application.exception_handler(CountryBlockedError)
    async def country_blocked_handler(
        request: Request, exc: CountryBlockedError
    ) -> JSONResponse:
        return build_geo_block_response(exc.decision)

    @application.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        details = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        logger.warning("Malformed request", path=str(request.url.path), details=details)
        return build_error_response(400, "Invalid request body", "bad_request", details)

    @application.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=str(request.url.path),
        )
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        response = build_error_response(
            exc.status_code,
            message,
            _ERROR_CODES.get(exc.status_code, "http_error"),
            None if isinstance(exc.detail, str) else exc.detail,
        )
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return build_error_response(500, "Internal server error", "internal_error")

    return application


# ─── Module-Level App (for uvicorn) ───────────────────────────────────────────

app = create_app()
