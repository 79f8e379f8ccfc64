"""GeoBlock HTTP API.

  GET  /api/ip-info           — caller's resolved location (never blocked)
  GET  /api/test-access       — gated by the Access Decision Gate (200 / 403)
  POST /api/simulate-vpn      — block-list check for a given country, no resolution
  POST /api/block-countries   — replace the live block list (rate limited)
  GET  /api/block-countries   — current block list
  POST /api/validate-blocking — check test countries against a hypothetical list

All bodies are JSON. Malformed bodies are rejected with HTTP 400 by the
validation handler registered in geoblock/main.py.
"""

import time
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from geoblock.api.limiter import limiter
from geoblock.api.schemas import (
    BlockCountriesRequest,
    SimulateVPNRequest,
    ValidateBlockingRequest,
)
from geoblock.blocking.gate import AccessDecisionGate, require_country_access
from geoblock.blocking.store import BlockListStore
from geoblock.constants import (
    ADMIN_RATE_LIMIT,
    COUNTRY_NAMES,
    FALLBACK_SIMULATED_IP,
    SIMULATED_IPS,
    UNKNOWN_COUNTRY,
    UNKNOWN_COUNTRY_NAME,
)
from geoblock.geo.extractor import extract_client_ip
from geoblock.geo.resolver import GeoResolutionError, GeoResolver
from geoblock.models.decision import AccessDecision, DetectionSource, rfc3339_now
from geoblock.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["geoblock"])

_STATUS_BLOCKED = "Access denied (geo-blocked)"
_STATUS_ALLOWED = "Access granted"


def country_name(code: str) -> str:
    return COUNTRY_NAMES.get(code, UNKNOWN_COUNTRY_NAME)


def simulated_ip_for(code: str) -> str:
    """Deterministic stand-in address for a simulated country."""
    return SIMULATED_IPS.get(code, FALLBACK_SIMULATED_IP)


# ─── Location lookup ──────────────────────────────────────────────────────────


@router.get("/ip-info")
async def ip_info(request: Request) -> dict[str, Any]:
    """Return the caller's resolved public IP and location.

    Private callers get the host's public IP. On resolution failure the
    detected IP is returned with ``country_code: "UNKNOWN"``.
    """
    resolver: GeoResolver = request.app.state.resolver
    peer = request.client.host if request.client else None
    client_ip = extract_client_ip(request.headers, peer)

    try:
        result = await resolver.resolve(client_ip)
    except GeoResolutionError as exc:
        logger.warning("IP info: could not determine country", client_ip=client_ip, error=str(exc))
        ip = exc.partial.ip if exc.partial is not None and exc.partial.ip else client_ip
        return {
            "ip": ip,
            "country_code": UNKNOWN_COUNTRY,
            "country_name": UNKNOWN_COUNTRY_NAME,
            "city": "",
            "region": "",
            "isp": "",
        }

    code = result.country_code or UNKNOWN_COUNTRY
    logger.info("IP info", client_ip=client_ip, public_ip=result.ip, country_code=code)
    return {
        "ip": result.ip,
        "country_code": code,
        "country_name": country_name(code),
        "city": result.city,
        "region": result.region,
        "isp": result.isp,
    }


# ─── Gated endpoint ───────────────────────────────────────────────────────────


@router.get("/test-access")
async def test_access(
    decision: AccessDecision = Depends(require_country_access),
) -> dict[str, Any]:
    """Protected endpoint: only reached when the gate allows the request."""
    return {
        "success": True,
        "message": "Access granted! You can access this API.",
        "client_ip": decision.client_ip,
        "country_code": decision.country_code,
        "timestamp": rfc3339_now(),
        "server_time": int(time.time()),
    }


# ─── Simulation ───────────────────────────────────────────────────────────────


@router.post("/simulate-vpn")
async def simulate_vpn(request: Request, body: SimulateVPNRequest) -> JSONResponse:
    """Apply the live block list to a caller-chosen country."""
    gate: AccessDecisionGate = request.app.state.gate
    code = body.country_code
    name = country_name(code)
    simulated_ip = simulated_ip_for(code)

    decision = gate.decide(simulated_ip, simulated_ip, code, DetectionSource.SIMULATED)

    content: dict[str, Any] = {
        "success": decision.allowed,
        "country_code": code,
        "country_name": name,
        "simulated_ip": simulated_ip,
        "is_blocked": not decision.allowed,
        "timestamp": decision.timestamp,
        "decision_id": decision.decision_id,
    }
    if decision.allowed:
        content["message"] = f"Access granted from {name} ({code})"
        return JSONResponse(status_code=200, content=content)

    content["message"] = f"Access denied: {name} ({code}) is blocked"
    content["error"] = "Country is geo-blocked"
    return JSONResponse(status_code=403, content=content)


# ─── Block list administration ────────────────────────────────────────────────


@router.post("/block-countries")
@limiter.limit(ADMIN_RATE_LIMIT)
async def block_countries(request: Request, body: BlockCountriesRequest) -> dict[str, Any]:
    """Replace the live block list with ``countries`` (never merged)."""
    store: BlockListStore = request.app.state.block_list
    blocked = sorted(store.set_blocked(body.countries))
    return {
        "message": f"Successfully blocked {len(blocked)} countries",
        "blocked_countries": blocked,
        "success": True,
    }


@router.get("/block-countries")
async def get_blocked_countries(request: Request) -> dict[str, Any]:
    store: BlockListStore = request.app.state.block_list
    blocked = sorted(store.snapshot())
    return {"blocked_countries": blocked, "count": len(blocked), "success": True}


@router.post("/validate-blocking")
async def validate_blocking(body: ValidateBlockingRequest) -> dict[str, Any]:
    """Report which test countries a hypothetical block list would deny."""
    hypothetical = BlockListStore(body.blocked_countries)

    results: list[dict[str, Any]] = []
    blocked_count = 0
    for country in body.test_countries:
        started = time.perf_counter()
        blocked = hypothetical.is_blocked(country)
        elapsed_ms = (time.perf_counter() - started) * 1000
        if blocked:
            blocked_count += 1
        results.append(
            {
                "country": country,
                "blocked": blocked,
                "status": _STATUS_BLOCKED if blocked else _STATUS_ALLOWED,
                "response_time": round(elapsed_ms, 3),
            }
        )

    total = len(body.test_countries)
    logger.info(
        "Blocking validation complete",
        blocked_count=blocked_count,
        allowed_count=total - blocked_count,
    )
    return {
        "success": True,
        "test_results": results,
        "summary": {
            "blocked_count": blocked_count,
            "allowed_count": total - blocked_count,
            "total_tests": total,
        },
    }
