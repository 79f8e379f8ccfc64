"""Health endpoint for GeoBlock.

  GET /health — 503 before ``app.state.ready`` is set by the lifespan,
                200 with service status afterwards.

Response body (200):
    {
      "status": "ok",
      "service": "geoblock",
      "fail_policy": "open" | "closed",
      "blocked_countries": ["CN", "RU"],
      "lookup_avg_ms": 84.2,
      "lookup_p99_ms": 0.0,
      "lookup_samples": 7,
      "cache_entries": 2
    }
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

from geoblock.blocking.gate import AccessDecisionGate

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    """Primary health check endpoint."""
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={
                "status": "starting",
                "message": "GeoBlock is starting up...",
            },
        )

    gate: AccessDecisionGate = request.app.state.gate
    tracker = gate.resolver.latency_tracker

    return {
        "status": "ok",
        "service": "geoblock",
        "fail_policy": gate.fail_policy.value,
        "blocked_countries": sorted(gate.store.snapshot()),
        "lookup_avg_ms": round(tracker.avg_ms, 2),
        "lookup_p99_ms": round(tracker.p99_ms, 2),
        "lookup_samples": tracker.count,
        "cache_entries": gate.resolver.cache_size,
    }
