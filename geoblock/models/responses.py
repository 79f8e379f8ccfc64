"""HTTP 403 geo-block and uniform error response builders.

  build_geo_block_response():
      HTTP 403 — the caller's country is on the block list (or unknown under
      fail_policy=closed). Carries ``X-Geo-Block: true`` and
      ``X-Geo-Decision-ID``.

  build_error_response():
      4xx/5xx for malformed input, unsupported methods and internal errors.
      Same ``{success, message, error}`` shape family as the block body so
      clients can handle every failure the same way. Never carries
      ``X-Geo-Block``; a bad request is not a geo block.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi.responses import JSONResponse

from geoblock.constants import BLOCK_POLICY_REASON
from geoblock.models.decision import AccessDecision, DecisionReason


def build_geo_block_response(decision: AccessDecision) -> JSONResponse:
    """Build the HTTP 403 rejection for a denied AccessDecision.

    .. code-block:: json

        {
          "success": false,
          "error": "Country Blocked",
          "message": "Access denied: Your country (DE) has been blocked",
          "country_code": "DE",
          "client_ip": "10.0.0.5",
          "detected_via": "header",
          "actual_ip": "81.2.69.142",
          "blocked_at": "2026-10-16T12:00:00+00:00",
          "reason": "Geo-blocking policy in effect",
          "decision_id": "01J..."
        }

    ``actual_ip`` is present only when the resolved IP differs from the
    detected one (private client replaced by the host's public IP).
    ``detected_via`` names where ``client_ip`` came from: ``header``, ``peer``
    or ``simulated``.
    """
    if decision.reason is DecisionReason.UNKNOWN_DENIED:
        message = "Access denied: your country could not be determined"
    else:
        message = f"Access denied: Your country ({decision.country_code}) has been blocked"

    content: dict[str, Any] = {
        "success": False,
        "error": "Country Blocked",
        "message": message,
        "country_code": decision.country_code,
        "client_ip": decision.client_ip,
        "detected_via": decision.detected_via.value,
        "blocked_at": decision.timestamp,
        "reason": BLOCK_POLICY_REASON,
        "decision_id": decision.decision_id,
    }
    if decision.actual_ip is not None:
        content["actual_ip"] = decision.actual_ip

    response = JSONResponse(status_code=403, content=content)
    response.headers["X-Geo-Block"] = "true"
    response.headers["X-Geo-Decision-ID"] = decision.decision_id
    return response


def build_error_response(
    status_code: int,
    message: str,
    error: str,
    details: Optional[Any] = None,
) -> JSONResponse:
    """Build a ``{success: false, message, error[, details]}`` JSON response."""
    content: dict[str, Any] = {
        "success": False,
        "message": message,
        "error": error,
    }
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)
