"""Access Decision Gate — extract → resolve → check → decide.

``require_country_access()`` is a FastAPI ``Depends()``-compatible dependency.
Protected routes depend on it; on deny it raises :class:`CountryBlockedError`
before the route handler runs, so a blocked request has no handler side
effects. The app-level exception handler turns that into the 403 body from
:func:`geoblock.models.responses.build_geo_block_response`.

Unknown-country policy is explicit:
  - FailPolicy.OPEN   (default) — UNKNOWN is allowed (reason ``geo_resolution_failed``).
    The default block list is empty and a provider outage should not lock
    every caller out.
  - FailPolicy.CLOSED — UNKNOWN is denied (reason ``country_unknown``).

Every decision is logged as one line; this is the only audit trail.
"""

from __future__ import annotations

from typing import Mapping, Optional

from fastapi import Request, Response

from geoblock.blocking.store import BlockListStore
from geoblock.constants import UNKNOWN_COUNTRY
from geoblock.geo.extractor import extract_client_ip_with_source
from geoblock.geo.resolver import GeoResolutionError, GeoResolver
from geoblock.models.decision import (
    AccessDecision,
    DecisionReason,
    DetectionSource,
    FailPolicy,
    normalize_country_code,
)
from geoblock.utils.logger import get_logger, set_request_id
from geoblock.utils.ulid import generate_ulid

logger = get_logger(__name__)


class CountryBlockedError(Exception):
    """Raised by the gate dependency when a request is denied."""

    def __init__(self, decision: AccessDecision) -> None:
        super().__init__(f"country {decision.country_code} blocked")
        self.decision = decision


class AccessDecisionGate:
    """Compose the IP Extractor, Geo Resolver and Block List Store."""

    def __init__(
        self,
        resolver: GeoResolver,
        store: BlockListStore,
        fail_policy: FailPolicy = FailPolicy.OPEN,
    ) -> None:
        self.resolver = resolver
        self.store = store
        self.fail_policy = fail_policy

    async def evaluate(self, headers: Mapping[str, str], peer: Optional[str]) -> AccessDecision:
        """Produce an AccessDecision for one request. Never raises on lookup failure."""
        client_ip, source = extract_client_ip_with_source(headers, peer)

        resolved_ip: Optional[str]
        country_code: Optional[str]
        try:
            result = await self.resolver.resolve(client_ip)
            resolved_ip = result.ip
            country_code = result.country_code
        except GeoResolutionError as exc:
            logger.warning("Could not determine country", client_ip=client_ip, error=str(exc))
            resolved_ip = exc.partial.ip if exc.partial is not None else None
            country_code = None

        return self.decide(client_ip, resolved_ip, country_code, source)

    def decide(
        self,
        client_ip: str,
        resolved_ip: Optional[str],
        country_code: Optional[str],
        detected_via: DetectionSource,
    ) -> AccessDecision:
        """Pure decision step. Shared by the live gate and /api/simulate-vpn."""
        code = normalize_country_code(country_code) or UNKNOWN_COUNTRY

        if code == UNKNOWN_COUNTRY:
            allowed = self.fail_policy is FailPolicy.OPEN
            reason = DecisionReason.UNKNOWN_ALLOWED if allowed else DecisionReason.UNKNOWN_DENIED
        elif self.store.is_blocked(code):
            allowed = False
            reason = DecisionReason.COUNTRY_BLOCKED
        else:
            allowed = True
            reason = DecisionReason.COUNTRY_ALLOWED

        decision = AccessDecision(
            allowed=allowed,
            country_code=code,
            client_ip=client_ip,
            resolved_ip=resolved_ip,
            detected_via=detected_via,
            reason=reason,
            decision_id=generate_ulid(),
        )
        _log_decision(decision)
        return decision


def _log_decision(decision: AccessDecision) -> None:
    set_request_id(decision.decision_id)
    fields = {
        "client_ip": decision.client_ip,
        "resolved_ip": decision.resolved_ip,
        "country_code": decision.country_code,
        "detected_via": decision.detected_via.value,
        "reason": decision.reason.value,
        "decision_id": decision.decision_id,
    }
    if decision.allowed:
        logger.info("ALLOWED: country not blocked", decision="allow", **fields)
    else:
        logger.warning("BLOCKED: country is blocked", decision="deny", **fields)


# ─── FastAPI dependency ───────────────────────────────────────────────────────


async def require_country_access(request: Request, response: Response) -> AccessDecision:
    """FastAPI dependency: allow or short-circuit a request by country.

    Allow path: sets ``X-Client-Country``, ``X-Client-IP`` and
    ``X-Geo-Decision-ID`` on the response and returns the decision to the
    handler.

    Raises:
        CountryBlockedError: The request is denied. Raised before the
                             handler body runs.
    """
    gate: AccessDecisionGate = request.app.state.gate
    peer = request.client.host if request.client else None
    decision = await gate.evaluate(request.headers, peer)

    if not decision.allowed:
        raise CountryBlockedError(decision)

    response.headers["X-Client-Country"] = decision.country_code
    response.headers["X-Client-IP"] = decision.client_ip
    response.headers["X-Geo-Decision-ID"] = decision.decision_id
    return decision
