"""Data contracts for the geo-blocking pipeline.

  - GeoLookupResult  — output of one resolution attempt (may be partial)
  - AccessDecision   — immutable outcome of one gate evaluation
  - FailPolicy       — what an UNKNOWN country means (open = allow, closed = deny)
  - DetectionSource  — where the client IP came from
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from geoblock.constants import UNKNOWN_COUNTRY


class FailPolicy(str, Enum):
    """Treatment of a request whose country could not be resolved."""

    OPEN = "open"
    CLOSED = "closed"


class DetectionSource(str, Enum):
    """Origin of the ClientAddress used for a decision."""

    HEADER = "header"        # X-Forwarded-For / X-Real-IP / CF-Connecting-IP
    PEER = "peer"            # raw connection address
    SIMULATED = "simulated"  # /api/simulate-vpn, no real resolution


class DecisionReason(str, Enum):
    """Machine-readable reason attached to every AccessDecision."""

    COUNTRY_ALLOWED = "country_allowed"
    COUNTRY_BLOCKED = "country_blocked"
    UNKNOWN_ALLOWED = "geo_resolution_failed"
    UNKNOWN_DENIED = "country_unknown"


@dataclass(frozen=True)
class GeoLookupResult:
    """Pairing of a resolved public IP and its country.

    ``country_code`` is None when only the IP is known (partial result, e.g.
    an echo service found the host IP but every country lookup failed).
    """

    ip: Optional[str]
    country_code: Optional[str] = None
    city: str = ""
    region: str = ""
    isp: str = ""
    provider: str = ""

    @property
    def complete(self) -> bool:
        return bool(self.ip) and bool(self.country_code)


def normalize_country_code(code: Optional[str]) -> Optional[str]:
    """Strip and upper-case a provider or caller supplied code; '' → None."""
    if code is None:
        return None
    normalized = code.strip().upper()
    return normalized or None


def rfc3339_now() -> str:
    """Current UTC time as an RFC3339 string with second precision."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of one Access Decision Gate evaluation. Never mutated."""

    allowed: bool
    country_code: str
    client_ip: str
    resolved_ip: Optional[str]
    detected_via: DetectionSource
    reason: DecisionReason
    decision_id: str
    timestamp: str = field(default_factory=rfc3339_now)

    @property
    def country_known(self) -> bool:
        return self.country_code != UNKNOWN_COUNTRY

    @property
    def actual_ip(self) -> Optional[str]:
        """Resolved IP when it differs from the detected one, else None."""
        if self.resolved_ip and self.resolved_ip != self.client_ip:
            return self.resolved_ip
        return None
