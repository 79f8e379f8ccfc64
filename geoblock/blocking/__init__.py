"""GeoBlock blocking — block list store and access decision gate.

Public API:
    BlockListStore         — atomic-swap set of blocked country codes
    BlockListPersistence   — optional load/save seam
    AccessDecisionGate     — extract → resolve → check → decide
    require_country_access — FastAPI dependency for protected routes
    CountryBlockedError    — raised by the dependency on deny
"""
from geoblock.blocking.gate import (
    AccessDecisionGate,
    CountryBlockedError,
    require_country_access,
)
from geoblock.blocking.store import BlockListPersistence, BlockListStore

__all__ = [
    "AccessDecisionGate",
    "BlockListPersistence",
    "BlockListStore",
    "CountryBlockedError",
    "require_country_access",
]
