"""ULID generation for GeoBlock decision ids.

Every AccessDecision gets a 26-character ULID used as:
  - the ``decision_id`` field of the 403 rejection body
  - the ``X-Geo-Decision-ID`` response header on allowed requests
  - the ``request_id`` bound into the decision's log line

Uses the ``python-ulid`` library; ULIDs sort by creation time, so a run's log
lines and responses can be ordered without a separate timestamp.
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Return a new ULID as a 26-character Crockford Base32 string."""
    return str(ULID())
