"""GeoBlock models package.

  - decision.py  — GeoLookupResult, AccessDecision, FailPolicy, DetectionSource
  - responses.py — HTTP 403 geo-block and uniform error response builders
"""
