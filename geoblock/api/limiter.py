"""Shared rate limiter for GeoBlock administrative endpoints.

Uses slowapi (Starlette-compatible rate limiting) keyed by remote address.
The Limiter instance is shared between:
  - geoblock/api/routes.py (route decorators)
  - geoblock/main.py       (app.state.limiter + SlowAPIMiddleware registration)
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)
