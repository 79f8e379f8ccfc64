"""Client IP extraction from request headers and the connection address.

Precedence (first non-empty wins):
  1. First entry of ``X-Forwarded-For`` (the originating client in a proxy chain)
  2. ``X-Real-IP``
  3. ``CF-Connecting-IP`` (Cloudflare)
  4. The raw peer address, with any trailing ``:port`` removed and a
     bracketed IPv6 literal (``[addr]:port``) unwrapped

Nothing here validates IP syntax. A malformed header value is returned as-is
and later fails resolution like any other unresolvable address.
"""

from __future__ import annotations

from typing import Mapping, Optional

from geoblock.models.decision import DetectionSource

# Checked in order; header lookups are case-insensitive.
_FORWARDED_FOR_HEADER = "x-forwarded-for"
_SINGLE_VALUE_HEADERS: tuple[str, ...] = ("x-real-ip", "cf-connecting-ip")


def _header(headers: Mapping[str, str], name: str) -> str:
    # Starlette Headers are case-insensitive; plain dicts in tests may not be.
    value = headers.get(name)
    if value is None:
        for key, candidate in headers.items():
            if key.lower() == name:
                value = candidate
                break
    return (value or "").strip()


def strip_port(peer: str) -> str:
    """Remove a trailing ``:port`` from a peer address.

    ``[::1]:5000`` → ``::1``; ``10.0.0.1:5000`` → ``10.0.0.1``. An unbracketed
    address with several colons is a bare IPv6 literal and is left alone.
    """
    peer = peer.strip()
    if peer.startswith("["):
        end = peer.find("]")
        if end > 0:
            return peer[1:end]
        return peer
    if peer.count(":") == 1:
        return peer.rsplit(":", 1)[0]
    return peer


def extract_client_ip_with_source(
    headers: Mapping[str, str],
    peer: Optional[str],
) -> tuple[str, DetectionSource]:
    """Return the best-guess client IP and where it was found."""
    forwarded_for = _header(headers, _FORWARDED_FOR_HEADER)
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first, DetectionSource.HEADER

    for name in _SINGLE_VALUE_HEADERS:
        value = _header(headers, name)
        if value:
            return value, DetectionSource.HEADER

    return strip_port(peer or ""), DetectionSource.PEER


def extract_client_ip(headers: Mapping[str, str], peer: Optional[str]) -> str:
    """Return the best-guess client IP for a request.

    Args:
        headers: Request headers (``request.headers`` in FastAPI handlers).
        peer:    Raw connection address. Starlette exposes host and port
                 separately, so callers usually pass ``request.client.host``;
                 a ``host:port`` string is also accepted.
    """
    ip, _ = extract_client_ip_with_source(headers, peer)
    return ip
