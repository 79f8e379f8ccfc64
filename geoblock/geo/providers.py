"""Geo lookup provider strategies.

Each provider is one external service wrapped behind a single coroutine:

    await provider.lookup(client, ip)   # ip=None → "who am I?"

and returns a :class:`GeoLookupResult` or raises :class:`ProviderError`. The
resolver owns ordering and fallback; providers never retry and never call
each other.

Providers:
  - IpinfoProvider     — https://ipinfo.io/json and /{ip}/json (IP + country + detail)
  - IpApiProvider      — http://ip-api.com/json/{ip} (IP + country + detail)
  - EchoIPProvider     — plain-text "what is my IP" services (IP only, self only)

All HTTP goes through the shared ``httpx.AsyncClient`` created in the app
lifespan; each provider applies its own per-call timeout.
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from geoblock.config import GeoConfig
from geoblock.models.decision import GeoLookupResult, normalize_country_code


class ProviderError(Exception):
    """A single provider attempt failed (network, timeout, status or body)."""

    def __init__(self, provider: str, reason: str) -> None:
        super().__init__(f"{provider}: {reason}")
        self.provider = provider
        self.reason = reason


class GeoProvider:
    """Base class for lookup strategies."""

    name: str = "provider"

    def __init__(self, timeout_s: float) -> None:
        self.timeout_s = timeout_s

    async def lookup(
        self, client: httpx.AsyncClient, ip: Optional[str] = None
    ) -> GeoLookupResult:
        raise NotImplementedError

    async def _get(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        try:
            response = await client.get(url, params=params, timeout=self.timeout_s)
        except httpx.TimeoutException as exc:
            raise ProviderError(self.name, f"timeout after {self.timeout_s}s") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(self.name, f"{type(exc).__name__}: {exc}") from exc
        if response.status_code != 200:
            raise ProviderError(self.name, f"HTTP {response.status_code}")
        return response

    def _json(self, response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderError(self.name, "response is not valid JSON") from exc
        if not isinstance(body, dict):
            raise ProviderError(self.name, "response is not a JSON object")
        return body

    def _text(self, body: dict[str, Any], key: str) -> str:
        """String field of a JSON body; absent or null gives ''."""
        value = body.get(key)
        if value is None:
            return ""
        if not isinstance(value, str):
            raise ProviderError(self.name, f"field '{key}' is not a string")
        return value


class IpinfoProvider(GeoProvider):
    """ipinfo.io — ``/json`` for the caller, ``/{ip}/json`` for a given address."""

    name = "ipinfo"

    def __init__(self, base_url: str, timeout_s: float, token: Optional[str] = None) -> None:
        super().__init__(timeout_s)
        self.base_url = base_url.rstrip("/")
        self.token = token

    async def lookup(
        self, client: httpx.AsyncClient, ip: Optional[str] = None
    ) -> GeoLookupResult:
        url = f"{self.base_url}/json" if ip is None else f"{self.base_url}/{ip}/json"
        params = {"token": self.token} if self.token else None
        body = self._json(await self._get(client, url, params=params))

        if body.get("bogon"):
            raise ProviderError(self.name, "address is a bogon")

        return GeoLookupResult(
            ip=(self._text(body, "ip") or ip or None),
            country_code=normalize_country_code(self._text(body, "country")),
            city=self._text(body, "city"),
            region=self._text(body, "region"),
            isp=self._text(body, "org"),
            provider=self.name,
        )


class IpApiProvider(GeoProvider):
    """ip-api.com — ``/json/{ip}``; reports failure in-band via ``status``."""

    name = "ip-api"

    _FIELDS = "status,message,query,countryCode,regionName,city,isp"

    def __init__(self, base_url: str, timeout_s: float) -> None:
        super().__init__(timeout_s)
        self.base_url = base_url.rstrip("/")

    async def lookup(
        self, client: httpx.AsyncClient, ip: Optional[str] = None
    ) -> GeoLookupResult:
        url = f"{self.base_url}/json" if ip is None else f"{self.base_url}/json/{ip}"
        body = self._json(await self._get(client, url, params={"fields": self._FIELDS}))

        if body.get("status") != "success":
            raise ProviderError(self.name, str(body.get("message") or "lookup failed"))

        return GeoLookupResult(
            ip=(self._text(body, "query") or ip or None),
            country_code=normalize_country_code(self._text(body, "countryCode")),
            city=self._text(body, "city"),
            region=self._text(body, "regionName"),
            isp=self._text(body, "isp"),
            provider=self.name,
        )


class EchoIPProvider(GeoProvider):
    """Plain-text IP echo service (ipify, checkip.amazonaws.com, icanhazip.com).

    Only answers "who am I?"; the result never carries a country.
    """

    def __init__(self, url: str, timeout_s: float) -> None:
        super().__init__(timeout_s)
        self.url = url
        self.name = urlparse(url).hostname or url

    async def lookup(
        self, client: httpx.AsyncClient, ip: Optional[str] = None
    ) -> GeoLookupResult:
        if ip is not None:
            raise ProviderError(self.name, "echo services cannot look up other addresses")
        response = await self._get(client, self.url)
        discovered = response.text.strip()
        if not discovered:
            raise ProviderError(self.name, "empty response")
        return GeoLookupResult(ip=discovered, provider=self.name)


# ─── Factory ──────────────────────────────────────────────────────────────────


def _named_provider(name: str, geo: GeoConfig) -> GeoProvider:
    if name == "ipinfo":
        return IpinfoProvider(geo.ipinfo_url, geo.lookup_timeout_s, token=geo.ipinfo_token)
    if name == "ip-api":
        return IpApiProvider(geo.ipapi_url, geo.lookup_timeout_s)
    raise ValueError(f"Unknown geo lookup provider: {name}")


def build_provider_chains(
    geo: GeoConfig,
) -> tuple[list[GeoProvider], list[GeoProvider], list[GeoProvider]]:
    """Build (self_lookup, echo, country_lookup) provider lists from config."""
    self_lookup = [_named_provider(name, geo) for name in geo.self_lookup]
    echo = [EchoIPProvider(url, geo.echo_timeout_s) for url in geo.echo_services]
    country_lookup = [_named_provider(name, geo) for name in geo.country_lookup]
    return self_lookup, echo, country_lookup
