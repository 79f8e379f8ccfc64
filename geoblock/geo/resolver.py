"""Geo Resolver — ClientAddress → GeoLookupResult.

Resolution algorithm:

  Public address:
    country_lookup chain with the address itself (ipinfo → ip-api by default).

  Private / loopback address (the service is being tested from the same
  machine or LAN, so the host's own public IP stands in for the client):
    1. self_lookup chain ("my IP + country" in one call). Accepted only when
       the answer has both a public IP and a country.
    2. echo chain (ipify → checkip.amazonaws.com → icanhazip.com). The first
       public IP returned wins.
    3. country_lookup chain with the discovered IP.

Every provider is tried at most once per resolution, in fixed order. A
failure (timeout, non-200, bad body) is logged and the next provider is
tried. When the chain is exhausted, :class:`GeoResolutionError` is raised;
there is no silent default country. The resolver never returns a private
address as the resolved IP.

Successful results are cached for ``cache_ttl_s`` seconds. All private
addresses share a single cache entry. Failures are not cached. The cache
holds at most ``cache_max_entries`` results and evicts the least recently
used one when full.

A string that is neither private nor a valid public IP (an empty or malformed
header value) fails immediately without contacting any provider.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Optional, Sequence

import httpx

from geoblock.constants import GEO_CACHE_MAX_ENTRIES
from geoblock.geo.addresses import is_private_ip, is_public_ip
from geoblock.geo.providers import GeoProvider, ProviderError
from geoblock.models.decision import GeoLookupResult
from geoblock.utils.health import LookupLatencyTracker
from geoblock.utils.logger import get_logger

logger = get_logger(__name__)

# Cache key shared by every private/loopback client address
_HOST_CACHE_KEY = "__host__"


class GeoResolutionError(Exception):
    """Every provider in the chain failed to yield a country.

    Attributes:
        ip:      The address that was being resolved.
        partial: Whatever was learned before the chain ran out (e.g. the
                 host's public IP without a country), or None.
    """

    def __init__(self, ip: str, message: str, partial: Optional[GeoLookupResult] = None) -> None:
        super().__init__(message)
        self.ip = ip
        self.partial = partial


class GeoResolver:
    """Resolve client addresses to countries through ordered provider chains.

    Usage (in lifespan)::

        self_lookup, echo, country = build_provider_chains(config.geo)
        resolver = GeoResolver(http_client, self_lookup, echo, country,
                               cache_ttl_s=config.geo.cache_ttl_s)
        result = await resolver.resolve("81.2.69.142")
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        self_lookup: Sequence[GeoProvider],
        echo: Sequence[GeoProvider],
        country_lookup: Sequence[GeoProvider],
        cache_ttl_s: float = 0.0,
        latency_tracker: Optional[LookupLatencyTracker] = None,
        cache_max_entries: int = GEO_CACHE_MAX_ENTRIES,
    ) -> None:
        self._client = client
        self._self_lookup = list(self_lookup)
        self._echo = list(echo)
        self._country_lookup = list(country_lookup)
        self._cache_ttl_s = cache_ttl_s
        self._cache_max_entries = cache_max_entries
        self._cache: OrderedDict[str, tuple[float, GeoLookupResult]] = OrderedDict()
        self._cache_lock = threading.Lock()
        self.latency_tracker = latency_tracker or LookupLatencyTracker()

    # ── Public API ────────────────────────────────────────────────────────────

    async def resolve(self, ip: str) -> GeoLookupResult:
        """Resolve *ip* to a complete GeoLookupResult.

        Raises:
            GeoResolutionError: *ip* is not an IP address, or no provider
                                yielded a country.
        """
        private = is_private_ip(ip)
        if not private and not is_public_ip(ip):
            logger.warning("Client address is not a valid IP", ip=ip)
            raise GeoResolutionError(ip, f"not a valid IP address: {ip!r}")

        cache_key = _HOST_CACHE_KEY if private else ip

        cached = self._cache_get(cache_key)
        if cached is not None:
            logger.debug("Geo cache hit", ip=ip, country_code=cached.country_code)
            return cached

        if private:
            logger.info("Private IP detected, discovering host public IP", ip=ip)
            result = await self._resolve_host_public_ip(ip)
        else:
            result = await self._lookup_country(ip)

        self._cache_put(cache_key, result)
        return result

    @property
    def cache_size(self) -> int:
        with self._cache_lock:
            return len(self._cache)

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    # ── Chains ────────────────────────────────────────────────────────────────

    async def _resolve_host_public_ip(self, client_ip: str) -> GeoLookupResult:
        for provider in self._self_lookup:
            result = await self._attempt(provider, None)
            if result is None:
                continue
            if result.complete and is_public_ip(result.ip or ""):
                logger.info(
                    "Host public IP resolved",
                    provider=provider.name,
                    public_ip=result.ip,
                    country_code=result.country_code,
                )
                return result
            logger.warning(
                "Self lookup returned an incomplete answer",
                provider=provider.name,
                ip=result.ip,
                country_code=result.country_code,
            )

        discovered: Optional[str] = None
        for provider in self._echo:
            result = await self._attempt(provider, None)
            if result is None:
                continue
            if is_public_ip(result.ip or ""):
                discovered = result.ip
                logger.info("Host public IP discovered", provider=provider.name, public_ip=discovered)
                break
            logger.warning("Echo service returned a non-public IP", provider=provider.name, ip=result.ip)

        if discovered is None:
            raise GeoResolutionError(
                client_ip,
                f"cannot determine country for private IP {client_ip}: "
                "no public IP discovery service succeeded",
            )

        try:
            return await self._lookup_country(discovered)
        except GeoResolutionError as exc:
            raise GeoResolutionError(
                client_ip,
                f"discovered public IP {discovered} but its country is unknown",
                partial=GeoLookupResult(ip=discovered),
            ) from exc

    async def _lookup_country(self, ip: str) -> GeoLookupResult:
        for provider in self._country_lookup:
            result = await self._attempt(provider, ip)
            if result is not None and result.country_code:
                logger.info(
                    "Country resolved",
                    provider=provider.name,
                    ip=ip,
                    country_code=result.country_code,
                )
                # The queried address is authoritative for the resolved IP
                return GeoLookupResult(
                    ip=ip,
                    country_code=result.country_code,
                    city=result.city,
                    region=result.region,
                    isp=result.isp,
                    provider=result.provider,
                )
        raise GeoResolutionError(ip, f"could not determine country for IP {ip}")

    async def _attempt(
        self, provider: GeoProvider, ip: Optional[str]
    ) -> Optional[GeoLookupResult]:
        """Run one provider once; return None on failure."""
        started = time.perf_counter()
        try:
            return await provider.lookup(self._client, ip)
        except ProviderError as exc:
            logger.warning(
                "Geo provider failed, trying next",
                provider=provider.name,
                ip=ip,
                reason=exc.reason,
            )
            return None
        finally:
            duration_ms = (time.perf_counter() - started) * 1000
            self.latency_tracker.record(duration_ms)
            logger.debug("Geo provider attempt", provider=provider.name, ip=ip, duration_ms=duration_ms)

    # ── Cache ─────────────────────────────────────────────────────────────────

    def _cache_get(self, key: str) -> Optional[GeoLookupResult]:
        if self._cache_ttl_s <= 0:
            return None
        now = time.monotonic()
        with self._cache_lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            expires_at, result = entry
            if expires_at <= now:
                del self._cache[key]
                return None
            self._cache.move_to_end(key)  # mark as recently used
            return result

    def _cache_put(self, key: str, result: GeoLookupResult) -> None:
        if self._cache_ttl_s <= 0 or self._cache_max_entries <= 0:
            return
        entry = (time.monotonic() + self._cache_ttl_s, result)
        with self._cache_lock:
            if key in self._cache:
                self._cache.move_to_end(key)
                self._cache[key] = entry
                return
            while len(self._cache) >= self._cache_max_entries:
                self._cache.popitem(last=False)  # evict the least-recently-used entry
            self._cache[key] = entry
