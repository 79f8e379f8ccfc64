"""Unit tests for GeoResolver (geoblock/geo/resolver.py).

Covers:
  - Public address → country_lookup chain, falling through on failure or
    a malformed provider answer
  - Private address → self_lookup, then echo services, then country_lookup
  - Chain exhaustion raises GeoResolutionError (no silent default country)
  - A private address is never returned as the resolved IP
  - Malformed or empty addresses fail before any provider is contacted
  - TTL cache: hits, shared host entry for private clients, no caching of
    failures, expiry, disabled cache, and LRU eviction at the size bound
  - Provider call latencies are recorded
"""

from __future__ import annotations

import asyncio

import httpx
import pytest

from geoblock.config import GeoConfig
from geoblock.geo.providers import build_provider_chains
from geoblock.geo.resolver import GeoResolutionError, GeoResolver
from geoblock.models.decision import GeoLookupResult


def _resolver(client: httpx.AsyncClient, cache_ttl_s: float = 0.0) -> GeoResolver:
    self_lookup, echo, country = build_provider_chains(GeoConfig())
    return GeoResolver(client, self_lookup, echo, country, cache_ttl_s=cache_ttl_s)


# ─── Public addresses ─────────────────────────────────────────────────────────


class TestPublicAddress:
    @pytest.mark.asyncio
    async def test_first_provider_answers(self, geo_services) -> None:
        async with geo_services.client() as client:
            result = await _resolver(client).resolve("81.2.69.142")

        assert result.ip == "81.2.69.142"
        assert result.country_code == "GB"
        assert result.city == "London"
        assert result.provider == "ipinfo"
        assert geo_services.hosts_called() == ["ipinfo.io"]

    @pytest.mark.asyncio
    async def test_falls_through_to_second_provider(self, geo_services) -> None:
        geo_services.fail_hosts["ipinfo.io"] = "500"
        async with geo_services.client() as client:
            result = await _resolver(client).resolve("5.9.0.1")

        assert result.country_code == "DE"
        assert result.provider == "ip-api"
        assert geo_services.hosts_called() == ["ipinfo.io", "ip-api.com"]

    @pytest.mark.asyncio
    async def test_timeout_falls_through(self, geo_services) -> None:
        geo_services.fail_hosts["ipinfo.io"] = "timeout"
        async with geo_services.client() as client:
            result = await _resolver(client).resolve("95.173.136.70")
        assert result.country_code == "RU"

    @pytest.mark.asyncio
    async def test_every_provider_tried_once_then_error(self, geo_services) -> None:
        geo_services.fail_hosts.update({"ipinfo.io": "connect", "ip-api.com": "garbage"})
        async with geo_services.client() as client:
            with pytest.raises(GeoResolutionError) as exc_info:
                await _resolver(client).resolve("81.2.69.142")

        assert exc_info.value.ip == "81.2.69.142"
        assert exc_info.value.partial is None
        assert geo_services.calls_to("ipinfo.io") == 1
        assert geo_services.calls_to("ip-api.com") == 1

    @pytest.mark.asyncio
    async def test_non_string_field_falls_through(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "ipinfo.io":
                return httpx.Response(200, json={"ip": "5.9.0.1", "country": 276})
            return httpx.Response(
                200, json={"status": "success", "query": "5.9.0.1", "countryCode": "DE"}
            )

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await _resolver(client).resolve("5.9.0.1")

        assert result.country_code == "DE"
        assert result.provider == "ip-api"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ip", ["", "#", "?", "not-an-ip", "1.2.3", "8.8.8.8/json"])
    async def test_malformed_address_fails_without_lookup(self, geo_services, ip: str) -> None:
        async with geo_services.client() as client:
            resolver = _resolver(client, cache_ttl_s=300)
            with pytest.raises(GeoResolutionError) as exc_info:
                await resolver.resolve(ip)

        assert exc_info.value.ip == ip
        assert exc_info.value.partial is None
        assert geo_services.requests == []
        assert resolver.cache_size == 0


# ─── Private addresses ────────────────────────────────────────────────────────


class TestPrivateAddress:
    @pytest.mark.asyncio
    async def test_self_lookup_supplies_host_ip_and_country(self, geo_services) -> None:
        async with geo_services.client() as client:
            result = await _resolver(client).resolve("192.168.1.100")

        assert result.ip == "8.8.8.8"
        assert result.country_code == "US"
        assert geo_services.hosts_called() == ["ipinfo.io"]

    @pytest.mark.asyncio
    async def test_loopback_is_treated_as_private(self, geo_services) -> None:
        async with geo_services.client() as client:
            result = await _resolver(client).resolve("127.0.0.1")
        assert result.ip == "8.8.8.8"

    @pytest.mark.asyncio
    async def test_incomplete_self_lookup_falls_back_to_echo(self, geo_services) -> None:
        geo_services.host_country = None
        async with geo_services.client() as client:
            result = await _resolver(client).resolve("10.0.0.5")

        assert result.ip == "8.8.8.8"
        assert result.country_code == "US"
        assert "api.ipify.org" in geo_services.hosts_called()

    @pytest.mark.asyncio
    async def test_echo_services_tried_in_order(self, geo_services) -> None:
        geo_services.fail_hosts.update({"ipinfo.io": "timeout", "api.ipify.org": "500"})
        async with geo_services.client() as client:
            result = await _resolver(client).resolve("10.0.0.5")

        assert result.ip == "8.8.8.8"
        assert result.country_code == "US"
        assert result.provider == "ip-api"
        assert geo_services.hosts_called() == [
            "ipinfo.io",
            "api.ipify.org",
            "checkip.amazonaws.com",
            "ipinfo.io",
            "ip-api.com",
        ]

    @pytest.mark.asyncio
    async def test_no_public_ip_discovered_raises(self, geo_services) -> None:
        geo_services.fail_hosts.update(
            {
                "ipinfo.io": "connect",
                "api.ipify.org": "timeout",
                "checkip.amazonaws.com": "500",
                "icanhazip.com": "connect",
            }
        )
        async with geo_services.client() as client:
            with pytest.raises(GeoResolutionError) as exc_info:
                await _resolver(client).resolve("10.0.0.5")

        assert exc_info.value.ip == "10.0.0.5"
        assert exc_info.value.partial is None

    @pytest.mark.asyncio
    async def test_discovered_ip_without_country_is_partial(self, geo_services) -> None:
        geo_services.fail_hosts.update({"ipinfo.io": "500", "ip-api.com": "500"})
        async with geo_services.client() as client:
            with pytest.raises(GeoResolutionError) as exc_info:
                await _resolver(client).resolve("10.0.0.5")

        partial = exc_info.value.partial
        assert partial is not None
        assert partial.ip == "8.8.8.8"
        assert partial.country_code is None

    @pytest.mark.asyncio
    async def test_private_answer_is_never_returned(self, geo_services) -> None:
        # Every discovery service reports a private address (double NAT).
        geo_services.host_ip = "10.1.1.1"
        async with geo_services.client() as client:
            with pytest.raises(GeoResolutionError):
                await _resolver(client).resolve("192.168.0.2")


# ─── Cache ────────────────────────────────────────────────────────────────────


class TestResolverCache:
    @pytest.mark.asyncio
    async def test_second_lookup_served_from_cache(self, geo_services) -> None:
        async with geo_services.client() as client:
            resolver = _resolver(client, cache_ttl_s=300)
            first = await resolver.resolve("81.2.69.142")
            second = await resolver.resolve("81.2.69.142")

        assert first == second
        assert len(geo_services.requests) == 1
        assert resolver.cache_size == 1

    @pytest.mark.asyncio
    async def test_private_clients_share_one_entry(self, geo_services) -> None:
        async with geo_services.client() as client:
            resolver = _resolver(client, cache_ttl_s=300)
            await resolver.resolve("10.0.0.5")
            result = await resolver.resolve("192.168.1.20")

        assert result.ip == "8.8.8.8"
        assert len(geo_services.requests) == 1
        assert resolver.cache_size == 1

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, geo_services) -> None:
        geo_services.fail_hosts.update({"ipinfo.io": "500", "ip-api.com": "500"})
        async with geo_services.client() as client:
            resolver = _resolver(client, cache_ttl_s=300)
            with pytest.raises(GeoResolutionError):
                await resolver.resolve("81.2.69.142")
            assert resolver.cache_size == 0

            geo_services.fail_hosts.clear()
            result = await resolver.resolve("81.2.69.142")

        assert result.country_code == "GB"

    @pytest.mark.asyncio
    async def test_entries_expire(self, geo_services) -> None:
        async with geo_services.client() as client:
            resolver = _resolver(client, cache_ttl_s=0.01)
            await resolver.resolve("81.2.69.142")
            await asyncio.sleep(0.05)
            await resolver.resolve("81.2.69.142")

        assert len(geo_services.requests) == 2

    @pytest.mark.asyncio
    async def test_zero_ttl_disables_cache(self, geo_services) -> None:
        async with geo_services.client() as client:
            resolver = _resolver(client, cache_ttl_s=0)
            await resolver.resolve("81.2.69.142")
            await resolver.resolve("81.2.69.142")

        assert len(geo_services.requests) == 2
        assert resolver.cache_size == 0

    @pytest.mark.asyncio
    async def test_clear_cache(self, geo_services) -> None:
        async with geo_services.client() as client:
            resolver = _resolver(client, cache_ttl_s=300)
            await resolver.resolve("81.2.69.142")
            resolver.clear_cache()
            assert resolver.cache_size == 0

    @pytest.mark.asyncio
    async def test_size_is_bounded(self, geo_services) -> None:
        self_lookup, echo, country = build_provider_chains(GeoConfig())
        async with geo_services.client() as client:
            resolver = GeoResolver(
                client, self_lookup, echo, country, cache_ttl_s=300, cache_max_entries=3
            )
            for ip in ("81.2.69.142", "5.9.0.1", "95.173.136.70", "1.2.4.8"):
                await resolver.resolve(ip)
            assert resolver.cache_size == 3

            # Oldest entry was evicted and needs a fresh lookup
            before = len(geo_services.requests)
            await resolver.resolve("81.2.69.142")
            assert len(geo_services.requests) == before + 1
            assert resolver.cache_size == 3

    @pytest.mark.asyncio
    async def test_eviction_is_least_recently_used(self, geo_services) -> None:
        self_lookup, echo, country = build_provider_chains(GeoConfig())
        async with geo_services.client() as client:
            resolver = GeoResolver(
                client, self_lookup, echo, country, cache_ttl_s=300, cache_max_entries=2
            )
            await resolver.resolve("81.2.69.142")
            await resolver.resolve("5.9.0.1")
            await resolver.resolve("81.2.69.142")  # hit: now most recently used
            await resolver.resolve("95.173.136.70")  # evicts 5.9.0.1

            before = len(geo_services.requests)
            await resolver.resolve("81.2.69.142")
            assert len(geo_services.requests) == before
            await resolver.resolve("5.9.0.1")
            assert len(geo_services.requests) == before + 1

    @pytest.mark.asyncio
    async def test_many_distinct_addresses_stay_within_bound(self, geo_services) -> None:
        self_lookup, echo, country = build_provider_chains(GeoConfig())
        async with geo_services.client() as client:
            resolver = GeoResolver(
                client, self_lookup, echo, country, cache_ttl_s=300, cache_max_entries=100
            )
            result = GeoLookupResult(ip="8.8.8.8", country_code="US")
            for i in range(500):
                resolver._cache_put(f"100.{i // 256}.{i % 256}.1", result)
        assert resolver.cache_size == 100


class TestLatencyRecording:
    @pytest.mark.asyncio
    async def test_every_attempt_recorded(self, geo_services) -> None:
        geo_services.fail_hosts["ipinfo.io"] = "500"
        async with geo_services.client() as client:
            resolver = _resolver(client)
            await resolver.resolve("81.2.69.142")

        # ipinfo (failed) + ip-api (succeeded)
        assert resolver.latency_tracker.count == 2
        assert resolver.latency_tracker.avg_ms >= 0.0
