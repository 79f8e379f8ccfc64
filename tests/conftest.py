"""Root test configuration for GeoBlock.

Provides:
  - an autouse fixture that clears GEOBLOCK_* environment overrides and resets
    the slowapi rate limiter between tests
  - ``MockGeoServices``: an ``httpx.MockTransport`` stand-in for ipinfo.io,
    ip-api.com and the IP echo services, with per-host failure injection
  - ``geo_services`` / ``make_app`` fixtures for integration tests
"""

from __future__ import annotations

import json
from typing import Any, Callable, Optional

import httpx
import pytest

from geoblock.config import Config

# Host machine's public identity as reported by the mocked discovery services
HOST_PUBLIC_IP = "8.8.8.8"
HOST_COUNTRY = "US"

# Public address → (country, city, region, isp)
KNOWN_IPS: dict[str, tuple[str, str, str, str]] = {
    "8.8.8.8": ("US", "Mountain View", "California", "AS15169 Google LLC"),
    "81.2.69.142": ("GB", "London", "England", "AS20712 Andrews & Arnold"),
    "5.9.0.1": ("DE", "Falkenstein", "Saxony", "AS24940 Hetzner Online GmbH"),
    "95.173.136.70": ("RU", "Moscow", "Moscow", "AS12389 Rostelecom"),
    "1.2.4.8": ("CN", "Beijing", "Beijing", "AS24151 CNNIC"),
}


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolate tests from host env overrides and prior rate-limit state."""
    for name in ("GEOBLOCK_CONFIG", "GEOBLOCK_PORT", "GEOBLOCK_FAIL_POLICY", "IPINFO_TOKEN"):
        monkeypatch.delenv(name, raising=False)

    from geoblock.api.limiter import limiter
    try:
        limiter._storage.reset()
    except Exception:
        pass  # not every limits storage backend implements reset()


class MockGeoServices:
    """Mock of every external geo service, routed by hostname.

    ``fail_hosts`` maps a hostname to a failure mode:
      "timeout"  → httpx.ReadTimeout
      "connect"  → httpx.ConnectError
      "500"      → HTTP 500
      "garbage"  → HTTP 200 with a non-JSON body
    """

    def __init__(
        self,
        *,
        host_ip: str = HOST_PUBLIC_IP,
        host_country: Optional[str] = HOST_COUNTRY,
        fail_hosts: Optional[dict[str, str]] = None,
    ) -> None:
        self.host_ip = host_ip
        self.host_country = host_country
        self.fail_hosts: dict[str, str] = dict(fail_hosts or {})
        self.requests: list[httpx.Request] = []

    # ── Introspection ─────────────────────────────────────────────────────────

    def hosts_called(self) -> list[str]:
        return [r.url.host for r in self.requests]

    def calls_to(self, host: str) -> int:
        return sum(1 for r in self.requests if r.url.host == host)

    # ── Transport ─────────────────────────────────────────────────────────────

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        path = request.url.path

        failure = self.fail_hosts.get(host)
        if failure == "timeout":
            raise httpx.ReadTimeout("timed out", request=request)
        if failure == "connect":
            raise httpx.ConnectError("connection refused", request=request)
        if failure == "500":
            return httpx.Response(500, text="internal error")
        if failure == "garbage":
            return httpx.Response(200, text="<html>not json</html>")

        if host == "ipinfo.io":
            return self._ipinfo(path)
        if host == "ip-api.com":
            return self._ipapi(path)
        if host in ("api.ipify.org", "checkip.amazonaws.com", "icanhazip.com"):
            return httpx.Response(200, text=f"{self.host_ip}\n")
        return httpx.Response(404, text="unknown host")

    def _ipinfo(self, path: str) -> httpx.Response:
        if path == "/json":
            body: dict[str, Any] = {"ip": self.host_ip}
            if self.host_country:
                body["country"] = self.host_country.lower()
            return httpx.Response(200, content=json.dumps(body))
        ip = path.strip("/").split("/")[0]
        if ip in KNOWN_IPS:
            country, city, region, org = KNOWN_IPS[ip]
            return httpx.Response(
                200,
                content=json.dumps(
                    {"ip": ip, "country": country, "city": city, "region": region, "org": org}
                ),
            )
        return httpx.Response(404, content=json.dumps({"error": {"title": "Wrong ip"}}))

    def _ipapi(self, path: str) -> httpx.Response:
        ip = path.rsplit("/", 1)[-1]
        if ip in KNOWN_IPS:
            country, city, region, isp = KNOWN_IPS[ip]
            return httpx.Response(
                200,
                content=json.dumps(
                    {
                        "status": "success",
                        "query": ip,
                        "countryCode": country,
                        "city": city,
                        "regionName": region,
                        "isp": isp,
                    }
                ),
            )
        return httpx.Response(
            200, content=json.dumps({"status": "fail", "message": "invalid query", "query": ip})
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def geo_services() -> MockGeoServices:
    return MockGeoServices()


@pytest.fixture
def make_app(monkeypatch: pytest.MonkeyPatch) -> Callable[..., Any]:
    """Build a GeoBlock app wired to mock geo services and a stub config.

    Usage::

        app = make_app(services, config=Config.defaults())
        with TestClient(app) as client:   # runs the lifespan
            ...
    """

    def _build(services: MockGeoServices, config: Optional[Config] = None) -> Any:
        from geoblock.main import create_app

        stub = config or Config.defaults()
        monkeypatch.setattr("geoblock.main.load_config", lambda: stub)
        monkeypatch.setattr("geoblock.main.create_http_client", lambda: services.client())
        return create_app()

    return _build
