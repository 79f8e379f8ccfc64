"""Shared constants for GeoBlock.

Timeouts, provider defaults, and the small country tables used by the
simulation and ip-info endpoints. No magic numbers in other modules; import
from here.
"""

# ─── Country codes ────────────────────────────────────────────────────────────

# Sentinel CountryCode when resolution fails. Never a valid block-list entry
# (block-list entries are validated as two letters).
UNKNOWN_COUNTRY: str = "UNKNOWN"

UNKNOWN_COUNTRY_NAME: str = "Unknown"

# ─── External lookup timeouts (seconds) ───────────────────────────────────────

# ipinfo.io / ip-api.com lookups (IP + country).
DEFAULT_LOOKUP_TIMEOUT_S: float = 5.0

# Plain "what is my IP" echo services.
DEFAULT_ECHO_TIMEOUT_S: float = 3.0

# Successful resolutions are cached for this long; 0 disables the cache.
DEFAULT_CACHE_TTL_S: float = 300.0

# Upper bound on cached resolutions; least-recently-used entries are evicted.
GEO_CACHE_MAX_ENTRIES: int = 10_000

# ─── Provider defaults ────────────────────────────────────────────────────────

DEFAULT_IPINFO_URL: str = "https://ipinfo.io"
DEFAULT_IPAPI_URL: str = "http://ip-api.com"

DEFAULT_SELF_LOOKUP: tuple[str, ...] = ("ipinfo",)
DEFAULT_COUNTRY_LOOKUP: tuple[str, ...] = ("ipinfo", "ip-api")
DEFAULT_ECHO_SERVICES: tuple[str, ...] = (
    "https://api.ipify.org?format=text",
    "https://checkip.amazonaws.com",
    "https://icanhazip.com",
)

# ─── Shared HTTP client pool ──────────────────────────────────────────────────

POOL_MAX_CONNECTIONS: int = 50
POOL_MAX_KEEPALIVE: int = 20
POOL_KEEPALIVE_EXPIRY: float = 30.0  # seconds

# ─── Rate limiting ────────────────────────────────────────────────────────────

# Administrative block-list replacement (slowapi syntax).
ADMIN_RATE_LIMIT: str = "30/minute"

# ─── Deny response ────────────────────────────────────────────────────────────

BLOCK_POLICY_REASON: str = "Geo-blocking policy in effect"

# ─── Country tables ───────────────────────────────────────────────────────────

COUNTRY_NAMES: dict[str, str] = {
    "US": "United States",
    "CA": "Canada",
    "GB": "United Kingdom",
    "DE": "Germany",
    "FR": "France",
    "AU": "Australia",
    "JP": "Japan",
    "RU": "Russia",
    "CN": "China",
    "NL": "Netherlands",
    "BR": "Brazil",
    "IN": "India",
    "ES": "Spain",
    "IT": "Italy",
    "SE": "Sweden",
}

# Deterministic per-country addresses returned by /api/simulate-vpn.
# All publicly routable; the value is cosmetic and never resolved.
SIMULATED_IPS: dict[str, str] = {
    "US": "204.79.197.200",
    "DE": "185.199.108.153",
    "RU": "46.4.96.137",
    "CN": "103.21.244.8",
    "FR": "46.19.37.108",
    "GB": "151.101.193.140",
    "AU": "1.128.0.1",
    "CA": "24.48.0.1",
    "JP": "210.251.121.3",
    "BR": "191.232.38.25",
    "IN": "103.21.244.15",
    "NL": "185.40.4.193",
    "IT": "151.101.1.140",
    "ES": "185.199.110.153",
    "SE": "185.40.4.194",
}

# Countries without a table entry get a TEST-NET-2 documentation address.
FALLBACK_SIMULATED_IP: str = "198.51.100.1"
