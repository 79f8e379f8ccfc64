"""Config loading for GeoBlock.

Reads ``.geoblock/config.yaml`` (or ``~/.geoblock/config.yaml``).
Raises SystemExit on parse errors, a missing ``version`` field, or invalid
enum values. If no config file is found, returns default values.

Config search order:
  1. ``config_path`` argument (if provided — for testing or explicit override)
  2. GEOBLOCK_CONFIG environment variable (if set)
  3. ``.geoblock/config.yaml`` (working directory)
  4. ``~/.geoblock/config.yaml`` (home directory)

Environment variable overrides (applied after the file):
  GEOBLOCK_PORT        — server.port
  GEOBLOCK_FAIL_POLICY — blocking.fail_policy ("open" | "closed")
  IPINFO_TOKEN         — geo.ipinfo_token
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import NoReturn, Optional

import yaml

from geoblock.constants import (
    DEFAULT_CACHE_TTL_S,
    DEFAULT_COUNTRY_LOOKUP,
    DEFAULT_ECHO_SERVICES,
    DEFAULT_ECHO_TIMEOUT_S,
    DEFAULT_IPAPI_URL,
    DEFAULT_IPINFO_URL,
    DEFAULT_LOOKUP_TIMEOUT_S,
    DEFAULT_SELF_LOOKUP,
)
from geoblock.models.decision import FailPolicy
from geoblock.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

# ─── Validation sets ─────────────────────────────────────────────────────────

VALID_FAIL_POLICIES: frozenset[str] = frozenset(p.value for p in FailPolicy)

# Names accepted in geo.self_lookup / geo.country_lookup
VALID_LOOKUP_PROVIDERS: frozenset[str] = frozenset({"ipinfo", "ip-api"})

DEFAULT_CONFIG_PATHS = [
    ".geoblock/config.yaml",
    os.path.expanduser("~/.geoblock/config.yaml"),
]


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class ServerConfig:
    """HTTP binding configuration."""

    host: str = "127.0.0.1"
    port: int = 8080


@dataclass
class GeoConfig:
    """Geo Resolver configuration.

    self_lookup:    providers asked for "my IP + country" when the client is private
    country_lookup: providers asked for the country of a known public IP, in order
    echo_services:  plain-text "what is my IP" URLs, tried after self_lookup fails
    """

    lookup_timeout_s: float = DEFAULT_LOOKUP_TIMEOUT_S
    echo_timeout_s: float = DEFAULT_ECHO_TIMEOUT_S
    cache_ttl_s: float = DEFAULT_CACHE_TTL_S
    ipinfo_url: str = DEFAULT_IPINFO_URL
    ipinfo_token: Optional[str] = None
    ipapi_url: str = DEFAULT_IPAPI_URL
    self_lookup: list[str] = field(default_factory=lambda: list(DEFAULT_SELF_LOOKUP))
    country_lookup: list[str] = field(default_factory=lambda: list(DEFAULT_COUNTRY_LOOKUP))
    echo_services: list[str] = field(default_factory=lambda: list(DEFAULT_ECHO_SERVICES))


@dataclass
class BlockingConfig:
    """Block list and unknown-country policy."""

    fail_policy: FailPolicy = FailPolicy.OPEN
    initial_countries: list[str] = field(default_factory=list)


@dataclass
class Config:
    """Root configuration object. Every field has a safe default."""

    version: int = SUPPORTED_CONFIG_VERSION
    server: ServerConfig = field(default_factory=ServerConfig)
    geo: GeoConfig = field(default_factory=GeoConfig)
    blocking: BlockingConfig = field(default_factory=BlockingConfig)
    path: Optional[str] = None

    @classmethod
    def defaults(cls) -> "Config":
        """Return a fully-default Config (no file required)."""
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are ignored.

        Raises:
            SystemExit(1): On an invalid fail_policy or unknown provider name.
        """
        # ── Server ────────────────────────────────────────────────────────────
        server_raw = raw.get("server") or {}
        server = ServerConfig(
            host=server_raw.get("host", "127.0.0.1"),
            port=server_raw.get("port", 8080),
        )

        # ── Geo ───────────────────────────────────────────────────────────────
        geo_raw = raw.get("geo") or {}
        defaults = GeoConfig()
        self_lookup = list(geo_raw.get("self_lookup", defaults.self_lookup))
        country_lookup = list(geo_raw.get("country_lookup", defaults.country_lookup))
        for name in self_lookup + country_lookup:
            if name not in VALID_LOOKUP_PROVIDERS:
                _config_error(
                    f"Invalid geo lookup provider: '{name}'. "
                    f"Supported values: {sorted(VALID_LOOKUP_PROVIDERS)}."
                )
        geo = GeoConfig(
            lookup_timeout_s=float(geo_raw.get("lookup_timeout_s", DEFAULT_LOOKUP_TIMEOUT_S)),
            echo_timeout_s=float(geo_raw.get("echo_timeout_s", DEFAULT_ECHO_TIMEOUT_S)),
            cache_ttl_s=float(geo_raw.get("cache_ttl_s", DEFAULT_CACHE_TTL_S)),
            ipinfo_url=geo_raw.get("ipinfo_url", DEFAULT_IPINFO_URL),
            ipinfo_token=geo_raw.get("ipinfo_token"),
            ipapi_url=geo_raw.get("ipapi_url", DEFAULT_IPAPI_URL),
            self_lookup=self_lookup,
            country_lookup=country_lookup,
            echo_services=list(geo_raw.get("echo_services", defaults.echo_services)),
        )

        # ── Blocking ──────────────────────────────────────────────────────────
        blocking_raw = raw.get("blocking") or {}
        blocking = BlockingConfig(
            fail_policy=_parse_fail_policy(blocking_raw.get("fail_policy", "open")),
            initial_countries=list(blocking_raw.get("initial_countries") or []),
        )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            server=server,
            geo=geo,
            blocking=blocking,
            path=path,
        )


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate GeoBlock configuration.

    If no file is found at any search path, returns default Config (not an
    error). If a file is found but invalid, writes the error to stderr and
    raises SystemExit(1). Environment overrides are applied in both cases.

    Raises:
        SystemExit(1): On YAML parse error, missing ``version`` field,
                       unsupported version, invalid enum value, or an
                       invalid environment override.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("GEOBLOCK_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    # ── No config file found ─────────────────────────────────────────────────
    if found_path is None:
        logger.info("No config file found — using defaults", searched=search_paths)
        config = Config.defaults()
        _apply_env_overrides(config)
        return config

    # ── Parse config file ─────────────────────────────────────────────────────
    logger.info("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _config_error(
            f"Failed to parse {found_path}: {exc}\n"
            "GeoBlock refuses to start with an invalid config. "
            "Check the YAML syntax and try again."
        )
    except OSError as exc:
        _config_error(f"Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            _config_error(
                f"{found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        _config_error(
            f"{found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    # ── Version validation ────────────────────────────────────────────────────
    version = raw.get("version")
    if version is None:
        _config_error(
            f"{found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        _config_error(
            f"Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    config = Config.from_dict(raw, path=found_path)
    _apply_env_overrides(config)

    if config.blocking.fail_policy is FailPolicy.CLOSED:
        logger.warning(
            "fail_policy=closed: requests whose country cannot be resolved will be denied"
        )

    logger.info(
        "Config loaded",
        path=found_path,
        version=config.version,
        fail_policy=config.blocking.fail_policy.value,
        initial_countries=config.blocking.initial_countries,
    )
    return config


def _parse_fail_policy(value: object) -> FailPolicy:
    normalized = str(value).strip().lower()
    if normalized not in VALID_FAIL_POLICIES:
        _config_error(
            f"Invalid fail_policy: '{value}'. "
            f"Supported values: {sorted(VALID_FAIL_POLICIES)}."
        )
    return FailPolicy(normalized)


def _config_error(message: str) -> NoReturn:
    print(f"CONFIG ERROR: {message}", file=sys.stderr)
    raise SystemExit(1)


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides to a Config object in-place.

    Handles GEOBLOCK_PORT, GEOBLOCK_FAIL_POLICY and IPINFO_TOKEN. Called for
    both file-loaded and default configs so env vars always win.

    Raises:
        SystemExit(1): If GEOBLOCK_PORT is not an integer or
                       GEOBLOCK_FAIL_POLICY is not a valid policy.
    """
    env_port = os.environ.get("GEOBLOCK_PORT")
    if env_port is not None:
        try:
            config.server.port = int(env_port)
        except ValueError:
            _config_error(
                f"GEOBLOCK_PORT environment variable is not a valid integer: '{env_port}'"
            )

    env_policy = os.environ.get("GEOBLOCK_FAIL_POLICY")
    if env_policy:
        config.blocking.fail_policy = _parse_fail_policy(env_policy)

    env_token = os.environ.get("IPINFO_TOKEN")
    if env_token:
        config.geo.ipinfo_token = env_token
