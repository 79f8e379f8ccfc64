"""GeoBlock geo resolution — client IP extraction and country lookup.

Public API:
    extract_client_ip   — best-guess client IP from headers + peer address
    is_private_ip       — private / loopback / non-routable classification
    GeoResolver         — ordered provider chains with private-IP fallback
    GeoResolutionError  — raised when no provider yields a country
"""
from geoblock.geo.addresses import is_private_ip, is_public_ip
from geoblock.geo.extractor import extract_client_ip, extract_client_ip_with_source
from geoblock.geo.resolver import GeoResolutionError, GeoResolver

__all__ = [
    "GeoResolutionError",
    "GeoResolver",
    "extract_client_ip",
    "extract_client_ip_with_source",
    "is_private_ip",
    "is_public_ip",
]
