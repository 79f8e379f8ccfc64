"""Private / non-routable address classification."""

from __future__ import annotations

import ipaddress


def is_private_ip(ip: str) -> bool:
    """True for addresses that cannot identify a client's country.

    Covers 10/8, 172.16/12, 192.168/16, 127/8, ``::1``, link-local,
    unspecified, reserved, multicast and IPv6 unique-local ranges, plus the
    literal ``localhost``. Strings that are not IP addresses return False; they
    are looked up as-is and fail there.
    """
    candidate = ip.strip()
    if candidate.lower() == "localhost":
        return True
    try:
        addr = ipaddress.ip_address(candidate)
    except ValueError:
        return False

    # IPv4-mapped IPv6 (::ffff:10.0.0.1) is classified by its IPv4 part
    mapped = getattr(addr, "ipv4_mapped", None)
    if mapped is not None:
        addr = mapped

    return (
        addr.is_private
        or addr.is_loopback
        or addr.is_link_local
        or addr.is_unspecified
        or addr.is_reserved
        or addr.is_multicast
    )


def is_public_ip(ip: str) -> bool:
    """True only for syntactically valid, globally routable addresses."""
    try:
        ipaddress.ip_address(ip.strip())
    except ValueError:
        return False
    return not is_private_ip(ip)
