"""Helpers for forward and reverse DNS names."""

from __future__ import annotations

import ipaddress
from typing import List, Sequence

RDNS_DOMAIN = "in-addr.arpa"


def make_canonical(domain: str) -> str:
    """Return the domain with exactly one trailing dot."""
    return domain if domain.endswith(".") else f"{domain}."


def strip_dot(domain: str) -> str:
    return domain[:-1] if domain.endswith(".") else domain


def reverse_zone_name(cidr: str) -> str:
    """Compute the canonical reverse zone for a CIDR.

    Prefixes of /24 and longer keep three octets, /16 to /23 keep two and
    anything shorter keeps one. Raises ValueError for a malformed CIDR.
    """
    network = ipaddress.IPv4Network(cidr, strict=False)
    octets = str(network.network_address).split(".")
    if network.prefixlen >= 24:
        octets = octets[:3]
    elif network.prefixlen >= 16:
        octets = octets[:2]
    else:
        octets = octets[:1]
    return f"{'.'.join(reversed(octets))}.{RDNS_DOMAIN}."


def reverse_name(octets: Sequence[str]) -> str:
    """Canonical PTR owner name for the given dotted-decimal octets."""
    return f"{'.'.join(reversed(list(octets)))}.{RDNS_DOMAIN}."


def reverse_name_for_ip(ip: str) -> str:
    return reverse_name(ip.split("."))


def reverse_name_without_zeros(ip: str) -> str:
    """Variant of reverse_name_for_ip that omits any octet equal to "0".

    Only the external-dns bridge uses this encoding.
    """
    return reverse_name([octet for octet in ip.split(".") if octet != "0"])


def forward_cidr_for_reverse_zone(zone_name: str) -> str:
    """Forward network address for a reverse zone, zero-filled to four octets.

    ``0.1.10.in-addr.arpa.`` becomes ``10.1.0.0``.
    """
    suffix = f".{RDNS_DOMAIN}."
    name = make_canonical(zone_name)
    if not name.endswith(suffix):
        raise ValueError(f"zone does not appear to be a reverse zone: {zone_name}")

    octets: List[str] = list(reversed(name[: -len(suffix)].split(".")))
    while len(octets) < 4:
        octets.append("0")
    return ".".join(octets)


def is_reverse_zone(zone_name: str) -> bool:
    return make_canonical(zone_name).endswith(f".{RDNS_DOMAIN}.")
