"""
Address Classification for SSRF Prevention
==========================================

Pure, stateless classification of IP literals into allowed and disallowed
ranges. Used both for IP-literal hostnames in URLs (static check) and for the
addresses returned by name resolution at connect time.

IPv4 rules (first match wins):
- Loopback 127.0.0.0/8
- Unspecified 0.0.0.0
- Link-local 169.254.0.0/16 (includes the cloud metadata address)
- Private 10.0.0.0/8, 172.16.0.0/12, 192.168.0.0/16

IPv6 rules (first match wins):
- Loopback ::1
- Unspecified ::
- IPv6-mapped IPv4 ::ffff:0:0/96 (embedded address classified as IPv4)
- Unique-local fc00::/7
- Link-local fe80::/10

Usage:
    from integration_gateway.address_policy import classify

    verdict = classify("10.1.2.3")
    if verdict.blocked:
        print(verdict.reason)  # "private IP range 10.0.0.0/8"
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address

_IPV4_LOOPBACK = ipaddress.IPv4Network("127.0.0.0/8")
_IPV4_UNSPECIFIED = ipaddress.IPv4Address("0.0.0.0")
_IPV4_LINK_LOCAL = ipaddress.IPv4Network("169.254.0.0/16")

# Checked in order; the network text is part of the reason string.
_IPV4_PRIVATE_NETWORKS = (
    ipaddress.IPv4Network("10.0.0.0/8"),
    ipaddress.IPv4Network("172.16.0.0/12"),
    ipaddress.IPv4Network("192.168.0.0/16"),
)

_IPV4_MAPPED_PREFIX = bytes(10) + b"\xff\xff"


@dataclass(frozen=True)
class Verdict:
    """Outcome of classifying one address: allowed, or blocked with a reason."""

    allowed: bool
    reason: str = ""

    @classmethod
    def allow(cls) -> Verdict:
        return _ALLOWED

    @classmethod
    def block(cls, reason: str) -> Verdict:
        return cls(allowed=False, reason=reason)

    @property
    def blocked(self) -> bool:
        return not self.allowed


_ALLOWED = Verdict(allowed=True)


def _parse(address: str | IPAddress) -> IPAddress:
    if isinstance(address, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return address
    text = address.strip()
    if text.startswith("[") and text.endswith("]"):
        text = text[1:-1]
    return ipaddress.ip_address(text)


def is_ip_literal(host: str) -> bool:
    """
    Check if a hostname is an IPv4 or IPv6 address literal.

    Args:
        host: Hostname as it appears in a URL (brackets allowed for IPv6)

    Returns:
        True if it's an IP literal, False if it's a domain name
    """
    try:
        _parse(host)
    except ValueError:
        return False
    return True


def classify_ipv4(address: str | ipaddress.IPv4Address) -> Verdict:
    """Classify an IPv4 address against the blocked IPv4 ranges."""
    ip = (
        address
        if isinstance(address, ipaddress.IPv4Address)
        else ipaddress.IPv4Address(address)
    )

    if ip in _IPV4_LOOPBACK:
        return Verdict.block(f"loopback address {_IPV4_LOOPBACK}")
    if ip == _IPV4_UNSPECIFIED:
        return Verdict.block(f"unspecified address {_IPV4_UNSPECIFIED}")
    if ip in _IPV4_LINK_LOCAL:
        return Verdict.block(f"link-local address {_IPV4_LINK_LOCAL}")
    for network in _IPV4_PRIVATE_NETWORKS:
        if ip in network:
            return Verdict.block(f"private IP range {network}")
    return Verdict.allow()


def classify_ipv6(address: str | ipaddress.IPv6Address) -> Verdict:
    """
    Classify an IPv6 address against the blocked IPv6 ranges.

    The address is examined as its 16 packed bytes, so every textual form
    (zero compression, embedded dotted-quad, zone id) gets the same verdict.
    """
    ip = (
        address
        if isinstance(address, ipaddress.IPv6Address)
        else ipaddress.IPv6Address(address)
    )
    raw = ip.packed

    if raw == bytes(15) + b"\x01":
        return Verdict.block("IPv6 loopback address ::1")
    if raw == bytes(16):
        return Verdict.block("IPv6 unspecified address ::")

    if raw[:12] == _IPV4_MAPPED_PREFIX:
        embedded = classify_ipv4(ipaddress.IPv4Address(raw[12:]))
        if embedded.blocked:
            return Verdict.block(f"IPv6-mapped IPv4: {embedded.reason}")

    if raw[0] & 0xFE == 0xFC:
        return Verdict.block("IPv6 unique-local fc00::/7")
    if raw[0] == 0xFE and raw[1] & 0xC0 == 0x80:
        return Verdict.block("IPv6 link-local fe80::/10")
    return Verdict.allow()


def classify(address: str | IPAddress) -> Verdict:
    """
    Classify an IP literal as allowed or blocked.

    Deterministic and side-effect free: the verdict depends only on the
    address, never on configuration or earlier calls.

    Args:
        address: IPv4 or IPv6 literal, as text or an ipaddress object.
                 IPv6 text may be bracketed and may carry a zone id.

    Returns:
        Verdict.allow() or Verdict.block(reason)

    Raises:
        ValueError: If address is not an IP literal
    """
    ip = _parse(address)
    if isinstance(ip, ipaddress.IPv4Address):
        return classify_ipv4(ip)
    return classify_ipv6(ip)
