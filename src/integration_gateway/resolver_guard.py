"""
Resolution-Time SSRF Guard
==========================

An httpcore network backend that resolves hostnames itself, classifies every
resolved address, and only then opens the TCP connection, to the address it
just validated.

This closes the gap that static URL validation cannot: a hostname that
resolves to a public address when the URL is checked but to a private one
when the socket is opened (DNS rebinding), or that resolves differently on a
later connection of the same client. The check runs on every connect_tcp()
call the connection pool makes, so reconnects are covered as well.

TLS is unaffected: httpcore passes the original hostname as server_hostname
when upgrading the stream, so SNI and certificate verification still use the
name, not the address.

Usage:
    import httpcore
    from integration_gateway.resolver_guard import GuardedNetworkBackend

    pool = httpcore.AsyncConnectionPool(network_backend=GuardedNetworkBackend())
"""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import TYPE_CHECKING, Awaitable, Callable

import httpcore

from .address_policy import Verdict, classify
from .settings import get_settings

if TYPE_CHECKING:
    from collections.abc import Iterable

    from httpcore import AsyncNetworkStream

logger = logging.getLogger(__name__)

Resolver = Callable[[str, int], Awaitable[list[str]]]

_SocketOption = (
    tuple[int, int, int] | tuple[int, int, bytes | bytearray] | tuple[int, int, None, int]
)


class ResolutionBlockedError(httpcore.ConnectError):
    """
    Raised when a hostname resolves to a disallowed address at connect time.

    Subclasses httpcore.ConnectError so httpx reports it as an ordinary
    connection failure (httpx.ConnectError) with this error as __cause__.
    """

    def __init__(self, hostname: str, address: str, reason: str):
        self.hostname = hostname
        self.address = address
        self.reason = reason
        super().__init__(
            f"SSRF blocked: {hostname!r} resolves to {address} ({reason})"
        )


async def resolve_host(hostname: str, port: int) -> list[str]:
    """
    Resolve a hostname with the system resolver without blocking the loop.

    Args:
        hostname: Hostname (or IP literal) to resolve
        port: Port number for resolution context

    Returns:
        Resolved addresses in resolver order, duplicates removed

    Raises:
        socket.gaierror: If resolution fails
    """
    loop = asyncio.get_running_loop()
    addr_info = await loop.getaddrinfo(
        hostname, port, type=socket.SOCK_STREAM, proto=socket.IPPROTO_TCP
    )
    addresses: list[str] = []
    for _family, _type, _proto, _canonname, sockaddr in addr_info:
        address = str(sockaddr[0])
        if address not in addresses:
            addresses.append(address)
    return addresses


def check_resolved_address(hostname: str, address: str) -> None:
    """
    Classify one resolved address for a hostname.

    Raises:
        ResolutionBlockedError: If the address is in a blocked range
    """
    try:
        verdict = classify(address)
    except ValueError:
        verdict = Verdict.block(f"unparseable resolved address {address!r}")
    if verdict.blocked:
        logger.warning(
            f"SSRF: {hostname!r} resolved to blocked address {address}: "
            f"{verdict.reason}"
        )
        raise ResolutionBlockedError(hostname, address, verdict.reason)


class GuardedNetworkBackend(httpcore.AsyncNetworkBackend):
    """
    Network backend that validates resolved addresses before connecting.

    Holds no per-call state, so one instance can be shared by every client
    in the process. Without an explicit dns_timeout, the timeout comes from
    the current settings (INTEGRATION_GATEWAY_DNS_TIMEOUT) on every lookup.
    """

    def __init__(
        self,
        resolver: Resolver | None = None,
        inner: httpcore.AsyncNetworkBackend | None = None,
        dns_timeout: float | None = None,
    ) -> None:
        self._resolver = resolver or resolve_host
        self._inner = inner or httpcore.AnyIOBackend()
        self._dns_timeout = dns_timeout

    @property
    def dns_timeout(self) -> float:
        return self._dns_timeout or get_settings().dns_timeout

    async def _resolve(self, host: str, port: int) -> list[str]:
        dns_timeout = self.dns_timeout
        try:
            addresses = await asyncio.wait_for(
                self._resolver(host, port), timeout=dns_timeout
            )
        except asyncio.TimeoutError as e:
            raise httpcore.ConnectTimeout(
                f"DNS resolution timed out for {host!r} after {dns_timeout}s"
            ) from e
        except OSError as e:
            raise httpcore.ConnectError(
                f"DNS resolution failed for {host!r}: {e}"
            ) from e

        if not addresses:
            raise httpcore.ConnectError(
                f"DNS resolution returned no results for {host!r}"
            )
        return addresses

    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: float | None = None,
        local_address: str | None = None,
        socket_options: Iterable[_SocketOption] | None = None,
    ) -> AsyncNetworkStream:
        addresses = await self._resolve(host, port)

        # Every answer must pass; a mixed answer set is treated as hostile.
        for address in addresses:
            check_resolved_address(host, address)

        # Connect to the validated address so the inner backend never resolves.
        validated = addresses[0]
        logger.debug(f"SSRF: connecting to {host!r} via {validated}:{port}")
        return await self._inner.connect_tcp(
            validated,
            port,
            timeout=timeout,
            local_address=local_address,
            socket_options=socket_options,
        )

    async def connect_unix_socket(
        self,
        path: str,
        timeout: float | None = None,
        socket_options: Iterable[_SocketOption] | None = None,
    ) -> AsyncNetworkStream:
        raise httpcore.ConnectError(
            "SSRF protection: Unix socket connections are not allowed"
        )

    async def sleep(self, seconds: float) -> None:
        await self._inner.sleep(seconds)
