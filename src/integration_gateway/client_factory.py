"""
Per-Call Client Factory - SSRF-Guarded Outbound HTTP Clients
============================================================

Builds a request-scoped httpx.AsyncClient for every connector invocation.
Each client is bound to one validated base URL, one header set and one
timeout, and is never shared or mutated by another caller.

Every client:
- has its base URL checked by url_security.validate_outbound_url()
- connects through the process-wide GuardedNetworkBackend, which re-checks
  every resolved address on every new connection
- never follows redirects (a 3xx is returned to the caller as-is)
- ignores proxy environment variables (trust_env=False)

Shared state:
    The guarded network backend and the TLS context are the only process-wide
    objects. Both are built once and read-only afterwards; the backend is a
    pure hostname -> validated-address function and carries no per-call data.
    Connection pools are per client.

Usage:
    from integration_gateway.client_factory import create_client
    from integration_gateway import outbound

    async with create_client(config.base_url, {"Authorization": f"Bearer {token}"}) as client:
        outcome = await outbound.get(client, "/api/v1/users")

See: https://www.python-httpx.org/advanced/transports/
"""

from __future__ import annotations

import contextlib
import logging
import ssl
import threading
from types import TracebackType
from typing import Any, AsyncIterable, AsyncIterator, Iterator, Mapping

import httpcore
import httpx

from .resolver_guard import GuardedNetworkBackend
from .settings import get_settings
from .url_security import validate_outbound_url

logger = logging.getLogger(__name__)

# =============================================================================
# Instrumentation (for testing and observability)
# =============================================================================

# Counter for tracking client instantiations (for testing)
_client_instantiation_count = 0
_client_instantiation_lock = threading.Lock()


def get_client_instantiation_count() -> int:
    """
    Get the number of outbound clients created since process start or reset.

    Returns:
        Number of client instantiations.
    """
    return _client_instantiation_count


def reset_client_instantiation_count() -> None:
    """
    Reset the client instantiation counter.

    WARNING: For testing purposes only.
    """
    global _client_instantiation_count
    with _client_instantiation_lock:
        _client_instantiation_count = 0


def _increment_instantiation_count() -> int:
    """Increment and return the instantiation count."""
    global _client_instantiation_count
    with _client_instantiation_lock:
        _client_instantiation_count += 1
        return _client_instantiation_count


# =============================================================================
# Process-wide read-only objects
# =============================================================================

# Constructed once at import. Settings are read on each connect.
_GUARDED_BACKEND = GuardedNetworkBackend()

_ssl_context: ssl.SSLContext | None = None
_ssl_context_lock = threading.Lock()


def get_guarded_backend() -> GuardedNetworkBackend:
    """Return the process-wide resolution-time guard."""
    return _GUARDED_BACKEND


def _get_ssl_context() -> ssl.SSLContext:
    """Get or create the shared client TLS context (certificate verification on)."""
    global _ssl_context
    if _ssl_context is None:
        with _ssl_context_lock:
            if _ssl_context is None:
                _ssl_context = httpx.create_ssl_context(trust_env=False)
    return _ssl_context


# Most specific first: the first matching entry wins.
_HTTPCORE_EXCEPTIONS: tuple[tuple[type[Exception], type[httpx.HTTPError]], ...] = (
    (httpcore.ConnectTimeout, httpx.ConnectTimeout),
    (httpcore.ReadTimeout, httpx.ReadTimeout),
    (httpcore.WriteTimeout, httpx.WriteTimeout),
    (httpcore.PoolTimeout, httpx.PoolTimeout),
    (httpcore.TimeoutException, httpx.TimeoutException),
    (httpcore.ConnectError, httpx.ConnectError),
    (httpcore.ReadError, httpx.ReadError),
    (httpcore.WriteError, httpx.WriteError),
    (httpcore.NetworkError, httpx.NetworkError),
    (httpcore.UnsupportedProtocol, httpx.UnsupportedProtocol),
    (httpcore.LocalProtocolError, httpx.LocalProtocolError),
    (httpcore.RemoteProtocolError, httpx.RemoteProtocolError),
    (httpcore.ProtocolError, httpx.ProtocolError),
)


@contextlib.contextmanager
def _map_httpcore_exceptions() -> Iterator[None]:
    """
    Re-raise httpcore errors as the matching httpx errors.

    The original error is kept as __cause__, so a ResolutionBlockedError is
    still reachable from the httpx.ConnectError the caller sees.
    """
    try:
        yield
    except Exception as exc:
        for source, target in _HTTPCORE_EXCEPTIONS:
            if isinstance(exc, source):
                raise target(str(exc)) from exc
        raise


class _GuardedResponseStream(httpx.AsyncByteStream):
    def __init__(self, stream: AsyncIterable[bytes]) -> None:
        self._stream = stream

    async def __aiter__(self) -> AsyncIterator[bytes]:
        with _map_httpcore_exceptions():
            async for chunk in self._stream:
                yield chunk

    async def aclose(self) -> None:
        if hasattr(self._stream, "aclose"):
            await self._stream.aclose()


class GuardedTransport(httpx.AsyncBaseTransport):
    """
    httpx transport over its own httpcore connection pool.

    The pool connects through the given network backend, so every new
    connection goes through the resolution-time guard. HTTP/1.1 only, no
    proxies, no retries.
    """

    def __init__(
        self,
        network_backend: httpcore.AsyncNetworkBackend,
        limits: httpx.Limits,
    ) -> None:
        self._pool = httpcore.AsyncConnectionPool(
            ssl_context=_get_ssl_context(),
            max_connections=limits.max_connections,
            max_keepalive_connections=limits.max_keepalive_connections,
            keepalive_expiry=limits.keepalive_expiry,
            http1=True,
            http2=False,
            retries=0,
            network_backend=network_backend,
        )

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        core_request = httpcore.Request(
            method=request.method,
            url=httpcore.URL(
                scheme=request.url.raw_scheme,
                host=request.url.raw_host,
                port=request.url.port,
                target=request.url.raw_path,
            ),
            headers=request.headers.raw,
            content=request.stream,
            extensions=request.extensions,
        )
        with _map_httpcore_exceptions():
            core_response = await self._pool.handle_async_request(core_request)

        return httpx.Response(
            status_code=core_response.status,
            headers=core_response.headers,
            stream=_GuardedResponseStream(core_response.stream),
            extensions=core_response.extensions,
        )

    async def aclose(self) -> None:
        await self._pool.aclose()


def _create_client_limits() -> httpx.Limits:
    settings = get_settings()
    return httpx.Limits(
        max_connections=settings.max_connections,
        max_keepalive_connections=settings.max_keepalive,
    )


# =============================================================================
# Per-call client
# =============================================================================


class OutboundClient:
    """
    A request-scoped outbound HTTP client.

    Holds the validated base URL, its headers and its timeout. There is no way
    to change any of them after construction; build a new client instead.
    Use as an async context manager, or call aclose() when done.
    """

    def __init__(
        self,
        base_url: str,
        headers: Mapping[str, str] | None,
        timeout: float,
        transport: httpx.AsyncBaseTransport,
    ) -> None:
        self._base_url = base_url
        self._timeout = timeout
        self._http = httpx.AsyncClient(
            base_url=base_url,
            headers=dict(headers or {}),
            timeout=httpx.Timeout(timeout),
            follow_redirects=False,
            trust_env=False,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def headers(self) -> dict[str, str]:
        """A copy of the client's default headers."""
        return dict(self._http.headers)

    @property
    def timeout(self) -> float:
        """Absolute timeout for one call, in seconds."""
        return self._timeout

    @property
    def follow_redirects(self) -> bool:
        return False

    @property
    def is_closed(self) -> bool:
        return self._http.is_closed

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
        content: str | bytes | None = None,
    ) -> httpx.Response:
        """
        Send one request relative to the base URL.

        Transport errors propagate as httpx exceptions; use the helpers in
        integration_gateway.outbound for normalized outcomes.
        """
        return await self._http.request(
            method,
            path,
            params=params,
            json=json,
            content=content,
            follow_redirects=False,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> OutboundClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return f"<OutboundClient base_url={self._base_url!r} timeout={self._timeout}>"


def create_client(
    base_url: str,
    headers: Mapping[str, str] | None = None,
    timeout_ms: int | None = None,
) -> OutboundClient:
    """
    Create an SSRF-guarded client bound to an administrator-supplied base URL.

    Args:
        base_url: Target base URL (validated before anything else happens)
        headers: Default headers for every call made with this client
        timeout_ms: Absolute per-call timeout in milliseconds
                    (default: INTEGRATION_GATEWAY_TIMEOUT_MS, 30000)

    Returns:
        A new OutboundClient. Never shared with any other caller.

    Raises:
        InvalidURLError: If base_url does not parse
        SSRFBlockedError: If base_url targets a disallowed scheme or address
    """
    validate_outbound_url(base_url)

    if not isinstance(timeout_ms, (int, float)) or timeout_ms <= 0:
        timeout_ms = get_settings().default_timeout_ms

    transport = GuardedTransport(get_guarded_backend(), _create_client_limits())
    client = OutboundClient(
        base_url=base_url,
        headers=headers,
        timeout=timeout_ms / 1000.0,
        transport=transport,
    )

    count = _increment_instantiation_count()
    logger.debug(
        f"Outbound client #{count} created for {base_url} (timeout={timeout_ms}ms)"
    )
    return client
