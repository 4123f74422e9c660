"""
Outbound Verb Helpers - Normalized Results for Connector Calls
==============================================================

Free functions that issue one HTTP call through an OutboundClient and turn
whatever happens into a CallOutcome:

- Success(payload, status_code) for any status below 400, including 3xx,
  which is never followed
- Failure("HTTP {status}: {reason}", status_code) for status >= 400
- Failure("timeout") when the absolute client timeout expires
- Failure("SSRF blocked: ...") when the target is blocked statically or at
  connect time
- Failure(message) for any other transport error (DNS, connect, TLS)

Nothing here retries. Every failure is logged with the verb and path, and
every call runs inside an OpenTelemetry span.

fetch_following_redirects() is the one place redirects are followed: each hop
is validated and requested through a fresh guarded client.

Usage:
    from integration_gateway import outbound

    outcome = await outbound.get(client, "/api/v1/hardware")
    if outcome.ok:
        rows = outcome.payload["rows"]
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

import httpx
from opentelemetry import trace

from .client_factory import OutboundClient, create_client
from .resolver_guard import ResolutionBlockedError
from .results import CallOutcome, Failure, Success
from .settings import get_settings
from .url_security import InvalidURLError, SSRFBlockedError, validate_outbound_url

logger = logging.getLogger(__name__)

tracer = trace.get_tracer(__name__)

# OTel attribute names for outbound spans
ATTR_HTTP_METHOD = "http.request.method"
ATTR_URL_PATH = "url.path"
ATTR_HTTP_STATUS = "http.response.status_code"
ATTR_OUTCOME = "outbound.outcome"
ATTR_BLOCK_REASON = "outbound.block_reason"

GENERIC_FAILURE_MESSAGE = "request failed"
TIMEOUT_MESSAGE = "timeout"

# Never forwarded to a redirect target on another origin.
_CROSS_ORIGIN_STRIPPED_HEADERS = frozenset(["authorization", "cookie"])


def _body_kwargs(body: Any) -> dict[str, Any]:
    if body is None:
        return {}
    if isinstance(body, (str, bytes)):
        return {"content": body}
    return {"json": body}


def _decode_payload(response: httpx.Response) -> Any:
    if not response.content:
        return None
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text


def _find_resolution_block(exc: BaseException) -> ResolutionBlockedError | None:
    """Walk the exception chain for a connect-time SSRF block."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        if isinstance(current, ResolutionBlockedError):
            return current
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return None


def _is_absolute(path: str) -> bool:
    return "://" in path.split("?", 1)[0]


def _fail(
    span: trace.Span,
    verb: str,
    path: str,
    message: str,
    status_code: int | None = None,
    outcome: str = "failure",
) -> Failure:
    span.set_attribute(ATTR_OUTCOME, outcome)
    logger.error(f"{verb} {path} failed: {message}")
    return Failure(message=message, status_code=status_code)


async def request(
    client: OutboundClient,
    verb: str,
    path: str,
    *,
    body: Any = None,
    params: Mapping[str, Any] | None = None,
) -> CallOutcome:
    """
    Issue one call and normalize the result.

    Args:
        client: Client from create_client()
        verb: HTTP method (GET, POST, PUT, DELETE, ...)
        path: Path relative to the client's base URL. An absolute URL is
              accepted but must itself pass validate_outbound_url().
        body: dict/list sent as JSON, str/bytes sent as-is
        params: Query parameters

    Returns:
        Success or Failure. Never raises for network or HTTP conditions.
    """
    verb = verb.upper()
    with tracer.start_as_current_span(f"outbound.{verb.lower()}") as span:
        span.set_attribute(ATTR_HTTP_METHOD, verb)
        span.set_attribute(ATTR_URL_PATH, path)

        if _is_absolute(path):
            try:
                validate_outbound_url(path)
            except SSRFBlockedError as e:
                span.set_attribute(ATTR_BLOCK_REASON, e.reason)
                return _fail(span, verb, path, str(e), outcome="blocked")
            except InvalidURLError as e:
                return _fail(span, verb, path, str(e))

        try:
            response = await asyncio.wait_for(
                client.request(verb, path, params=params, **_body_kwargs(body)),
                timeout=client.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return _fail(span, verb, path, TIMEOUT_MESSAGE)
        except (httpx.RequestError, httpx.InvalidURL) as e:
            blocked = _find_resolution_block(e)
            if blocked is not None:
                span.set_attribute(ATTR_BLOCK_REASON, blocked.reason)
                return _fail(span, verb, path, str(blocked), outcome="blocked")
            return _fail(span, verb, path, str(e) or GENERIC_FAILURE_MESSAGE)

        span.set_attribute(ATTR_HTTP_STATUS, response.status_code)
        if response.status_code >= 400:
            return _fail(
                span,
                verb,
                path,
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            )

        span.set_attribute(ATTR_OUTCOME, "success")
        return Success(
            payload=_decode_payload(response),
            status_code=response.status_code,
            headers=dict(response.headers),
        )


async def get(
    client: OutboundClient, path: str, *, params: Mapping[str, Any] | None = None
) -> CallOutcome:
    return await request(client, "GET", path, params=params)


async def post(client: OutboundClient, path: str, body: Any = None) -> CallOutcome:
    return await request(client, "POST", path, body=body)


async def put(client: OutboundClient, path: str, body: Any = None) -> CallOutcome:
    return await request(client, "PUT", path, body=body)


async def delete(client: OutboundClient, path: str) -> CallOutcome:
    return await request(client, "DELETE", path)


# =============================================================================
# Redirect-safe fetch
# =============================================================================


async def fetch_following_redirects(
    url: str,
    method: str = "GET",
    *,
    headers: Mapping[str, str] | None = None,
    body: Any = None,
    max_redirects: int | None = None,
    timeout_ms: int | None = None,
) -> CallOutcome:
    """
    Fetch a URL, following redirects only after validating each hop.

    Every Location is resolved against the current URL, checked by
    validate_outbound_url(), and requested through a new guarded client, so
    the connect-time guard applies to each hop too. Method and body change
    the way httpx changes them: 303 (and 301/302 after POST) becomes a GET
    without a body, 307/308 repeat both. Authorization and Cookie are dropped
    once a hop leaves the origin (scheme, host, port) of the previous one, as
    httpx does for the redirects it follows.

    Args:
        url: Absolute URL to fetch
        method: HTTP method of the first request
        headers: Headers for the first hop; credentials are not sent across
            origins
        body: Request body for the first hop
        max_redirects: Hop limit (default: INTEGRATION_GATEWAY_MAX_REDIRECTS)
        timeout_ms: Per-hop timeout in milliseconds

    Returns:
        The outcome of the final hop, or Failure if a hop is blocked or the
        hop limit is exceeded.
    """
    if max_redirects is None:
        max_redirects = get_settings().max_redirects

    current_url = url
    current_method = method.upper()
    current_body = body
    current_headers = dict(headers or {})

    for hop in range(max_redirects + 1):
        try:
            client = create_client(current_url, current_headers, timeout_ms)
        except SSRFBlockedError as e:
            prefix = "redirect " if hop else ""
            message = f"SSRF blocked: {prefix}{e.reason} (URL: {current_url})"
            logger.warning(f"{current_method} {current_url} refused: {message}")
            return Failure(message=message)
        except InvalidURLError as e:
            logger.warning(f"{current_method} {current_url} refused: {e}")
            return Failure(message=str(e))

        async with client:
            outcome = await request(
                client, current_method, current_url, body=current_body
            )

        if not _is_redirect(outcome):
            return outcome

        location = outcome.headers.get("location")
        if not location:
            return outcome
        try:
            next_url = str(httpx.URL(current_url).join(location))
        except httpx.InvalidURL as e:
            logger.warning(f"Invalid redirect target from {current_url}: {e}")
            return Failure(message=f"Invalid redirect target: {location!r}")

        logger.debug(f"Following redirect {hop + 1}: {current_url} -> {next_url}")
        next_method = _redirect_method(current_method, outcome.status_code)
        if next_method != current_method:
            current_body = None
        if not _same_origin(current_url, next_url):
            logger.debug(f"Redirect leaves {current_url}; dropping credentials")
            current_headers = _strip_credentials(current_headers)
        current_method = next_method
        current_url = next_url

    logger.warning(f"{method.upper()} {url} failed: too many redirects")
    return Failure(message="too many redirects")


def _is_redirect(outcome: CallOutcome) -> bool:
    return isinstance(outcome, Success) and 300 <= outcome.status_code < 400


def _redirect_method(method: str, status_code: int) -> str:
    """Method for the next hop, following the same rules as httpx."""
    if status_code == 303 and method != "HEAD":
        return "GET"
    if status_code in (301, 302) and method == "POST":
        return "GET"
    return method


def _same_origin(url: str, other: str) -> bool:
    first, second = httpx.URL(url), httpx.URL(other)
    return (
        first.scheme == second.scheme
        and first.host == second.host
        and _port_or_default(first) == _port_or_default(second)
    )


def _port_or_default(url: httpx.URL) -> int | None:
    if url.port is not None:
        return url.port
    return {"http": 80, "https": 443}.get(url.scheme)


def _strip_credentials(headers: Mapping[str, str]) -> dict[str, str]:
    return {
        name: value
        for name, value in headers.items()
        if name.lower() not in _CROSS_ORIGIN_STRIPPED_HEADERS
    }
