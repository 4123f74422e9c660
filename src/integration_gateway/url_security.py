"""
URL Security Utilities for SSRF Prevention
===========================================

Static validation of administrator-supplied URLs before any outbound client is
built for them. This is the fast, synchronous first layer; the second layer
(resolver_guard) re-checks every address the name resolver returns at
connect time.

Checks (in order):
- URL must parse and carry a scheme and a hostname
- Only http:// and https:// schemes
- Hostname "localhost" and the cloud metadata hostnames are rejected by name
- IP literal hostnames are classified by address_policy.classify()

DNS names are deliberately NOT resolved here. Resolving now and again at
connect time leaves a time-of-check/time-of-use gap; the resolver guard is
the only place a resolved address is trusted.

Usage:
    from integration_gateway.url_security import validate_outbound_url

    # Raises SSRFBlockedError or InvalidURLError if the URL is dangerous
    validate_outbound_url("https://user-configured-endpoint.com/api")
"""

import logging

import httpx

from .address_policy import classify, is_ip_literal

logger = logging.getLogger(__name__)


class SSRFBlockedError(Exception):
    """Raised when a URL is blocked due to SSRF risk."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"SSRF blocked: {reason} (URL: {url})")


class InvalidURLError(ValueError):
    """Raised when a URL cannot be parsed into scheme and hostname."""

    def __init__(self, url: str, reason: str = "malformed URL"):
        self.url = url
        self.reason = reason
        super().__init__(f"Invalid URL: {reason} (URL: {url!r})")


# Allowed URL schemes
ALLOWED_SCHEMES = frozenset(["http", "https"])

# Loopback by name (exact match, case-insensitive)
LOOPBACK_HOSTNAMES = frozenset(["localhost"])

# Cloud metadata endpoints matched by exact name. Other metadata addresses
# are link-local and caught by classify().
METADATA_HOSTNAMES = frozenset(["169.254.169.254", "metadata.google.internal"])


def _parse_url(url: str) -> httpx.URL:
    if not isinstance(url, str):
        reason = f"URL must be a string, not {type(url).__name__}"
        raise InvalidURLError(url, reason)
    if not url.strip():
        raise InvalidURLError(url, "URL cannot be empty")
    try:
        parsed = httpx.URL(url.strip())
    except (httpx.InvalidURL, TypeError) as e:
        raise InvalidURLError(url, str(e)) from e
    if not parsed.scheme:
        raise InvalidURLError(url, "URL must have a scheme")
    return parsed


def _block(url: str, reason: str) -> SSRFBlockedError:
    logger.warning(f"SSRF: Blocked URL {url}: {reason}")
    return SSRFBlockedError(url, reason)


def validate_outbound_url(url: str) -> str:
    """
    Validate a URL for safe outbound HTTP requests.

    Pure string/address checks only: no DNS resolution, no caching, no side
    effects beyond logging. Calling it twice on the same URL gives the same
    result both times.

    Args:
        url: The URL to validate

    Returns:
        The original URL if validation passes

    Raises:
        InvalidURLError: If the URL is empty, malformed, or has no hostname
        SSRFBlockedError: If the scheme or host is disallowed
    """
    parsed = _parse_url(url)

    scheme = parsed.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        raise _block(url, f"unsupported protocol {scheme}:")

    hostname = (parsed.host or "").lower().rstrip(".")
    if not hostname:
        raise InvalidURLError(url, "URL must have a hostname")

    if hostname in LOOPBACK_HOSTNAMES:
        raise _block(url, "localhost URLs are not allowed")

    if hostname in METADATA_HOSTNAMES:
        raise _block(url, "cloud metadata endpoints are not allowed")

    if is_ip_literal(hostname):
        verdict = classify(hostname)
        if verdict.blocked:
            raise _block(url, verdict.reason)

    logger.debug(f"SSRF: URL validated as safe: {url}")
    return url


def is_url_safe(url: str) -> bool:
    """
    Check if a URL is safe for outbound requests without raising exceptions.

    Args:
        url: The URL to check

    Returns:
        True if URL is safe, False otherwise
    """
    try:
        validate_outbound_url(url)
        return True
    except (SSRFBlockedError, InvalidURLError):
        return False
