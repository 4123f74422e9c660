"""
Gateway Settings
================

Environment-driven configuration for the outbound integration gateway.

Configuration (Environment Variables):
- INTEGRATION_GATEWAY_TIMEOUT_MS: Default absolute timeout for a per-call client
  in milliseconds (default: 30000)
- INTEGRATION_GATEWAY_DNS_TIMEOUT: Timeout in seconds for connect-time name
  resolution (default: 5.0)
- INTEGRATION_GATEWAY_MAX_CONNECTIONS: Connection limit of one per-call client
  (default: 10)
- INTEGRATION_GATEWAY_MAX_KEEPALIVE: Keep-alive connection limit of one per-call
  client (default: 5)
- INTEGRATION_GATEWAY_MAX_REDIRECTS: Hop limit for fetch_following_redirects()
  (default: 5)

Settings are loaded once and cached. Tests that patch the environment must call
clear_settings_cache() afterwards.

Usage:
    from integration_gateway.settings import get_settings

    timeout_ms = get_settings().default_timeout_ms
"""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30000
DEFAULT_DNS_TIMEOUT = 5.0
DEFAULT_MAX_CONNECTIONS = 10
DEFAULT_MAX_KEEPALIVE = 5
DEFAULT_MAX_REDIRECTS = 5


@dataclass(frozen=True)
class GatewaySettings:
    """Immutable snapshot of the gateway configuration."""

    default_timeout_ms: int = DEFAULT_TIMEOUT_MS
    dns_timeout: float = DEFAULT_DNS_TIMEOUT
    max_connections: int = DEFAULT_MAX_CONNECTIONS
    max_keepalive: int = DEFAULT_MAX_KEEPALIVE
    max_redirects: int = DEFAULT_MAX_REDIRECTS


def _positive_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}: {raw!r}, using {default}")
        return default
    if value <= 0:
        logger.warning(f"Non-positive value for {name}: {value}, using {default}")
        return default
    return value


def _positive_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Invalid number for {name}: {raw!r}, using {default}")
        return default
    if value <= 0:
        logger.warning(f"Non-positive value for {name}: {value}, using {default}")
        return default
    return value


@lru_cache(maxsize=1)
def get_settings() -> GatewaySettings:
    """
    Load gateway settings from environment variables.

    Invalid or non-positive values fall back to their defaults.

    Returns:
        Cached GatewaySettings instance.
    """
    settings = GatewaySettings(
        default_timeout_ms=_positive_int(
            "INTEGRATION_GATEWAY_TIMEOUT_MS", DEFAULT_TIMEOUT_MS
        ),
        dns_timeout=_positive_float(
            "INTEGRATION_GATEWAY_DNS_TIMEOUT", DEFAULT_DNS_TIMEOUT
        ),
        max_connections=_positive_int(
            "INTEGRATION_GATEWAY_MAX_CONNECTIONS", DEFAULT_MAX_CONNECTIONS
        ),
        max_keepalive=_positive_int(
            "INTEGRATION_GATEWAY_MAX_KEEPALIVE", DEFAULT_MAX_KEEPALIVE
        ),
        max_redirects=_positive_int(
            "INTEGRATION_GATEWAY_MAX_REDIRECTS", DEFAULT_MAX_REDIRECTS
        ),
    )
    logger.debug(f"Gateway settings loaded: {settings}")
    return settings


def clear_settings_cache() -> None:
    """Clear the cached settings. Useful for testing."""
    get_settings.cache_clear()
