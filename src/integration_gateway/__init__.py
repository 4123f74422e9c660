"""
Integration Gateway
===================

Outbound request safety layer for vendor integrations. Connectors call
administrator-supplied URLs only through clients built here, which:

- refuse non-HTTP schemes, localhost, cloud metadata hosts and private,
  loopback and link-local IP literals before any I/O
- re-check every resolved address when a connection is opened, so DNS
  rebinding cannot reach an internal address
- never follow redirects implicitly
- return a uniform Success/Failure outcome instead of raising

Usage:
    from integration_gateway import create_client, outbound

    async with create_client("https://assets.example.com", headers) as client:
        outcome = await outbound.get(client, "/api/v1/hardware")
"""

__version__ = "0.1.0"

from . import outbound
from .address_policy import Verdict, classify, classify_ipv4, classify_ipv6
from .client_factory import OutboundClient, create_client
from .outbound import fetch_following_redirects
from .resolver_guard import GuardedNetworkBackend, ResolutionBlockedError
from .results import CallOutcome, Failure, Success
from .settings import GatewaySettings, clear_settings_cache, get_settings
from .url_security import (
    InvalidURLError,
    SSRFBlockedError,
    is_url_safe,
    validate_outbound_url,
)

__all__ = [
    "__version__",
    "outbound",
    "Verdict",
    "classify",
    "classify_ipv4",
    "classify_ipv6",
    "OutboundClient",
    "create_client",
    "fetch_following_redirects",
    "GuardedNetworkBackend",
    "ResolutionBlockedError",
    "CallOutcome",
    "Failure",
    "Success",
    "GatewaySettings",
    "clear_settings_cache",
    "get_settings",
    "InvalidURLError",
    "SSRFBlockedError",
    "is_url_safe",
    "validate_outbound_url",
]
