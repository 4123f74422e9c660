"""
Connector Contract
==================

The interface every vendor integration implements, plus the plain data types
and free helper functions connectors share.

A connector has exactly two operations:

    test_connection(config) -> ConnectionTestResult
    sync(config)            -> SyncResult

Connectors never construct HTTP clients themselves. They call
integration_gateway.client_factory.create_client() with the administrator's
base URL and use the verb helpers in integration_gateway.outbound, so every
call they make is validated statically and at connect time.

Usage:
    from integration_gateway.connectors.base import (
        Connector,
        ConnectorConfig,
        ConnectionTestResult,
        SyncResult,
    )

    class MyConnector(Connector):
        name = "my-vendor"

        async def test_connection(self, config: ConnectorConfig) -> ConnectionTestResult:
            ...

        async def sync(self, config: ConnectorConfig) -> SyncResult:
            ...
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

# Recognised configuration keys, keyed by their camelCase wire names.
_CONFIG_FIELDS = {
    "baseUrl": "base_url",
    "apiKey": "api_key",
    "apiToken": "api_token",
    "username": "username",
    "password": "password",
    "organization": "organization",
    "timeoutMs": "timeout_ms",
    "timeout": "timeout_ms",
}

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


@dataclass(frozen=True)
class ConnectorConfig:
    """
    Connection parameters supplied by an organization administrator.

    Every field is optional; each connector decides which ones it needs.
    Vendor-specific keys (for example a Lansweeper site URL) land in extra
    under their snake_case name.
    """

    base_url: str | None = None
    api_key: str | None = None
    api_token: str | None = None
    username: str | None = None
    password: str | None = None
    organization: str | None = None
    timeout_ms: int | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ConnectorConfig:
        """Build a config from camelCase or snake_case keys."""
        known: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        snake_fields = set(_CONFIG_FIELDS.values())
        for key, value in data.items():
            if key in _CONFIG_FIELDS:
                known[_CONFIG_FIELDS[key]] = value
            elif key in snake_fields:
                known[key] = value
            else:
                extra[_to_snake(key)] = value

        timeout = known.get("timeout_ms")
        if timeout is not None:
            try:
                known["timeout_ms"] = int(timeout)
            except (TypeError, ValueError):
                known["timeout_ms"] = None
        return cls(**known, extra=extra)

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a vendor-specific setting from extra."""
        return self.extra.get(key, default)


@dataclass(frozen=True)
class ConnectionTestResult:
    """Result of a connector's connection test, shown to the administrator."""

    success: bool
    message: str
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class Collection:
    """One named collection of synced entities."""

    total: int
    items: list[Any]
    counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"total": self.total, **self.counts, "items": self.items}


@dataclass
class SyncResult:
    """
    Result of a connector sync.

    to_dict() flattens the collections next to collectedAt and errors, the
    shape the rest of the backend stores.
    """

    collected_at: str
    errors: list[str] = field(default_factory=list)
    collections: dict[str, Collection] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            name: collection.to_dict() for name, collection in self.collections.items()
        }
        result["collectedAt"] = self.collected_at
        result["errors"] = list(self.errors)
        return result


class Connector(ABC):
    """
    Interface for vendor integrations.

    Implementations must not raise from either operation: configuration and
    network problems are reported through the returned result.
    """

    name: str = ""
    """Registry key, e.g. "snipeit"."""

    collections: tuple[str, ...] = ()

    @abstractmethod
    async def test_connection(self, config: ConnectorConfig) -> ConnectionTestResult:
        """Check that the configured credentials reach the vendor API."""

    @abstractmethod
    async def sync(self, config: ConnectorConfig) -> SyncResult:
        """Collect entities from the vendor API."""


# ---------------------------------------------------------------------------
# Free helpers
# ---------------------------------------------------------------------------


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def success_result(
    message: str, details: dict[str, Any] | None = None
) -> ConnectionTestResult:
    return ConnectionTestResult(success=True, message=message, details=details)


def failure_result(
    message: str, details: dict[str, Any] | None = None
) -> ConnectionTestResult:
    return ConnectionTestResult(success=False, message=message, details=details)


def empty_sync_result(
    errors: list[str], collection_names: tuple[str, ...] = ()
) -> SyncResult:
    """A sync result with empty collections, used when a sync cannot start."""
    return SyncResult(
        collected_at=utc_now_iso(),
        errors=list(errors),
        collections={name: to_collection([]) for name in collection_names},
    )


def to_collection(items: list[Any], **counts: int) -> Collection:
    return Collection(total=len(items), items=list(items), counts=dict(counts))


def bearer_headers(
    token: str | None, extra: Mapping[str, str] | None = None
) -> dict[str, str]:
    """JSON request headers with a bearer Authorization header."""
    headers = {
        "Authorization": f"Bearer {token or ''}",
        "Content-Type": "application/json",
        "Accept": "application/json",
    }
    headers.update(extra or {})
    return headers
