"""
IT Asset Management Connectors
==============================

Snipe-IT, Asset Panda and Lansweeper integrations.

Each invocation builds its own client from the administrator's configuration
and closes it when done; nothing is stored on the connector instance, so one
instance can serve concurrent syncs for many organizations.
"""

from __future__ import annotations

import logging
from typing import Any

from .. import outbound
from ..client_factory import OutboundClient, create_client
from ..results import CallOutcome, Failure
from ..url_security import InvalidURLError, SSRFBlockedError
from .base import (
    ConnectionTestResult,
    Connector,
    ConnectorConfig,
    SyncResult,
    bearer_headers,
    empty_sync_result,
    failure_result,
    success_result,
    to_collection,
    utc_now_iso,
)

logger = logging.getLogger(__name__)


def _rows(outcome: CallOutcome, key: str | None, errors: list[str]) -> list[Any]:
    """Extract a list of rows from an outcome, recording failures in errors."""
    if isinstance(outcome, Failure):
        errors.append(outcome.message)
        return []
    payload = outcome.payload
    if key is not None:
        payload = payload.get(key) if isinstance(payload, dict) else None
    return list(payload) if isinstance(payload, list) else []


def _count(payload: Any, key: str, fallback: int = 0) -> int:
    if isinstance(payload, dict):
        value = payload.get(key, fallback)
        return value if isinstance(value, int) else fallback
    if isinstance(payload, list):
        return len(payload)
    return fallback


def _open(config: ConnectorConfig, base_url: str, token: str | None) -> OutboundClient:
    return create_client(base_url, bearer_headers(token), config.timeout_ms)


class SnipeITConnector(Connector):
    """Snipe-IT (self-hosted; base URL supplied by the administrator)."""

    name = "snipeit"
    collections = ("assets", "licenses", "accessories", "users")

    async def test_connection(self, config: ConnectorConfig) -> ConnectionTestResult:
        if not config.base_url:
            return failure_result("Base URL required")
        try:
            client = _open(config, config.base_url, config.api_token)
        except (SSRFBlockedError, InvalidURLError) as e:
            return failure_result(e.reason)

        async with client:
            outcome = await outbound.get(client, "/api/v1/users")
        if isinstance(outcome, Failure):
            return failure_result(outcome.message)
        total = _count(outcome.payload, "total")
        return success_result(
            f"Connected to Snipe-IT. Found {total} users.",
            details={"statusCode": outcome.status_code, "total": total},
        )

    async def sync(self, config: ConnectorConfig) -> SyncResult:
        if not config.base_url:
            return empty_sync_result(["Base URL required"], self.collections)
        try:
            client = _open(config, config.base_url, config.api_token)
        except (SSRFBlockedError, InvalidURLError) as e:
            return empty_sync_result([e.reason], self.collections)

        errors: list[str] = []
        async with client:
            assets = _rows(await outbound.get(client, "/api/v1/hardware"), "rows", errors)
            licenses = _rows(
                await outbound.get(client, "/api/v1/licenses"), "rows", errors
            )
            accessories = _rows(
                await outbound.get(client, "/api/v1/accessories"), "rows", errors
            )
            users = _rows(await outbound.get(client, "/api/v1/users"), "rows", errors)

        def _status(asset: Any) -> str | None:
            label = asset.get("status_label") if isinstance(asset, dict) else None
            return label.get("status") if isinstance(label, dict) else None

        deployed = sum(1 for a in assets if _status(a) == "Deployed")
        pending = sum(1 for a in assets if _status(a) == "Pending")

        return SyncResult(
            collected_at=utc_now_iso(),
            errors=errors,
            collections={
                "assets": to_collection(assets, deployed=deployed, pending=pending),
                "licenses": to_collection(licenses),
                "accessories": to_collection(accessories),
                "users": to_collection(users),
            },
        )


class AssetPandaConnector(Connector):
    """Asset Panda (SaaS; fixed API endpoint)."""

    name = "assetpanda"
    base_url = "https://api.assetpanda.com/v1"
    collections = ("assets", "categories")

    async def test_connection(self, config: ConnectorConfig) -> ConnectionTestResult:
        if not config.api_key:
            return failure_result("API key required")
        async with _open(config, self.base_url, config.api_key) as client:
            outcome = await outbound.get(client, "/assets")
        if isinstance(outcome, Failure):
            return failure_result(outcome.message)
        total = _count(outcome.payload, "total")
        return success_result(
            f"Connected to Asset Panda. Found {total} assets.",
            details={"statusCode": outcome.status_code, "total": total},
        )

    async def sync(self, config: ConnectorConfig) -> SyncResult:
        if not config.api_key:
            return empty_sync_result(["API key required"], self.collections)

        errors: list[str] = []
        async with _open(config, self.base_url, config.api_key) as client:
            assets = _rows(await outbound.get(client, "/assets"), None, errors)
            categories = _rows(await outbound.get(client, "/categories"), None, errors)

        return SyncResult(
            collected_at=utc_now_iso(),
            errors=errors,
            collections={
                "assets": to_collection(assets),
                "categories": to_collection(categories),
            },
        )


class LansweeperConnector(Connector):
    """Lansweeper (per-customer site host supplied as site_url)."""

    name = "lansweeper"
    collections = ("assets", "software", "users")

    @staticmethod
    def _base_url(config: ConnectorConfig) -> str | None:
        site = config.get("site_url")
        if not site:
            return None
        if not isinstance(site, str):
            raise InvalidURLError(site, "site URL must be a string")
        return f"https://{site}/api/v2"

    async def test_connection(self, config: ConnectorConfig) -> ConnectionTestResult:
        try:
            base_url = self._base_url(config)
            if not base_url:
                return failure_result("Site URL required")
            client = _open(config, base_url, config.api_key)
        except (SSRFBlockedError, InvalidURLError) as e:
            return failure_result(e.reason)

        async with client:
            outcome = await outbound.get(client, "/assets")
        if isinstance(outcome, Failure):
            return failure_result(outcome.message)
        total = _count(outcome.payload, "total")
        return success_result(
            f"Connected to Lansweeper. Found {total} assets.",
            details={"statusCode": outcome.status_code, "total": total},
        )

    async def sync(self, config: ConnectorConfig) -> SyncResult:
        try:
            base_url = self._base_url(config)
            if not base_url:
                return empty_sync_result(["Site URL required"], self.collections)
            client = _open(config, base_url, config.api_key)
        except (SSRFBlockedError, InvalidURLError) as e:
            return empty_sync_result([e.reason], self.collections)

        errors: list[str] = []
        async with client:
            assets = _rows(await outbound.get(client, "/assets"), "results", errors)
            software = _rows(await outbound.get(client, "/software"), "results", errors)
            users = _rows(await outbound.get(client, "/users"), "results", errors)

        return SyncResult(
            collected_at=utc_now_iso(),
            errors=errors,
            collections={
                "assets": to_collection(assets),
                "software": to_collection(software),
                "users": to_collection(users),
            },
        )
