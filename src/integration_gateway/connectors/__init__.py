"""
Connector Registry
==================

Maps connector names to connector instances. Connectors are stateless, so a
single instance of each is shared.

Usage:
    from integration_gateway.connectors import get_connector

    connector = get_connector("snipeit")
    result = await connector.test_connection(ConnectorConfig.from_mapping(body))
"""

from __future__ import annotations

import logging

from .base import (
    Collection,
    ConnectionTestResult,
    Connector,
    ConnectorConfig,
    SyncResult,
    bearer_headers,
    empty_sync_result,
    failure_result,
    success_result,
    to_collection,
)
from .itam import AssetPandaConnector, LansweeperConnector, SnipeITConnector

logger = logging.getLogger(__name__)

_registry: dict[str, Connector] = {}


def register_connector(connector_cls: type[Connector]) -> type[Connector]:
    """
    Register a connector class under its name. Usable as a class decorator.

    Raises:
        ValueError: If the class has no name or the name is already taken
    """
    name = connector_cls.name
    if not name:
        raise ValueError(f"Connector {connector_cls.__name__} has no name")
    if name in _registry and type(_registry[name]) is not connector_cls:
        raise ValueError(f"Connector name '{name}' is already registered")
    _registry[name] = connector_cls()
    logger.debug(f"Registered connector '{name}' ({connector_cls.__name__})")
    return connector_cls


def get_connector(name: str) -> Connector:
    """
    Look up a registered connector.

    Raises:
        KeyError: If no connector is registered under name
    """
    try:
        return _registry[name]
    except KeyError:
        raise KeyError(f"Unknown connector: {name}") from None


def list_connectors() -> list[str]:
    return sorted(_registry)


for _cls in (SnipeITConnector, AssetPandaConnector, LansweeperConnector):
    register_connector(_cls)

__all__ = [
    "Collection",
    "ConnectionTestResult",
    "Connector",
    "ConnectorConfig",
    "SyncResult",
    "bearer_headers",
    "empty_sync_result",
    "failure_result",
    "success_result",
    "to_collection",
    "AssetPandaConnector",
    "LansweeperConnector",
    "SnipeITConnector",
    "register_connector",
    "get_connector",
    "list_connectors",
]
