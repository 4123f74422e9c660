"""
Integration Control-Plane Routes
================================

HTTP surface for running connectors on behalf of an organization
administrator:

- GET  /integrations/connectors                  registered connector names
- POST /integrations/{connector}/test-connection check credentials
- POST /integrations/{connector}/sync            collect entities
- GET  /_health/live                             liveness probe (no auth)

The request body of test-connection and sync is the connector configuration
(camelCase or snake_case keys). A wrongly typed field is refused with 422 by
request validation; a base URL that fails the outbound gatekeeper is refused
up front with 400 before any connector code runs.

Error detail shape: {"error": <code>, "message": <text>, "request_id": <id>}
    ssrf_blocked       400
    invalid_url        400
    unknown_connector  404
    internal_error     500 (message sanitized)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .auth import (
    admin_api_key_auth,
    create_admin_error_response,
    get_request_id,
    sanitize_error_response,
)
from .connectors import Connector, ConnectorConfig, get_connector, list_connectors
from .url_security import InvalidURLError, SSRFBlockedError, validate_outbound_url

logger = logging.getLogger(__name__)

health_router = APIRouter(tags=["health"])

integrations_router = APIRouter(
    prefix="/integrations",
    tags=["integrations"],
    dependencies=[Depends(admin_api_key_auth)],
)

__all__ = ["ConnectorConfigRequest", "health_router", "integrations_router"]


# =============================================================================
# Pydantic Models
# =============================================================================


class ConnectorConfigRequest(BaseModel):
    """
    Request body of test-connection and sync.

    Known fields accept camelCase or snake_case names. Any other key is kept
    and handed to the connector as a vendor-specific setting.
    """

    model_config = ConfigDict(extra="allow")

    base_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("baseUrl", "base_url")
    )
    api_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("apiKey", "api_key")
    )
    api_token: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("apiToken", "api_token")
    )
    username: Optional[str] = None
    password: Optional[str] = None
    organization: Optional[str] = None
    timeout_ms: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("timeoutMs", "timeout_ms", "timeout"),
    )

    def to_connector_config(self) -> ConnectorConfig:
        return ConnectorConfig.from_mapping(self.model_dump(exclude_none=True))


@health_router.get("/_health/live")
async def liveness_probe():
    """Liveness probe. Checks nothing beyond the process answering."""
    return {"status": "alive", "service": "integration-gateway"}


# =============================================================================
# Helpers
# =============================================================================


def _resolve_connector(name: str) -> Connector:
    try:
        return get_connector(name)
    except KeyError:
        raise create_admin_error_response(
            404, "unknown_connector", f"Connector '{name}' is not registered"
        ) from None


def _load_config(body: Optional[ConnectorConfigRequest]) -> ConnectorConfig:
    """
    Build the connector config and pre-check its base URL.

    Raises:
        HTTPException 400: base URL is malformed or targets a blocked address
    """
    config = (body or ConnectorConfigRequest()).to_connector_config()
    if config.base_url:
        try:
            validate_outbound_url(config.base_url)
        except SSRFBlockedError as e:
            raise create_admin_error_response(
                400,
                "ssrf_blocked",
                f"Base URL blocked for security reasons: {e.reason}",
            ) from None
        except InvalidURLError as e:
            raise create_admin_error_response(
                400, "invalid_url", f"Invalid base URL: {e.reason}"
            ) from None
    return config


# =============================================================================
# Integration endpoints (admin auth)
# =============================================================================


@integrations_router.get("/connectors")
async def connectors_list():
    """List the names of all registered connectors."""
    return {"connectors": list_connectors()}


@integrations_router.post("/{connector_name}/test-connection")
async def connector_test_connection(
    connector_name: str, body: Optional[ConnectorConfigRequest] = None
):
    """
    Check that the supplied configuration reaches the vendor API.

    A failed check is still a 200 response with success=false; only request
    problems (unknown connector, blocked base URL) are HTTP errors.
    """
    connector = _resolve_connector(connector_name)
    config = _load_config(body)
    try:
        result = await connector.test_connection(config)
    except Exception as e:
        raise HTTPException(
            status_code=500, detail=sanitize_error_response(e, get_request_id())
        ) from None

    logger.info(
        f"Connection test for '{connector_name}': "
        f"{'ok' if result.success else 'failed'} ({result.message})",
        extra={"request_id": get_request_id(), "connector": connector_name},
    )
    return result.to_dict()


@integrations_router.post("/{connector_name}/sync")
async def connector_sync(
    connector_name: str, body: Optional[ConnectorConfigRequest] = None
):
    """Collect entities from the vendor API. Per-endpoint errors land in errors."""
    connector = _resolve_connector(connector_name)
    config = _load_config(body)
    try:
        result = await connector.sync(config)
    except Exception as e:
        raise HTTPException(
            status_code=500, detail=sanitize_error_response(e, get_request_id())
        ) from None

    logger.info(
        f"Sync for '{connector_name}' finished with {len(result.errors)} error(s)",
        extra={"request_id": get_request_id(), "connector": connector_name},
    )
    return result.to_dict()
