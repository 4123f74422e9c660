"""
Gateway Application Factory
===========================

Composition root for the integration gateway's HTTP surface. All middleware
and routers are wired here and nowhere else.

Load order:
1. RequestIDMiddleware (outermost, so every log line and error carries the ID)
2. Health router (unauthenticated)
3. Integrations router (admin API key auth)

Usage:
    from integration_gateway.app import create_app

    app = create_app()
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from . import __version__
from .auth import RequestIDMiddleware
from .connectors import list_connectors
from .routes import health_router, integrations_router
from .settings import get_settings

logger = logging.getLogger(__name__)


def _configure_middleware(app: FastAPI) -> None:
    app.add_middleware(RequestIDMiddleware)
    logger.debug("Added RequestIDMiddleware")


def _register_routes(app: FastAPI) -> None:
    app.include_router(health_router)
    logger.debug("Registered health_router")

    app.include_router(integrations_router)
    logger.debug("Registered integrations_router")


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()
    logger.info(
        f"Integration gateway starting: connectors={list_connectors()}, "
        f"timeout={settings.default_timeout_ms}ms, "
        f"max_redirects={settings.max_redirects}"
    )
    yield
    logger.info("Integration gateway stopped")


def create_app(*, title: str = "Integration Gateway") -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        title: FastAPI app title

    Returns:
        A new FastAPI application instance
    """
    app = FastAPI(title=title, version=__version__, lifespan=_lifespan)
    _configure_middleware(app)
    _register_routes(app)
    return app
