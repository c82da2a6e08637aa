"""
MCP Server Application Entry Point

This module defines the FastAPI application instance, registers all routers,
configures global exception handling, and provides a test-friendly application
factory.

Process-wide state
------------------
Each application owns exactly three long-lived objects, stored on
``app.state``:

- ``registry``: the `ChannelRegistry` of live MCP connections
- ``oauth_bridge``: the `OAuthBridge` and its pending-state store
- ``auth_resolver``: the `AuthResolver` turning request credentials into
  upstream sessions

A maintenance task started with the application sweeps expired OAuth state
entries and idle streamable HTTP sessions; shutdown closes every channel.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx
from fastapi import FastAPI

from .auth.oauth import OAuthBridge
from .auth.resolver import AuthResolver
from .config import Settings, settings as default_settings
from .core.errors import (
    AuthenticationError,
    ConfigurationError,
    OAuthFlowError,
    TransportError,
    authentication_exception_handler,
    configuration_exception_handler,
    oauth_flow_exception_handler,
    transport_exception_handler,
    unhandled_exception_handler,
)
from .transport.channels import ChannelRegistry
from .transport.server import SERVER_NAME, SERVER_VERSION

from .api import (
    health_routes,
    mcp_routes,
    oauth_routes,
    wellknown_routes,
)


logger = logging.getLogger("mcp.app")

# Streamable HTTP sessions have no connection to watch, so idle ones expire.
STREAMABLE_SESSION_IDLE_SECONDS = 3600.0


async def _maintenance_loop(app: FastAPI, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        expired_states = app.state.oauth_bridge.states.sweep()
        idle_sessions = app.state.registry.sweep_idle(STREAMABLE_SESSION_IDLE_SECONDS)
        if expired_states or idle_sessions:
            logger.debug(
                "Maintenance: dropped %d expired OAuth states, %d idle sessions",
                expired_states,
                idle_sessions,
            )


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_app(
    settings: Optional[Settings] = None,
    upstream_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Parameters
    ----------
    settings : Optional[Settings]
        Configuration to use; defaults to the environment-derived settings.
    upstream_transport : Optional[httpx.AsyncBaseTransport]
        Transport for every outbound HTTP call (OnCalls API and OAuth
        issuer). Tests pass an ``httpx.MockTransport`` here.

    Returns
    -------
    FastAPI
        Fully configured FastAPI application.
    """
    if settings is None:
        settings = default_settings

    app = FastAPI(
        title=SERVER_NAME,
        version=SERVER_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    oauth_bridge = OAuthBridge.from_settings(settings, transport=upstream_transport)

    app.state.settings = settings
    app.state.registry = ChannelRegistry()
    app.state.oauth_bridge = oauth_bridge
    app.state.auth_resolver = AuthResolver(settings, oauth_bridge=oauth_bridge, transport=upstream_transport)

    # --------------------------------------------------------------
    # Global Exception Handling
    # --------------------------------------------------------------

    app.add_exception_handler(AuthenticationError, authentication_exception_handler)
    app.add_exception_handler(TransportError, transport_exception_handler)
    app.add_exception_handler(OAuthFlowError, oauth_flow_exception_handler)
    app.add_exception_handler(ConfigurationError, configuration_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # --------------------------------------------------------------
    # Router Registration
    # --------------------------------------------------------------

    app.include_router(health_routes.router)
    app.include_router(wellknown_routes.router)
    app.include_router(oauth_routes.router)
    app.include_router(mcp_routes.router)

    # --------------------------------------------------------------
    # Startup / Shutdown
    # --------------------------------------------------------------

    @app.on_event("startup")
    async def _startup() -> None:
        logger.info("Starting %s %s", SERVER_NAME, SERVER_VERSION)

        # Health must stay up without upstream configuration.
        if not settings.api_base_url:
            logger.warning("ONCALLS_BASE_URL is not set; MCP endpoints will answer 503")
        else:
            logger.info("OnCalls API: %s", settings.api_base_url)

        if not settings.authorize_url or not settings.oauth_redirect_uri:
            logger.info("OAuth flow disabled: authorize URL or redirect URI not configured")

        app.state.maintenance_task = asyncio.create_task(
            _maintenance_loop(app, settings.OAUTH_STATE_SWEEP_INTERVAL)
        )

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        logger.info("Shutting down %s", SERVER_NAME)

        task = getattr(app.state, "maintenance_task", None)
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await app.state.registry.shutdown()

    return app


# ---------------------------------------------------------------------
# Default Application Instance (for Uvicorn/Gunicorn)
# ---------------------------------------------------------------------

app = create_app()
