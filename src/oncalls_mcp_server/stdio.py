"""
Single-user stdio transport.

The MCP client launches this process and exchanges newline-delimited
JSON-RPC messages over stdin/stdout through the SDK's stdio transport. One
UpstreamSession, authenticated with the configured username and password
before the first message is read, serves the whole process lifetime. stdout
carries protocol traffic only; logs go to stderr.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Tuple

import httpx
from mcp.server.stdio import stdio_server

from .auth.models import AuthMethod, PasswordCredentials
from .config import Settings
from .core.errors import ConfigurationError
from .oncalls.client import UpstreamSession
from .transport.server import build_server

logger = logging.getLogger("mcp.stdio")


def session_from_settings(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> UpstreamSession:
    """
    Build the process-wide session. Missing configuration is fatal here,
    unlike HTTP mode.
    """
    missing = [
        name for name, value in (
            ("ONCALLS_BASE_URL", settings.api_base_url),
            ("ONCALLS_USERNAME", settings.oncalls_username),
            ("ONCALLS_PASSWORD", settings.oncalls_password),
        )
        if not value
    ]
    if missing:
        raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")

    credentials = PasswordCredentials(
        username=settings.oncalls_username,
        password=settings.oncalls_password.get_secret_value(),
        method=AuthMethod.CREDENTIAL_HEADERS,
    )
    return UpstreamSession.with_password(
        settings.api_base_url,
        credentials,
        timeout=settings.http_timeout_seconds,
        transport=transport,
    )


async def serve_stdio(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    streams: Optional[Tuple[Any, Any]] = None,
) -> None:
    """
    Authenticate, then serve MCP until the input stream closes.

    Parameters
    ----------
    streams : Optional[Tuple[Any, Any]]
        ``(read_stream, write_stream)`` pair to serve instead of stdin/stdout.

    Raises
    ------
    ConfigurationError
        Base URL or credentials are missing.
    AuthenticationError
        The configured credentials were rejected.
    """
    session = session_from_settings(settings, transport)

    logger.info("Authenticating with OnCalls API...")
    await session.authenticate()
    logger.info("Authentication successful")

    server = build_server(session)
    options = server.create_initialization_options()

    try:
        if streams is not None:
            read_stream, write_stream = streams
            await server.run(read_stream, write_stream, options)
        else:
            async with stdio_server() as (read_stream, write_stream):
                await server.run(read_stream, write_stream, options)
    finally:
        session.close()
        logger.info("stdin closed, shutting down")
