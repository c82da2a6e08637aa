"""
Error Taxonomy & Global Error Handling

This module defines the exception hierarchy shared by the auth bridge, the
upstream client and the transport layer, together with the FastAPI exception
handlers that turn them into HTTP responses.

Design Goals
------------
- Never leak internal exception details to clients
- Always return deterministic, machine-readable error responses
- Distinguish authentication from authorization from protocol failures
- Log full stack traces internally for debugging
"""

from __future__ import annotations

import logging
from typing import Dict, Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from .urls import resource_metadata_url

logger = logging.getLogger("mcp.errors")


# ---------------------------------------------------------------------
# Exception Hierarchy
# ---------------------------------------------------------------------

class OncallsMcpError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(OncallsMcpError):
    """Required configuration is missing or invalid."""


class AuthenticationError(OncallsMcpError):
    """Credentials were presented but could not be turned into a session."""


class AuthenticationRequired(AuthenticationError):
    """No supported credential was presented at all."""


class OAuthSessionExpiredError(AuthenticationError):
    """An OAuth-backed session can no longer refresh its access token."""

    def __init__(self, message: str = "OAuth session expired. Please re-authenticate.") -> None:
        super().__init__(message)


class PermissionDeniedError(OncallsMcpError):
    """The authenticated identity may not perform the requested operation."""


class UpstreamRequestError(OncallsMcpError):
    """The OnCalls API answered with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class OAuthFlowError(OncallsMcpError):
    """An OAuth authorization or token exchange step failed."""

    def __init__(
        self,
        error: str,
        description: str,
        status_code: int = 400,
        issuer_response: Optional[str] = None,
    ) -> None:
        super().__init__(f"{error}: {description}")
        self.error = error
        self.description = description
        self.status_code = status_code
        self.issuer_response = issuer_response


class TransportError(OncallsMcpError):
    """Base for session/transport protocol failures."""

    code = "malformed_request"
    status_code = 400


class SessionNotFoundError(TransportError):
    code = "session_not_found"
    status_code = 404


class ProtocolMismatchError(TransportError):
    code = "protocol_mismatch"
    status_code = 400


class MalformedRequestError(TransportError):
    code = "malformed_request"
    status_code = 400


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

def _error_payload(error: str, description: str) -> Dict[str, Any]:
    return {"error": error, "error_description": description}


def unauthorized_response(request: Request, error: str, description: str) -> JSONResponse:
    """
    Build the 401 response that points compliant clients at the OAuth
    protected resource metadata so they can start an authorization flow.
    """
    scopes = " ".join(request.app.state.settings.scopes)
    challenge = (
        f'Bearer resource_metadata="{resource_metadata_url(request)}", '
        f'scope="{scopes}"'
    )
    return JSONResponse(
        status_code=401,
        content=_error_payload(error, description),
        headers={"WWW-Authenticate": challenge},
    )


async def authentication_exception_handler(
    request: Request,
    exc: AuthenticationError,
) -> JSONResponse:
    if isinstance(exc, AuthenticationRequired):
        return unauthorized_response(request, "unauthorized", str(exc))

    logger.info(
        "Authentication failed for %s %s: %s",
        request.method,
        request.url.path,
        exc,
    )
    return unauthorized_response(request, "invalid_token", str(exc))


async def transport_exception_handler(
    request: Request,
    exc: TransportError,
) -> JSONResponse:
    logger.info(
        "Rejected %s %s: %s (%s)",
        request.method,
        request.url.path,
        exc.code,
        exc,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_payload(exc.code, str(exc)),
    )


async def oauth_flow_exception_handler(
    request: Request,
    exc: OAuthFlowError,
) -> JSONResponse:
    logger.warning("OAuth flow error on %s: %s", request.url.path, exc)
    payload = _error_payload(exc.error, exc.description)
    if exc.issuer_response is not None:
        payload["issuer_response"] = exc.issuer_response
    return JSONResponse(status_code=exc.status_code, content=payload)


async def configuration_exception_handler(
    request: Request,
    exc: ConfigurationError,
) -> JSONResponse:
    logger.error("Configuration error while serving %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content=_error_payload("server_misconfigured", str(exc)),
    )


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Catch-all handler for uncaught exceptions.

    Behavior
    --------
    - Logs the full exception stack trace for internal diagnostics.
    - Returns a generic 500 error to the client with no internal details.
    """

    # Log full traceback internally (never returned to client)
    logger.exception(
        "Unhandled MCP exception during request: %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )

    payload: Dict[str, Any] = {
        "error": "internal_server_error",
        "detail": "Internal server error",
    }

    return JSONResponse(
        status_code=500,
        content=payload,
    )
