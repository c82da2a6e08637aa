"""
Public URL helpers.

The externally visible server URL is configured explicitly when the server
runs behind a proxy; otherwise it is taken from the incoming request.
"""

from __future__ import annotations

from fastapi import Request


def server_url(request: Request) -> str:
    configured = getattr(request.app.state.settings, "mcp_server_url", None)
    if configured:
        return configured.rstrip("/")
    return str(request.base_url).rstrip("/")


def resource_metadata_url(request: Request) -> str:
    return f"{server_url(request)}/.well-known/oauth-protected-resource"
