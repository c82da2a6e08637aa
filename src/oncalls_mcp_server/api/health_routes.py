from typing import Annotated

from fastapi import APIRouter, Depends, Request

from .dependencies import get_registry, get_settings
from ..config import Settings
from ..core.urls import server_url
from ..transport.channels import ChannelRegistry
from ..transport.server import SERVER_NAME, SERVER_VERSION

router = APIRouter(tags=["health"])


@router.get("/health")
def health(
    settings: Annotated[Settings, Depends(get_settings)],
    registry: Annotated[ChannelRegistry, Depends(get_registry)],
):
    return {
        "status": "ok",
        "server": SERVER_NAME,
        "version": SERVER_VERSION,
        "upstream_configured": bool(settings.api_base_url),
        "active_sessions": len(registry),
    }


@router.get("/")
def service_info(request: Request, settings: Annotated[Settings, Depends(get_settings)]):
    base = server_url(request)
    return {
        "name": SERVER_NAME,
        "version": SERVER_VERSION,
        "description": "OnCalls physician scheduling exposed as Model Context Protocol tools",
        "endpoints": {
            "streamable_http": f"{base}/mcp",
            "sse": f"{base}/sse",
            "message": f"{base}/message",
            "health": f"{base}/health",
            "oauth_start": f"{base}/oauth/start",
            "protected_resource_metadata": f"{base}/.well-known/oauth-protected-resource",
        },
        "authentication": [
            "Authorization: Bearer <OAuth access token>",
            "Authorization: Bearer <base64 username:password>",
            "X-Username / X-Password headers",
            "?username=&password= query parameters",
            "?access_token= query parameter",
        ],
        "scopes": settings.scopes,
    }
