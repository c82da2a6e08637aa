"""
OAuth Discovery Metadata

- ``/.well-known/oauth-protected-resource`` (RFC 9728) tells MCP clients which
  authorization server protects this resource. ``authorization_servers`` is a
  list of plain issuer URLs.
- ``/.well-known/oauth-authorization-server`` (RFC 8414) republishes the
  OnCalls issuer's endpoints for clients that look for them on the resource
  host.
"""

from typing import Annotated, Any, Dict

from fastapi import APIRouter, Depends, Request

from .dependencies import get_settings
from ..config import Settings
from ..core.errors import ConfigurationError
from ..core.urls import server_url

router = APIRouter(prefix="/.well-known", tags=["oauth-metadata"])


def _issuer(settings: Settings) -> str:
    issuer = settings.issuer_url
    if not issuer:
        raise ConfigurationError(
            "OAuth issuer is not configured: set OAUTH_ISSUER_URL or ONCALLS_BASE_URL."
        )
    return issuer


def _protected_resource(resource: str, settings: Settings) -> Dict[str, Any]:
    return {
        "resource": resource,
        "authorization_servers": [_issuer(settings)],
        "scopes_supported": settings.scopes,
        "bearer_methods_supported": ["header"],
    }


@router.get("/oauth-protected-resource")
def protected_resource_metadata(request: Request, settings: Annotated[Settings, Depends(get_settings)]):
    return _protected_resource(server_url(request), settings)


@router.get("/oauth-protected-resource/{suffix:path}")
def protected_resource_metadata_with_suffix(
    suffix: str,
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
):
    # Clients may append the resource path, e.g. /.well-known/oauth-protected-resource/sse
    base = server_url(request)
    resource = f"{base}/{suffix.strip('/')}" if suffix.strip("/") else base
    return _protected_resource(resource, settings)


@router.get("/oauth-authorization-server")
def authorization_server_metadata(settings: Annotated[Settings, Depends(get_settings)]):
    issuer = _issuer(settings)
    return {
        "issuer": issuer,
        "authorization_endpoint": settings.authorize_url,
        "token_endpoint": settings.token_url,
        "userinfo_endpoint": settings.userinfo_url,
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "token_endpoint_auth_methods_supported": ["client_secret_post", "none"],
        "code_challenge_methods_supported": ["S256"],
        "scopes_supported": settings.scopes,
    }
