from fastapi import Request

from ..auth.oauth import OAuthBridge
from ..auth.resolver import AuthResolver
from ..config import Settings
from ..transport.channels import ChannelRegistry


# Long-lived objects are created once per app in create_app() and kept on
# app.state, so each test app gets its own registry and bridge.

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_registry(request: Request) -> ChannelRegistry:
    return request.app.state.registry


def get_oauth_bridge(request: Request) -> OAuthBridge:
    return request.app.state.oauth_bridge


def get_auth_resolver(request: Request) -> AuthResolver:
    return request.app.state.auth_resolver
