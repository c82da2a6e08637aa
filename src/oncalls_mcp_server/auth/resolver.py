"""
Credential Resolution

This module is responsible for:

1. Classifying the credentials carried by an inbound connection request into
   one of five supported conventions, in a fixed precedence order.
2. Turning the winning credential into one authenticated `UpstreamSession`.
3. Minting an opaque session identifier for the new connection.

Precedence (first match wins)
-----------------------------
1. ``Authorization: Bearer <jwt>``            -> OAuth token
2. ``Authorization: Bearer <base64(u:p)>``    -> password grant
3. ``X-Username`` / ``X-Password`` headers     -> password grant
4. ``?username=&password=`` query parameters   -> password grant
5. ``?access_token=`` query parameter          -> OAuth token

Only a failing method 1 falls through to the next candidate, since a bearer
value that merely looks like a JWT may still be a legacy credential. Every
other failure is final.
"""

from __future__ import annotations

import base64
import binascii
import logging
import uuid
from dataclasses import dataclass
from typing import List, Mapping, Optional, Union

import httpx

from .jwt_utils import looks_like_jwt
from .models import AuthMethod, Credentials, OAuthToken, PasswordCredentials, Unrecognized
from .oauth import OAuthBridge
from ..config import Settings
from ..core.errors import AuthenticationError, AuthenticationRequired, ConfigurationError
from ..oncalls.client import UpstreamSession

logger = logging.getLogger("mcp.auth")


USERNAME_HEADERS = ("x-username", "x-oncalls-username")
PASSWORD_HEADERS = ("x-password", "x-oncalls-password")


# ---------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------

def _decode_basic_bearer(token: str) -> Optional[PasswordCredentials]:
    try:
        padded = token + "=" * (-len(token) % 4)
        decoded = base64.b64decode(padded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None

    username, sep, password = decoded.partition(":")
    if not sep or not username or not password:
        return None

    return PasswordCredentials(
        username=username,
        password=password,
        method=AuthMethod.BASIC_BEARER,
    )


def classify_bearer(token: str) -> Union[OAuthToken, PasswordCredentials, Unrecognized]:
    """
    Total classification of one bearer value.

    JWT-shaped values are OAuth tokens; values decoding to ``user:pass`` are
    legacy credentials; anything else is unrecognized.
    """
    token = token.strip()
    if not token:
        return Unrecognized(reason="empty bearer token")

    if looks_like_jwt(token):
        return OAuthToken(access_token=token, method=AuthMethod.OAUTH_BEARER)

    creds = _decode_basic_bearer(token)
    if creds is not None:
        return creds

    return Unrecognized(reason="bearer token is neither a JWT nor base64 credentials")


def _first(mapping: Mapping[str, str], names: tuple) -> Optional[str]:
    for name in names:
        value = mapping.get(name)
        if value:
            return value
    return None


def collect_credentials(
    headers: Mapping[str, str],
    query: Mapping[str, str],
) -> List[Credentials]:
    """
    Return every credential present in the request, in precedence order.
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    candidates: List[Credentials] = []

    auth_header = lowered.get("authorization", "")
    if auth_header[:7].lower() == "bearer ":
        token = auth_header[7:].strip()
        if looks_like_jwt(token):
            candidates.append(OAuthToken(access_token=token, method=AuthMethod.OAUTH_BEARER))
        basic = _decode_basic_bearer(token)
        if basic is not None:
            candidates.append(basic)

    username = _first(lowered, USERNAME_HEADERS)
    password = _first(lowered, PASSWORD_HEADERS)
    if username and password:
        candidates.append(PasswordCredentials(
            username=username,
            password=password,
            method=AuthMethod.CREDENTIAL_HEADERS,
        ))

    if query.get("username") and query.get("password"):
        candidates.append(PasswordCredentials(
            username=query["username"],
            password=query["password"],
            method=AuthMethod.CREDENTIAL_QUERY,
        ))

    if query.get("access_token"):
        candidates.append(OAuthToken(
            access_token=query["access_token"],
            method=AuthMethod.ACCESS_TOKEN_QUERY,
        ))

    return candidates


def require_credentials(
    headers: Mapping[str, str],
    query: Mapping[str, str],
) -> List[Credentials]:
    """
    Like `collect_credentials`, but an empty result is an error.

    Raises
    ------
    AuthenticationRequired
        No supported credential was presented.
    """
    candidates = collect_credentials(headers, query)
    if not candidates:
        raise AuthenticationRequired(
            "Authentication required. Provide an OAuth bearer token or "
            "X-Username and X-Password headers."
        )
    return candidates


# ---------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------

@dataclass
class ResolvedSession:
    session_id: str
    session: UpstreamSession
    method: AuthMethod


class AuthResolver:

    def __init__(
        self,
        settings: Settings,
        oauth_bridge: Optional[OAuthBridge] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._oauth_bridge = oauth_bridge
        self._transport = transport

    async def resolve(
        self,
        headers: Mapping[str, str],
        query: Mapping[str, str],
    ) -> ResolvedSession:
        """
        Produce one authenticated session from the request's credentials.

        Raises
        ------
        AuthenticationRequired
            No supported credential was presented.
        AuthenticationError
            The winning credential was rejected.
        ConfigurationError
            The OnCalls API base URL is not configured.
        """
        candidates = require_credentials(headers, query)

        base_url = self._settings.api_base_url
        if not base_url:
            raise ConfigurationError("Server not configured: ONCALLS_BASE_URL missing")

        last_error = AuthenticationError("Authentication failed: no credential was accepted")
        for credential in candidates:
            try:
                session = await self._open(base_url, credential)
            except AuthenticationError as exc:
                if credential.method is AuthMethod.OAUTH_BEARER:
                    logger.info("OAuth bearer rejected (%s); trying remaining credentials", exc)
                    last_error = exc
                    continue
                raise

            resolved = ResolvedSession(
                session_id=str(uuid.uuid4()),
                session=session,
                method=credential.method,
            )
            logger.info(
                "Authenticated %s via %s (session: %s)",
                session.identity.username,
                credential.method.value,
                resolved.session_id,
            )
            return resolved

        raise last_error

    async def _open(self, base_url: str, credential: Credentials) -> UpstreamSession:
        timeout = self._settings.http_timeout_seconds

        if isinstance(credential, PasswordCredentials):
            session = UpstreamSession.with_password(
                base_url,
                credential,
                timeout=timeout,
                transport=self._transport,
            )
            await session.authenticate()
            return session

        return await UpstreamSession.from_oauth_token(
            base_url,
            credential.access_token,
            userinfo_url=self._settings.userinfo_url,
            oauth_refresher=self._oauth_bridge.refresh if self._oauth_bridge else None,
            timeout=timeout,
            transport=self._transport,
        )
