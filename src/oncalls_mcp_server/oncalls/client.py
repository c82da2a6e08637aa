"""
OnCalls API Client

One `UpstreamSession` is one authenticated view onto the OnCalls REST API. It
is created per inbound connection (once per process in stdio mode), owns
exactly one TokenStore and one Identity, and is never shared between
connections, even for the same human user.

Construction paths
------------------
- Password grant: ``UpstreamSession.with_password(...)`` followed by
  ``authenticate()``. The login endpoint signals success through a boolean
  ``status`` field, so a 2xx response with ``status != true`` is a failure.
- OAuth token: ``await UpstreamSession.from_oauth_token(...)`` seeds the
  TokenStore directly and derives the Identity from the issuer's userinfo
  endpoint. There is no fallback identity.

Refresh policy
--------------
Refreshing yields an explicit `RefreshResult`. Password sessions treat every
refresh failure as RECOVERABLE and fall back to a full login; OAuth sessions
treat every refresh failure as TERMINAL because the adapter never held the
credentials a login would need.
"""

from __future__ import annotations

import hmac
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from ..auth.jwt_utils import seconds_until_expiry
from ..auth.models import Credentials, Identity, PasswordCredentials, TokenResponse
from ..auth.tokens import DEFAULT_TTL_SECONDS, TokenStore
from ..core.errors import (
    AuthenticationError,
    OAuthFlowError,
    OAuthSessionExpiredError,
    UpstreamRequestError,
)

logger = logging.getLogger("mcp.upstream")

OAuthRefresher = Callable[[str], Awaitable[TokenResponse]]


class RefreshOutcome(str, Enum):
    REFRESHED = "refreshed"
    RECOVERABLE = "recoverable"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class RefreshResult:
    outcome: RefreshOutcome
    reason: str = ""


def default_userinfo_url(base_url: str) -> str:
    """OnCalls serves userinfo at the site root, beside (not under) /api."""
    root = base_url.rstrip("/")
    if root.endswith("/api"):
        root = root[: -len("/api")]
    return root + "/oauth/userinfo"


def _same_secret(presented: str, expected: Optional[str]) -> bool:
    if not expected:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        data = None

    if isinstance(data, dict):
        message = data.get("message") or data.get("error")
        if message:
            return str(message)

    return f"HTTP {resp.status_code}: {resp.reason_phrase}"


class UpstreamSession:

    def __init__(
        self,
        base_url: str,
        *,
        credentials: Optional[PasswordCredentials] = None,
        oauth_refresher: Optional[OAuthRefresher] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.tokens = TokenStore(clock=clock)
        self._credentials = credentials
        self._oauth_refresher = oauth_refresher
        self._timeout = timeout
        self._transport = transport
        self._identity: Optional[Identity] = None
        self._presented_token: Optional[str] = None
        self._closed = False

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def with_password(
        cls,
        base_url: str,
        credentials: PasswordCredentials,
        **kwargs: Any,
    ) -> "UpstreamSession":
        return cls(base_url, credentials=credentials, **kwargs)

    @classmethod
    async def from_oauth_token(
        cls,
        base_url: str,
        access_token: str,
        *,
        refresh_token: Optional[str] = None,
        expires_in: Optional[int] = None,
        userinfo_url: Optional[str] = None,
        oauth_refresher: Optional[OAuthRefresher] = None,
        **kwargs: Any,
    ) -> "UpstreamSession":
        """
        Build a session from an already-issued OAuth access token.

        Raises
        ------
        AuthenticationError
            If the userinfo lookup fails; the session is not created.
        """
        session = cls(base_url, oauth_refresher=oauth_refresher, **kwargs)

        ttl = expires_in
        if ttl is None:
            ttl = seconds_until_expiry(access_token)
        if ttl is None:
            ttl = DEFAULT_TTL_SECONDS
        session.tokens.set(access_token, refresh_token, ttl)
        session._presented_token = access_token

        await session._load_userinfo(userinfo_url or default_userinfo_url(base_url))
        return session

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def is_oauth(self) -> bool:
        return self._credentials is None

    @property
    def identity(self) -> Identity:
        if self._identity is None:
            raise AuthenticationError("Not authenticated. Call authenticate() first.")
        return self._identity

    @property
    def is_authenticated(self) -> bool:
        return self._identity is not None and self.tokens.has_tokens()

    def accepts(self, credential: Credentials) -> bool:
        """
        Whether ``credential`` is the one this session was established with:
        the same username and password, or the bearer token it was opened
        with (or has since been refreshed to).
        """
        if self._closed:
            return False

        if isinstance(credential, PasswordCredentials):
            creds = self._credentials
            return (
                creds is not None
                and creds.username == credential.username
                and _same_secret(credential.password, creds.password)
            )

        return self.is_oauth and (
            _same_secret(credential.access_token, self._presented_token)
            or _same_secret(credential.access_token, self.tokens.access_token)
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def authenticate(self) -> None:
        """Password grant against ``POST /login``."""
        if self._credentials is None:
            raise OAuthSessionExpiredError()

        creds = self._credentials
        try:
            async with self._client() as client:
                resp = await client.post(
                    f"{self.base_url}/login",
                    json={"username": creds.username, "password": creds.password},
                )
        except httpx.HTTPError as exc:
            raise AuthenticationError(f"Authentication failed: {exc}") from exc

        if not resp.is_success:
            raise AuthenticationError(f"Authentication failed: {_error_message(resp)}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise AuthenticationError("Authentication failed: invalid login response") from exc

        # OnCalls reports success as a boolean, independently of the HTTP status.
        if not isinstance(data, dict) or data.get("status") is not True:
            message = data.get("message") if isinstance(data, dict) else None
            raise AuthenticationError(f"Authentication failed: {message or 'Unknown error'}")

        token = data.get("token")
        if not token:
            raise AuthenticationError("Authentication failed: login response carried no token")

        self.tokens.set(token, data.get("refresh_token"))

        if self._identity is None:
            try:
                self._identity = Identity.from_login_payload(creds.username, data.get("data") or {})
            except (KeyError, TypeError, ValueError) as exc:
                self.tokens.clear()
                raise AuthenticationError("Authentication failed: incomplete user profile") from exc

            logger.info(
                "Authenticated as %s (group=%s, admin=%s)",
                self._identity.display_name,
                self._identity.group_id,
                self._identity.is_admin,
            )

    async def _load_userinfo(self, userinfo_url: str) -> None:
        try:
            async with self._client() as client:
                resp = await client.get(
                    userinfo_url,
                    headers={"Authorization": f"Bearer {self.tokens.access_token}"},
                )
        except httpx.HTTPError as exc:
            raise AuthenticationError(f"Failed to get user info: {exc}") from exc

        if not resp.is_success:
            raise AuthenticationError(f"Failed to get user info: {resp.status_code}")

        try:
            self._identity = Identity.from_userinfo(resp.json())
        except (KeyError, TypeError, ValueError) as exc:
            raise AuthenticationError("Failed to get user info: unexpected payload") from exc

        logger.info(
            "Authenticated via OAuth as %s (group=%s, admin=%s)",
            self._identity.display_name,
            self._identity.group_id,
            self._identity.is_admin,
        )

    async def ensure_authenticated(self) -> None:
        if self._closed:
            raise AuthenticationError("Session has been closed.")

        if not self.tokens.has_tokens():
            if self.is_oauth:
                raise OAuthSessionExpiredError()
            await self.authenticate()
            return

        if not self.tokens.needs_refresh():
            return

        result = await self._refresh()

        if result.outcome is RefreshOutcome.REFRESHED:
            return

        if result.outcome is RefreshOutcome.RECOVERABLE:
            logger.warning("Token refresh failed (%s), re-authenticating", result.reason)
            await self.authenticate()
            return

        logger.warning("OAuth refresh failed (%s), session expired", result.reason)
        self.tokens.clear()
        raise OAuthSessionExpiredError()

    async def _refresh(self) -> RefreshResult:
        if self.is_oauth:
            return await self._refresh_oauth()
        return await self._refresh_password()

    async def _refresh_password(self) -> RefreshResult:
        refresh_token = self.tokens.refresh_token
        if not refresh_token:
            return RefreshResult(RefreshOutcome.RECOVERABLE, "no refresh token")

        try:
            async with self._client() as client:
                resp = await client.post(
                    f"{self.base_url}/refresh",
                    headers={"Authorization": f"Bearer {refresh_token}"},
                )
        except httpx.HTTPError as exc:
            return RefreshResult(RefreshOutcome.RECOVERABLE, f"refresh error: {exc}")

        if not resp.is_success:
            return RefreshResult(RefreshOutcome.RECOVERABLE, f"HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError:
            return RefreshResult(RefreshOutcome.RECOVERABLE, "invalid refresh response")

        # Both response shapes exist in the wild.
        new_token = (data.get("access_token") or data.get("token")) if isinstance(data, dict) else None
        if not new_token:
            return RefreshResult(RefreshOutcome.RECOVERABLE, "refresh returned no token")

        self.tokens.update_access(new_token)
        logger.debug("Access token refreshed")
        return RefreshResult(RefreshOutcome.REFRESHED)

    async def _refresh_oauth(self) -> RefreshResult:
        refresh_token = self.tokens.refresh_token
        if not refresh_token:
            return RefreshResult(RefreshOutcome.TERMINAL, "no refresh token")
        if self._oauth_refresher is None:
            return RefreshResult(RefreshOutcome.TERMINAL, "OAuth refresh not configured")

        try:
            token = await self._oauth_refresher(refresh_token)
        except OAuthFlowError as exc:
            return RefreshResult(RefreshOutcome.TERMINAL, str(exc))

        self.tokens.set(
            token.access_token,
            token.refresh_token or refresh_token,
            token.expires_in or DEFAULT_TTL_SECONDS,
        )
        logger.debug("OAuth access token refreshed")
        return RefreshResult(RefreshOutcome.REFRESHED)

    # ------------------------------------------------------------------
    # Authenticated requests
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        await self.ensure_authenticated()

        headers = {"Authorization": f"Bearer {self.tokens.access_token}"}
        try:
            async with self._client() as client:
                resp = await client.request(
                    method,
                    f"{self.base_url}{path}",
                    params=params,
                    json=body,
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            raise UpstreamRequestError(f"API request failed: {exc}") from exc

        if not resp.is_success:
            message = _error_message(resp)
            raise UpstreamRequestError(f"API request failed: {message}", status_code=resp.status_code)

        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamRequestError("API request failed: response was not JSON") from exc

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        query = None
        if params:
            query = {
                key: (str(value).lower() if isinstance(value, bool) else value)
                for key, value in params.items()
                if value is not None
            }
        return await self._request("GET", path, params=query)

    async def post(self, path: str, body: Dict[str, Any]) -> Any:
        return await self._request("POST", path, body=body)

    async def put(self, path: str, body: Dict[str, Any]) -> Any:
        return await self._request("PUT", path, body=body)

    def close(self) -> None:
        """Discard all credential material. The session cannot be reused."""
        self._closed = True
        self.tokens.clear()
