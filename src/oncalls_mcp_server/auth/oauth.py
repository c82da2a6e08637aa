"""
OAuth Bridge

Lets a remote assistant complete an authorization-code flow against the
OnCalls issuer without the adapter ever seeing end-user credentials.

State handling
--------------
Each flow gets a random CSRF state token. The pending entry is single-use
(deleted on the matching callback) and expires after a fixed TTL; a periodic
sweep purges entries for flows abandoned mid-login. The entry also carries
the PKCE code verifier for the flow.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import time
from dataclasses import dataclass
from threading import RLock
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import httpx

from .models import TokenResponse
from ..core.errors import ConfigurationError, OAuthFlowError

logger = logging.getLogger("mcp.oauth")


# ---------------------------------------------------------------------
# PKCE
# ---------------------------------------------------------------------

def generate_code_verifier() -> str:
    return secrets.token_urlsafe(64)[:128]


def compute_code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


# ---------------------------------------------------------------------
# CSRF state store
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class PendingAuthorization:
    state: str
    created_at: float
    redirect_to: Optional[str]
    code_verifier: str


class StateStore:
    """
    In-memory registry of pending authorization flows keyed by state token.

    Entries are inserted and removed in single synchronous steps, so they are
    safe to touch from request handlers and from the sweep task alike.
    """

    def __init__(self, ttl_seconds: float = 600, clock: Callable[[], float] = time.time) -> None:
        self._entries: Dict[str, PendingAuthorization] = {}
        self._lock = RLock()
        self._ttl = ttl_seconds
        self._clock = clock

    def create(self, redirect_to: Optional[str] = None) -> PendingAuthorization:
        entry = PendingAuthorization(
            state=secrets.token_urlsafe(32),
            created_at=self._clock(),
            redirect_to=redirect_to,
            code_verifier=generate_code_verifier(),
        )
        with self._lock:
            self._entries[entry.state] = entry
        return entry

    def consume(self, state: str) -> Optional[PendingAuthorization]:
        """Remove and return the entry, or None if unknown or expired."""
        with self._lock:
            entry = self._entries.pop(state, None)
        if entry is None or self._is_expired(entry):
            return None
        return entry

    def sweep(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        with self._lock:
            expired = [s for s, e in self._entries.items() if self._is_expired(e)]
            for state in expired:
                del self._entries[state]
        return len(expired)

    def _is_expired(self, entry: PendingAuthorization) -> bool:
        return self._clock() - entry.created_at > self._ttl

    def __contains__(self, state: object) -> bool:
        with self._lock:
            return state in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# ---------------------------------------------------------------------
# Bridge
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class CompletedFlow:
    token: TokenResponse
    redirect_to: Optional[str]


class OAuthBridge:

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: Optional[str],
        authorize_url: Optional[str],
        token_url: Optional[str],
        redirect_uri: Optional[str],
        scopes: str,
        state_ttl_seconds: float = 600,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client_id = client_id
        self._client_secret = client_secret
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.redirect_uri = redirect_uri
        self.scopes = scopes
        self.states = StateStore(ttl_seconds=state_ttl_seconds, clock=clock)
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> "OAuthBridge":
        secret = settings.oauth_client_secret
        return cls(
            client_id=settings.oauth_client_id,
            client_secret=secret.get_secret_value() if secret else None,
            authorize_url=settings.authorize_url,
            token_url=settings.token_url,
            redirect_uri=settings.oauth_redirect_uri,
            scopes=settings.oauth_scopes,
            state_ttl_seconds=settings.OAUTH_STATE_TTL,
            timeout=settings.http_timeout_seconds,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Flow
    # ------------------------------------------------------------------

    def start_flow(self, redirect_to: Optional[str] = None) -> Dict[str, str]:
        """
        Begin an authorization-code flow.

        Returns
        -------
        Dict[str, str]
            ``auth_url`` to open in a browser and the ``state`` token.
        """
        if not self.authorize_url or not self.redirect_uri:
            raise ConfigurationError("OAuth is not configured: authorize URL and redirect URI are required.")

        entry = self.states.create(redirect_to)
        query = urlencode({
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": self.scopes,
            "state": entry.state,
            "code_challenge": compute_code_challenge(entry.code_verifier),
            "code_challenge_method": "S256",
        })
        separator = "&" if "?" in self.authorize_url else "?"
        logger.info("Started OAuth flow (redirect=%s)", redirect_to or "-")
        return {"auth_url": f"{self.authorize_url}{separator}{query}", "state": entry.state}

    async def complete_flow(self, code: str, state: str) -> CompletedFlow:
        entry = self.states.consume(state)
        if entry is None:
            raise OAuthFlowError("invalid_state", "Invalid or expired state parameter.")

        token = await self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri or "",
            "code_verifier": entry.code_verifier,
        })
        logger.info("Completed OAuth flow")
        return CompletedFlow(token=token, redirect_to=entry.redirect_to)

    async def refresh(self, refresh_token: str) -> TokenResponse:
        return await self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })

    async def _token_request(self, form: Dict[str, str]) -> TokenResponse:
        if not self.token_url:
            raise ConfigurationError("OAuth is not configured: token URL is required.")

        data = dict(form, client_id=self.client_id)
        if self._client_secret:
            data["client_secret"] = self._client_secret

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(
                    self.token_url,
                    data=data,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            raise OAuthFlowError(
                "temporarily_unavailable",
                f"Token endpoint unreachable: {exc}",
                status_code=502,
            ) from exc

        if not resp.is_success:
            # Surface the issuer's own error body verbatim.
            raise OAuthFlowError(
                "token_request_failed",
                f"Issuer rejected {form['grant_type']} grant (HTTP {resp.status_code}).",
                status_code=resp.status_code if 400 <= resp.status_code < 500 else 502,
                issuer_response=resp.text,
            )

        try:
            return TokenResponse.model_validate(resp.json())
        except ValueError as exc:
            raise OAuthFlowError(
                "invalid_token_response",
                "Issuer returned an unusable token response.",
                status_code=502,
                issuer_response=resp.text,
            ) from exc
