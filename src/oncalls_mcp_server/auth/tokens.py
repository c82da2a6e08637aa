"""
Token Store

Holds the access/refresh token pair of one upstream session and decides when
a refresh is due. Purely in-memory and owned by exactly one UpstreamSession.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional


DEFAULT_TTL_SECONDS = 3600

# Refresh this long before expiry so an in-flight call never races it.
REFRESH_BUFFER_SECONDS = 60


class TokenStateError(RuntimeError):
    """Raised when the access token is updated before any tokens were set."""


@dataclass
class TokenPair:
    access_token: str
    refresh_token: Optional[str]
    expires_at: float


class TokenStore:

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._pair: Optional[TokenPair] = None

    def set(
        self,
        access_token: str,
        refresh_token: Optional[str],
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
    ) -> None:
        """Replace both tokens and restart the expiry clock."""
        self._pair = TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=self._clock() + ttl_seconds,
        )

    def update_access(self, access_token: str, ttl_seconds: float = DEFAULT_TTL_SECONDS) -> None:
        """Replace only the access token, keeping the refresh token."""
        if self._pair is None:
            raise TokenStateError("No token data available. Call set() first.")
        self._pair.access_token = access_token
        self._pair.expires_at = self._clock() + ttl_seconds

    def needs_refresh(self) -> bool:
        if self._pair is None:
            return True
        return self._clock() >= self._pair.expires_at - REFRESH_BUFFER_SECONDS

    def has_tokens(self) -> bool:
        return self._pair is not None and bool(self._pair.access_token)

    @property
    def access_token(self) -> Optional[str]:
        return self._pair.access_token if self._pair else None

    @property
    def refresh_token(self) -> Optional[str]:
        return self._pair.refresh_token if self._pair else None

    @property
    def expires_at(self) -> Optional[float]:
        return self._pair.expires_at if self._pair else None

    def clear(self) -> None:
        self._pair = None
