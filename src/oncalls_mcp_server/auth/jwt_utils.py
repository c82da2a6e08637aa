"""
JWT Utility Functions

Helpers for recognising and inspecting bearer tokens issued by the OnCalls
OAuth server. These helpers never *verify* a token: the adapter is not the
token's audience, and validity is established by the issuer's userinfo
endpoint. They only answer two questions:

- Does this bearer value look like a signed token (three dot-delimited
  segments) rather than a base64-encoded ``username:password`` pair?
- If it is a JWT, how many seconds remain until its ``exp`` claim?
"""

from __future__ import annotations

import re
import time
from typing import Optional

import jwt


# Three non-empty base64url segments separated by dots.
_JWT_SHAPE = re.compile(r"^[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*$")


def _get_current_timestamp() -> int:
    """Return current UNIX timestamp in UTC as integer seconds."""
    return int(time.time())


def looks_like_jwt(token: str) -> bool:
    """Structural heuristic only; the signature is not checked."""
    return bool(token) and _JWT_SHAPE.match(token) is not None


def seconds_until_expiry(token: str) -> Optional[int]:
    """
    Read the ``exp`` claim of a JWT without verifying its signature.

    Returns
    -------
    Optional[int]
        Remaining lifetime in seconds (never negative), or None when the token
        is not a decodable JWT or carries no ``exp`` claim.
    """
    if not looks_like_jwt(token):
        return None

    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return None

    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        return None

    return max(0, int(exp) - _get_current_timestamp())
