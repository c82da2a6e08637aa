"""
Authentication Models

This module defines strongly-typed identity and credential models used by the
auth bridge. Credentials are transient: they exist only while a session is
being established and are never persisted.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field, ConfigDict


class AuthMethod(str, Enum):
    """Supported credential-carrying conventions, in precedence order."""

    OAUTH_BEARER = "oauth_bearer"
    BASIC_BEARER = "basic_bearer"
    CREDENTIAL_HEADERS = "credential_headers"
    CREDENTIAL_QUERY = "credential_query"
    ACCESS_TOKEN_QUERY = "access_token_query"


class Identity(BaseModel):
    """
    Authenticated OnCalls user, derived once when a session is established.

    The admin flag gates which tools are visible and callable, so the model is
    frozen: it never changes without re-authentication.
    """

    doc_id: int = Field(..., description="OnCalls physician/member id (docid).")
    group_id: int = Field(..., description="Medical group the user belongs to.")
    username: str = Field(..., min_length=1)
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    is_admin: bool = False
    view_requests: bool = Field(
        default=False,
        description="Whether the user may view schedule requests.",
    )

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.username

    @classmethod
    def from_login_payload(cls, username: str, data: Dict[str, Any]) -> "Identity":
        """Map the nested user profile of a password-grant login response."""
        return cls(
            doc_id=int(data["docid"]),
            group_id=int(data["GroupId"]),
            username=username,
            first_name=data.get("fname") or "",
            last_name=data.get("lname") or "",
            email=data.get("user_email") or "",
            is_admin=bool(data.get("Admin", False)),
            view_requests=bool(data.get("viewReqs", False)),
        )

    @classmethod
    def from_userinfo(cls, info: Dict[str, Any]) -> "Identity":
        """Map an OAuth userinfo response."""
        is_admin = bool(info.get("is_admin", False))
        email = info.get("email") or ""
        return cls(
            doc_id=int(info["sub"]),
            group_id=int(info["group_id"]),
            username=email or str(info["sub"]),
            first_name=info.get("given_name") or "",
            last_name=info.get("family_name") or "",
            email=email,
            is_admin=is_admin,
            # Admins can view requests
            view_requests=is_admin,
        )


class TokenResponse(BaseModel):
    """Token endpoint response (authorization_code or refresh_token grant)."""

    access_token: str = Field(..., min_length=1)
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None
    scope: Optional[str] = None

    model_config = ConfigDict(extra="allow")


# ---------------------------------------------------------------------
# Credential variants
# ---------------------------------------------------------------------

class PasswordCredentials(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1, repr=False)
    method: AuthMethod

    model_config = ConfigDict(frozen=True)


class OAuthToken(BaseModel):
    access_token: str = Field(..., min_length=1, repr=False)
    method: AuthMethod

    model_config = ConfigDict(frozen=True)


class Unrecognized(BaseModel):
    reason: str

    model_config = ConfigDict(frozen=True)


Credentials = Union[PasswordCredentials, OAuthToken]
