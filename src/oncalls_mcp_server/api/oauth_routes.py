"""
OAuth Bridge Routes

Thin HTTP surface over `OAuthBridge`:

- ``GET /oauth/start``      begin an authorization-code flow
- ``GET /oauth/callback``   exchange ``code`` + ``state`` for tokens
- ``POST /oauth/refresh``   refresh_token grant

Failures surface as `OAuthFlowError` and are rendered by the global handler
(``invalid_state`` for unknown, expired or reused state tokens).
"""

import logging
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from .dependencies import get_oauth_bridge
from ..auth.models import TokenResponse
from ..auth.oauth import OAuthBridge
from ..core.errors import OAuthFlowError

logger = logging.getLogger("mcp.oauth")

router = APIRouter(prefix="/oauth", tags=["oauth"])


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


def _token_payload(token: TokenResponse) -> Dict[str, Any]:
    return token.model_dump(exclude_none=True)


@router.get("/start")
def start(
    bridge: Annotated[OAuthBridge, Depends(get_oauth_bridge)],
    redirect_to: Optional[str] = None,
):
    return bridge.start_flow(redirect_to)


@router.get("/callback")
async def callback(
    bridge: Annotated[OAuthBridge, Depends(get_oauth_bridge)],
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = Query(default=None),
):
    if error:
        # The issuer redirected back with an error instead of a code.
        raise OAuthFlowError(error, error_description or "Authorization was not granted.")
    if not state:
        raise OAuthFlowError("invalid_state", "Missing state parameter.")
    if not code:
        raise OAuthFlowError("invalid_request", "Missing authorization code.")

    completed = await bridge.complete_flow(code, state)

    payload = _token_payload(completed.token)
    if completed.redirect_to:
        payload["redirect_to"] = completed.redirect_to
    return payload


@router.post("/refresh")
async def refresh(
    body: RefreshRequest,
    bridge: Annotated[OAuthBridge, Depends(get_oauth_bridge)],
):
    token = await bridge.refresh(body.refresh_token)
    logger.info("Refreshed OAuth token via /oauth/refresh")
    return _token_payload(token)
