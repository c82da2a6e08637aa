"""
MCP Transport Routes

Serves both MCP wire protocols side by side:

Legacy HTTP+SSE
---------------
1. ``GET /sse`` authenticates the caller, registers a legacy channel and
   opens an event stream. The first event (``endpoint``) tells the client
   where to post: ``/message?sessionId=<id>``.
2. ``POST /message?sessionId=<id>`` (or ``POST /sse?sessionId=<id>``) hands
   the message to the channel and answers ``202 Accepted``; the JSON-RPC
   response is pushed over the event stream as a ``message`` event.
3. Dropping the stream tears the channel down.

Streamable HTTP
---------------
1. ``POST /mcp`` (or ``POST /sse``) without a session id and with an
   ``initialize`` body authenticates the caller, registers a channel and
   returns the response with an ``Mcp-Session-Id`` header.
2. Later POSTs carry that header and are answered directly.
3. ``DELETE /mcp`` ends the session.

Authentication
--------------
Every request must carry credentials. Requests that open a connection are
resolved into a new upstream session; requests on an existing session must
present the credential that session was established with.
"""

import json
import logging
from contextlib import aclosing
from typing import Annotated, Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response
from sse_starlette.sse import EventSourceResponse
from starlette.types import Receive, Scope, Send

from .dependencies import get_auth_resolver, get_registry, get_settings
from ..auth.resolver import AuthResolver, require_credentials
from ..config import Settings
from ..core.errors import AuthenticationError, MalformedRequestError
from ..transport.channels import (
    Channel,
    ChannelRegistry,
    ChannelState,
    LegacyChannel,
    StreamableChannel,
    TransportProtocol,
)
from ..transport.classifier import (
    SESSION_HEADER,
    SESSION_QUERY_PARAM,
    LegacyMessage,
    Malformed,
    StreamInit,
    classify_transport_request,
)

logger = logging.getLogger("mcp.transport")

router = APIRouter(tags=["mcp"])

MESSAGE_PATH = "/message"


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

def _check_bound_credentials(request: Request, channel: Channel) -> None:
    """
    Raises
    ------
    AuthenticationRequired
        No credential was presented.
    AuthenticationError
        None of the presented credentials is the one the session was
        established with.
    """
    credentials = require_credentials(request.headers, request.query_params)
    if not any(channel.session.accepts(credential) for credential in credentials):
        logger.warning("Credential mismatch on session %s", channel.session_id)
        raise AuthenticationError("Credentials do not match this session")


async def _event_stream(
    channel: LegacyChannel,
    registry: ChannelRegistry,
) -> AsyncIterator[Dict[str, str]]:
    """
    Event stream for one legacy channel. Runs until the channel is closed or
    the client disconnects; either way the channel is unregistered.
    """
    try:
        yield {
            "event": "endpoint",
            "data": f"{MESSAGE_PATH}?{SESSION_QUERY_PARAM}={channel.session_id}",
        }
        async with aclosing(channel.outbound()) as messages:
            async for message in messages:
                yield {"event": "message", "data": json.dumps(message)}
    finally:
        logger.info("SSE connection closed: %s", channel.session_id)
        registry.unregister(channel.session_id, channel)


class ChannelResponse(Response):
    """
    Hands an already-read POST to a streamable channel's SDK transport,
    replaying the request body the route consumed.
    """

    def __init__(self, channel: StreamableChannel, registry: ChannelRegistry, body: bytes) -> None:
        super().__init__()
        self.channel = channel
        self.registry = registry
        self.request_body = body

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        replayed = False

        async def replay() -> Dict[str, Any]:
            nonlocal replayed
            if replayed:
                return await receive()
            replayed = True
            return {"type": "http.request", "body": self.request_body, "more_body": False}

        await self.channel.handle_http(scope, replay, send)

        if self.channel.state is ChannelState.UNINITIALIZED:
            self.registry.unregister(self.channel.session_id, self.channel)


# ---------------------------------------------------------------------
# Legacy event stream
# ---------------------------------------------------------------------

@router.get("/sse")
async def open_sse_stream(
    request: Request,
    resolver: Annotated[AuthResolver, Depends(get_auth_resolver)],
    registry: Annotated[ChannelRegistry, Depends(get_registry)],
    settings: Annotated[Settings, Depends(get_settings)],
):
    resolved = await resolver.resolve(request.headers, request.query_params)

    channel = LegacyChannel(resolved.session_id, resolved.session)
    registry.register(channel)
    await channel.start()
    logger.info("New SSE connection: %s", channel.session_id)

    return EventSourceResponse(
        _event_stream(channel, registry),
        ping=int(settings.SSE_KEEPALIVE_INTERVAL),
    )


# ---------------------------------------------------------------------
# Message delivery (both protocols)
# ---------------------------------------------------------------------

async def _handle_post(
    request: Request,
    resolver: AuthResolver,
    registry: ChannelRegistry,
) -> Response:
    require_credentials(request.headers, request.query_params)

    raw = await request.body()
    try:
        body = json.loads(raw)
    except ValueError as exc:
        raise MalformedRequestError("Request body is not valid JSON") from exc

    kind = classify_transport_request(
        request.query_params.get(SESSION_QUERY_PARAM),
        request.headers.get(SESSION_HEADER),
        body,
    )

    if isinstance(kind, Malformed):
        raise MalformedRequestError(kind.reason)

    if isinstance(kind, LegacyMessage):
        legacy = registry.lookup(kind.session_id, TransportProtocol.LEGACY_SSE)
        _check_bound_credentials(request, legacy)
        await legacy.deliver(body)
        return Response(status_code=202, content="Accepted", media_type="text/plain")

    if isinstance(kind, StreamInit):
        resolved = await resolver.resolve(request.headers, request.query_params)
        channel = StreamableChannel(resolved.session_id, resolved.session)
        registry.register(channel)
        await channel.start()
    else:
        channel = registry.lookup(kind.session_id, TransportProtocol.STREAMABLE_HTTP)
        _check_bound_credentials(request, channel)

    channel.accept(body)
    return ChannelResponse(channel, registry, raw)


@router.post("/message")
async def post_message(
    request: Request,
    resolver: Annotated[AuthResolver, Depends(get_auth_resolver)],
    registry: Annotated[ChannelRegistry, Depends(get_registry)],
):
    return await _handle_post(request, resolver, registry)


@router.post("/sse")
async def post_sse(
    request: Request,
    resolver: Annotated[AuthResolver, Depends(get_auth_resolver)],
    registry: Annotated[ChannelRegistry, Depends(get_registry)],
):
    return await _handle_post(request, resolver, registry)


# ---------------------------------------------------------------------
# Streamable HTTP
# ---------------------------------------------------------------------

@router.post("/mcp")
async def post_mcp(
    request: Request,
    resolver: Annotated[AuthResolver, Depends(get_auth_resolver)],
    registry: Annotated[ChannelRegistry, Depends(get_registry)],
):
    return await _handle_post(request, resolver, registry)


@router.get("/mcp")
async def get_mcp() -> Response:
    # No server-initiated stream is offered on this transport.
    return JSONResponse(
        status_code=405,
        content={
            "error": "method_not_allowed",
            "error_description": "Use POST to send messages or DELETE to end the session.",
        },
        headers={"Allow": "POST, DELETE"},
    )


@router.delete("/mcp")
async def delete_mcp(
    request: Request,
    registry: Annotated[ChannelRegistry, Depends(get_registry)],
) -> Response:
    require_credentials(request.headers, request.query_params)

    session_id: Optional[str] = request.headers.get(SESSION_HEADER)
    if not session_id:
        raise MalformedRequestError(f"Missing {SESSION_HEADER} header")

    channel = registry.lookup(session_id, TransportProtocol.STREAMABLE_HTTP)
    _check_bound_credentials(request, channel)
    registry.unregister(session_id, channel)
    return Response(status_code=204)
