"""
Channel Registry

In-memory registry mapping session identifiers to live client channels for
both wire protocols served by this process:

- ``LEGACY_SSE``: the deprecated HTTP+SSE transport. The client holds a
  ``GET /sse`` event stream open and posts messages to
  ``/message?sessionId=...``; responses travel back over the stream.
- ``STREAMABLE_HTTP``: the newer transport. The session identifier travels in
  the ``Mcp-Session-Id`` header and each POST is answered directly by the
  SDK's `StreamableHTTPServerTransport`.

Every channel runs its own ``mcp`` `Server` (see `build_server`) in a
background task for as long as the channel is open.

Design choices
--------------
- One channel per live connection, one identifier namespace for both
  protocols. The registry is the only place identifiers are minted into.
- An identifier stays bound to the protocol it was registered under; a
  request implying the other protocol is rejected, never reinterpreted.
- A channel becomes ACTIVE only once its ``initialize`` request has been
  answered with a result.
- In-memory only (no persistence across process restarts).
- Mutations are single synchronous steps and never span an ``await``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from enum import Enum
from threading import RLock
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import anyio
import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.streamable_http import StreamableHTTPServerTransport
from mcp.shared.message import SessionMessage
from starlette.types import Receive, Scope, Send

from .server import build_server, parse_message
from ..core.errors import MalformedRequestError, ProtocolMismatchError, SessionNotFoundError
from ..oncalls.client import UpstreamSession

logger = logging.getLogger("mcp.transport")

# Messages buffered between the HTTP side and a channel's server task.
STREAM_BUFFER_SIZE = 32


class TransportProtocol(str, Enum):
    LEGACY_SSE = "legacy_sse"
    STREAMABLE_HTTP = "streamable_http"


class ChannelState(str, Enum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    CLOSED = "closed"


class Channel:
    """
    One client connection: its protocol, its upstream session and the MCP
    server bound to that session.
    """

    protocol: TransportProtocol

    def __init__(
        self,
        session_id: str,
        session: UpstreamSession,
        server: Optional[Server] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session_id = session_id
        self.session = session
        self.server = server or build_server(session)
        self.state = ChannelState.UNINITIALIZED
        self._clock = clock
        self.last_seen = clock()
        self._initialize_id: Any = None
        self._task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the channel's server task and wait until it accepts messages."""
        if self._task is not None:
            return

        ready = asyncio.Event()
        self._task = asyncio.create_task(self._guarded_serve(ready), name=f"mcp-channel-{self.session_id}")
        await ready.wait()

        if self._task.done():
            # Surfaces a startup failure.
            self._task.result()

    async def _guarded_serve(self, ready: asyncio.Event) -> None:
        try:
            await self._serve(ready)
        finally:
            ready.set()

    async def _serve(self, ready: asyncio.Event) -> None:
        raise NotImplementedError

    async def _run_server(self, read_stream: Any, write_stream: Any) -> None:
        await self.server.run(read_stream, write_stream, self.server.create_initialization_options())

    def close(self) -> None:
        if self.state is ChannelState.CLOSED:
            return
        self.state = ChannelState.CLOSED
        self.session.close()
        self._close_streams()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.info("Channel %s closed", self.session_id)

    def _close_streams(self) -> None:
        pass

    async def wait_closed(self) -> None:
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Channel %s server task failed", self.session_id)

    # ------------------------------------------------------------------
    # Message gate
    # ------------------------------------------------------------------

    def accept(self, message: Any) -> types.JSONRPCMessage:
        """
        Check one inbound JSON-RPC message against the channel state.

        Raises
        ------
        SessionNotFoundError
            If the channel has already been closed.
        MalformedRequestError
            If the message is not JSON-RPC, or the channel is not yet
            initialized and the message is not an ``initialize`` request.
        """
        if self.state is ChannelState.CLOSED:
            raise SessionNotFoundError(f"Session {self.session_id} is closed")

        self.last_seen = self._clock()

        parsed = parse_message(message)
        if parsed is None:
            raise MalformedRequestError("Request body is not a valid JSON-RPC 2.0 message")

        if self.state is ChannelState.UNINITIALIZED:
            root = parsed.root
            if not isinstance(root, types.JSONRPCRequest) or root.method != "initialize":
                raise MalformedRequestError(
                    "Session is not initialized: the first message must be an 'initialize' request"
                )
            self._initialize_id = root.id

        return parsed

    def observe(self, message: Dict[str, Any]) -> None:
        """Track one outbound message; the answer to ``initialize`` activates the channel."""
        if self.state is not ChannelState.UNINITIALIZED or self._initialize_id is None:
            return
        if message.get("id") != self._initialize_id:
            return

        self._initialize_id = None
        if "result" in message:
            self.state = ChannelState.ACTIVE
            logger.info("Channel %s active (%s)", self.session_id, self.protocol.value)
        else:
            logger.info("Channel %s: initialize rejected", self.session_id)

    def idle_seconds(self) -> float:
        return self._clock() - self.last_seen


class LegacyChannel(Channel):
    """
    HTTP+SSE channel. Inbound messages arrive through `deliver`; everything
    the server sends is read from `outbound` by the event stream.
    """

    protocol = TransportProtocol.LEGACY_SSE

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._inbound_writer, self._inbound_reader = anyio.create_memory_object_stream(STREAM_BUFFER_SIZE)
        self._outbound_writer, self._outbound_reader = anyio.create_memory_object_stream(STREAM_BUFFER_SIZE)

    async def _serve(self, ready: asyncio.Event) -> None:
        ready.set()
        await self._run_server(self._inbound_reader, self._outbound_writer)

    async def deliver(self, message: Any) -> None:
        parsed = self.accept(message)
        await self._inbound_writer.send(SessionMessage(parsed))

    async def outbound(self) -> AsyncIterator[Dict[str, Any]]:
        """Server-to-client messages as JSON objects, until the channel closes."""
        async with self._outbound_reader:
            async for session_message in self._outbound_reader:
                payload = session_message.message.model_dump(by_alias=True, mode="json", exclude_none=True)
                self.observe(payload)
                yield payload

    def _close_streams(self) -> None:
        self._inbound_writer.close()
        self._outbound_writer.close()


class StreamableChannel(Channel):
    """
    Streamable HTTP channel backed by the SDK transport, which answers every
    POST with a JSON body.
    """

    protocol = TransportProtocol.STREAMABLE_HTTP

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.transport = StreamableHTTPServerTransport(
            mcp_session_id=self.session_id,
            is_json_response_enabled=True,
        )

    async def _serve(self, ready: asyncio.Event) -> None:
        async with self.transport.connect() as (read_stream, write_stream):
            ready.set()
            await self._run_server(read_stream, write_stream)

    async def handle_http(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Let the SDK transport answer one already-accepted POST."""
        if self.state is not ChannelState.UNINITIALIZED:
            await self.transport.handle_request(scope, receive, send)
            return

        body = bytearray()

        async def capture(event: Dict[str, Any]) -> None:
            if event["type"] == "http.response.body":
                body.extend(event.get("body", b""))
            await send(event)

        await self.transport.handle_request(scope, receive, capture)

        try:
            answer = json.loads(body)
        except ValueError:
            logger.warning("Channel %s: initialize answer was not JSON", self.session_id)
            return
        if isinstance(answer, dict):
            self.observe(answer)


class ChannelRegistry:
    """
    Maps session identifiers to live channels.

    Registering the same identifier twice under the same protocol replaces
    the previous channel (which is closed); registering it under the other
    protocol raises `ProtocolMismatchError`.
    """

    def __init__(self) -> None:
        self._channels: Dict[str, Channel] = {}
        self._lock = RLock()

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def register(self, channel: Channel) -> None:
        with self._lock:
            existing = self._channels.get(channel.session_id)
            if existing is not None and existing.protocol is not channel.protocol:
                raise ProtocolMismatchError(
                    f"Session {channel.session_id} is bound to {existing.protocol.value}"
                )
            self._channels[channel.session_id] = channel

        if existing is not None and existing is not channel:
            existing.close()

        logger.info("Registered %s channel %s", channel.protocol.value, channel.session_id)

    def get(self, session_id: str) -> Optional[Channel]:
        with self._lock:
            return self._channels.get(session_id)

    def lookup(self, session_id: str, protocol: TransportProtocol) -> Channel:
        """
        Return the live channel for an identifier under the expected protocol.

        Raises
        ------
        SessionNotFoundError
            Unknown identifier.
        ProtocolMismatchError
            The identifier is bound to the other protocol.
        """
        channel = self.get(session_id)
        if channel is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")
        if channel.protocol is not protocol:
            raise ProtocolMismatchError(
                f"Session {session_id} is bound to {channel.protocol.value}, "
                f"not {protocol.value}"
            )
        return channel

    def unregister(self, session_id: str, channel: Optional[Channel] = None) -> Optional[Channel]:
        """
        Remove and close the channel for an identifier.

        When ``channel`` is given, only that exact channel is removed, so a
        disconnect of a replaced channel does not evict its replacement.
        """
        with self._lock:
            current = self._channels.get(session_id)
            if current is None or (channel is not None and current is not channel):
                current = None
            else:
                del self._channels[session_id]

        if channel is not None:
            channel.close()
        if current is not None:
            current.close()
            logger.info("Unregistered channel %s", session_id)
        return current

    # ------------------------------------------------------------------
    # Utility operations
    # ------------------------------------------------------------------

    def sweep_idle(self, max_idle_seconds: float) -> int:
        """
        Close streamable HTTP channels idle for longer than ``max_idle_seconds``.

        Legacy channels are bound to an open event stream and are closed when
        that stream disconnects.
        """
        with self._lock:
            stale = [
                sid for sid, ch in self._channels.items()
                if ch.protocol is TransportProtocol.STREAMABLE_HTTP
                and ch.idle_seconds() > max_idle_seconds
            ]
        for sid in stale:
            self.unregister(sid)
        return len(stale)

    def close_all(self) -> List[Channel]:
        with self._lock:
            channels: List[Channel] = list(self._channels.values())
            self._channels.clear()
        for channel in channels:
            channel.close()
        return channels

    async def shutdown(self) -> None:
        """Close every channel and wait for their server tasks to finish."""
        for channel in self.close_all():
            await channel.wait_closed()

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._channels

    def __len__(self) -> int:
        with self._lock:
            return len(self._channels)
