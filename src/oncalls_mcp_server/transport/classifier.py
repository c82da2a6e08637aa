"""
Transport request classification.

``POST /sse`` accepts both wire protocols, so every inbound POST is classified
before any protocol-specific handling:

- session id in the query string          -> LegacyMessage
- session id in the ``Mcp-Session-Id`` header -> StreamContinuation
- neither, body is an ``initialize`` request  -> StreamInit
- anything else                            -> Malformed
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union

from .server import is_initialize_request

SESSION_HEADER = "Mcp-Session-Id"
SESSION_QUERY_PARAM = "sessionId"


@dataclass(frozen=True)
class LegacyMessage:
    session_id: str


@dataclass(frozen=True)
class StreamInit:
    pass


@dataclass(frozen=True)
class StreamContinuation:
    session_id: str


@dataclass(frozen=True)
class Malformed:
    reason: str


TransportRequest = Union[LegacyMessage, StreamInit, StreamContinuation, Malformed]


def classify_transport_request(
    query_session_id: Optional[str],
    header_session_id: Optional[str],
    body: Any,
) -> TransportRequest:
    if query_session_id and header_session_id:
        return Malformed(
            f"Session id supplied both as '{SESSION_QUERY_PARAM}' and as '{SESSION_HEADER}'"
        )

    if not isinstance(body, dict):
        return Malformed("Request body must be a single JSON-RPC message object")

    if query_session_id:
        return LegacyMessage(query_session_id)

    if header_session_id:
        return StreamContinuation(header_session_id)

    if is_initialize_request(body):
        return StreamInit()

    return Malformed("No session id supplied and message is not an 'initialize' request")
