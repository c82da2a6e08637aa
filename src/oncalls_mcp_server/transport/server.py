"""
MCP Tool-Dispatch Server

`build_server` returns an ``mcp`` low-level `Server` bound to exactly one
UpstreamSession. The same factory serves both HTTP transports and stdio; the
SDK owns JSON-RPC framing, ``initialize`` version negotiation, ``ping`` and
notifications.

Failure envelopes
-----------------
No exception raised by a tool or by the upstream session escapes as an
internal error:

- unknown tool                     -> JSON-RPC ``-32602``
- admin-only tool, non-admin user  -> JSON-RPC ``-32003`` (``permission_denied``)
- authentication failure           -> JSON-RPC ``-32001`` (``authentication_failed``)
- any other handler failure        -> tool result with ``isError: true``
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, List, Optional

import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.shared.exceptions import McpError
from pydantic import ValidationError

from ..core.errors import AuthenticationError, PermissionDeniedError, UpstreamRequestError
from ..oncalls.client import UpstreamSession
from ..tools.base import Tool, find_tool as default_find_tool, list_tools as default_list_tools

logger = logging.getLogger("mcp.transport")


SERVER_NAME = "oncalls-mcp"
SERVER_VERSION = "1.2.0"

# Application-defined JSON-RPC error codes
AUTHENTICATION_FAILED = -32001
PERMISSION_DENIED = -32003


def parse_message(message: Any) -> Optional[types.JSONRPCMessage]:
    """Validate one decoded JSON value as a JSON-RPC message, or return None."""
    try:
        return types.JSONRPCMessage.model_validate(message)
    except ValidationError:
        return None


def is_initialize_request(message: Any) -> bool:
    parsed = parse_message(message)
    return (
        parsed is not None
        and isinstance(parsed.root, types.JSONRPCRequest)
        and parsed.root.method == "initialize"
    )


def _text_result(payload: Any, is_error: bool = False) -> types.ServerResult:
    text = payload if isinstance(payload, str) else json.dumps(payload, indent=2, default=str)
    return types.ServerResult(
        types.CallToolResult(
            content=[types.TextContent(type="text", text=text)],
            isError=is_error,
        )
    )


def _authentication_failed(exc: AuthenticationError) -> McpError:
    return McpError(types.ErrorData(
        code=AUTHENTICATION_FAILED,
        message=str(exc),
        data={"error": "authentication_failed"},
    ))


def build_server(
    session: UpstreamSession,
    *,
    list_tools: Callable[[bool], List[Dict[str, Any]]] = default_list_tools,
    find_tool: Callable[[str], Optional[Tool]] = default_find_tool,
) -> Server:
    """
    Create the MCP server for one connection.

    Parameters
    ----------
    session : UpstreamSession
        Authenticated session every tool call runs against.
    list_tools : Callable[[bool], List[Dict[str, Any]]]
        Returns the tool descriptors visible to an admin / non-admin user.
    find_tool : Callable[[str], Optional[Tool]]
        Resolves a tool name to its registered handler.
    """
    server: Server = Server(SERVER_NAME, version=SERVER_VERSION)

    @server.list_tools()
    async def _list_tools() -> List[types.Tool]:
        try:
            is_admin = session.identity.is_admin
        except AuthenticationError as exc:
            raise _authentication_failed(exc) from exc

        tools = [types.Tool.model_validate(descriptor) for descriptor in list_tools(is_admin)]
        logger.debug("Listing %d tools (admin: %s)", len(tools), is_admin)
        return tools

    async def _call_tool(request: types.CallToolRequest) -> types.ServerResult:
        name = request.params.name
        arguments = request.params.arguments or {}

        tool = find_tool(name)
        if tool is None:
            raise McpError(types.ErrorData(code=types.INVALID_PARAMS, message=f"Unknown tool: {name}"))

        try:
            if tool.admin_only and not session.identity.is_admin:
                raise PermissionDeniedError(
                    f"Admin access required. Tool '{tool.name}' is only available to administrators."
                )
            output = await tool.handler(session, arguments)

        except PermissionDeniedError as exc:
            logger.info("Denied %s for non-admin session", tool.name)
            raise McpError(types.ErrorData(
                code=PERMISSION_DENIED,
                message=str(exc),
                data={"error": "permission_denied"},
            )) from exc

        except AuthenticationError as exc:
            logger.info("Authentication failed during %s: %s", tool.name, exc)
            raise _authentication_failed(exc) from exc

        except ValidationError as exc:
            return _text_result(f"Invalid arguments for {tool.name}: {exc}", is_error=True)

        except (UpstreamRequestError, ValueError) as exc:
            logger.warning("Tool %s failed: %s", tool.name, exc)
            return _text_result(f"Error: {exc}", is_error=True)

        except Exception:
            logger.exception("Unhandled error in tool %s", tool.name)
            return _text_result("Error: internal error while running tool", is_error=True)

        return _text_result(output)

    # The SDK's call_tool decorator turns every exception into an isError
    # result; permission and authentication failures must stay JSON-RPC errors.
    server.request_handlers[types.CallToolRequest] = _call_tool

    return server
