"""
Tool Registry

This module defines the central, authoritative registry of MCP tools. It
enforces:

- Explicit tool allow-listing
- Admin-only visibility
- A uniform handler signature: ``handler(session, args) -> result``

This is a critical security boundary. No tool should be callable unless it is
explicitly registered here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from . import definitions as defs
from .admin_tools import list_members, list_pending_requests, list_pending_volunteers
from .query_tools import (
    get_my_requests,
    get_my_schedule,
    get_oncall_schedule,
    get_physician_contact,
    get_shift_types,
)
from ..oncalls.client import UpstreamSession


# ---------------------------------------------------------------------
# Tool Type Definitions
# ---------------------------------------------------------------------

ToolHandler = Callable[[UpstreamSession, Dict[str, Any]], Awaitable[Any]]


@dataclass(frozen=True)
class Tool:
    name: str
    definition: Dict[str, Any]
    handler: ToolHandler
    admin_only: bool = False


# ---------------------------------------------------------------------
# Tool Registry (AUTHORITATIVE)
# ---------------------------------------------------------------------

ALL_TOOLS: List[Tool] = [
    Tool(defs.TOOL_GET_ONCALL_SCHEDULE, defs.GET_ONCALL_SCHEDULE, get_oncall_schedule),
    Tool(defs.TOOL_GET_MY_SCHEDULE, defs.GET_MY_SCHEDULE, get_my_schedule),
    Tool(defs.TOOL_GET_PHYSICIAN_CONTACT, defs.GET_PHYSICIAN_CONTACT, get_physician_contact),
    Tool(defs.TOOL_GET_SHIFT_TYPES, defs.GET_SHIFT_TYPES, get_shift_types),
    Tool(defs.TOOL_GET_MY_REQUESTS, defs.GET_MY_REQUESTS, get_my_requests),
    Tool(defs.TOOL_LIST_PENDING_REQUESTS, defs.LIST_PENDING_REQUESTS, list_pending_requests, admin_only=True),
    Tool(defs.TOOL_LIST_PENDING_VOLUNTEERS, defs.LIST_PENDING_VOLUNTEERS, list_pending_volunteers, admin_only=True),
    Tool(defs.TOOL_LIST_MEMBERS, defs.LIST_MEMBERS, list_members, admin_only=True),
]

_TOOLS_BY_NAME: Dict[str, Tool] = {tool.name: tool for tool in ALL_TOOLS}


# ---------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------

def tools_for_user(is_admin: bool) -> List[Tool]:
    if is_admin:
        return list(ALL_TOOLS)
    return [tool for tool in ALL_TOOLS if not tool.admin_only]


def list_tools(is_admin: bool) -> List[Dict[str, Any]]:
    """Tool descriptors as advertised through ``tools/list``."""
    return [tool.definition for tool in tools_for_user(is_admin)]


def find_tool(name: str) -> Optional[Tool]:
    return _TOOLS_BY_NAME.get(name)
