"""
MCP Tool Definitions

This module defines the authoritative tool schemas advertised to the
assistant through ``tools/list``. These definitions must remain strictly
synchronized with:

- tools/base.py (ALL_TOOLS)
- The actual tool handler implementations

Admin-only tools are marked in their description and gated again at dispatch
time, so a non-admin session can neither see nor call them.
"""

from __future__ import annotations

from typing import Dict, Any, Final


# ---------------------------------------------------------------------
# Tool Name Constants (Single Source of Truth)
# ---------------------------------------------------------------------

TOOL_GET_ONCALL_SCHEDULE: Final[str] = "get-oncall-schedule"
TOOL_GET_MY_SCHEDULE: Final[str] = "get-my-schedule"
TOOL_GET_PHYSICIAN_CONTACT: Final[str] = "get-physician-contact"
TOOL_GET_SHIFT_TYPES: Final[str] = "get-shift-types"
TOOL_GET_MY_REQUESTS: Final[str] = "get-my-requests"

TOOL_LIST_PENDING_REQUESTS: Final[str] = "list-pending-requests"
TOOL_LIST_PENDING_VOLUNTEERS: Final[str] = "list-pending-volunteers"
TOOL_LIST_MEMBERS: Final[str] = "list-members"


_READ_ONLY = {"readOnlyHint": True, "destructiveHint": False}


# ---------------------------------------------------------------------
# User Tools
# ---------------------------------------------------------------------

GET_ONCALL_SCHEDULE: Dict[str, Any] = {
    "name": TOOL_GET_ONCALL_SCHEDULE,
    "description": (
        "Get the on-call schedule showing which physicians are on call for a specific date. "
        "Returns physician names and shift types. "
        "Use this to answer questions like \"Who is on call today?\" or "
        "\"Who has the OB-GYN shift tonight?\""
    ),
    "inputSchema": {
        "type": "object",
        "properties": {
            "date": {
                "type": "string",
                "description": "Date in YYYY-MM-DD format. Defaults to today if not specified.",
            },
            "shiftType": {
                "type": "string",
                "description": (
                    "Optional: Filter results to a specific shift type "
                    "(e.g., \"OB-GYN\", \"Night Shift\")"
                ),
            },
        },
    },
    "annotations": _READ_ONLY,
}

GET_MY_SCHEDULE: Dict[str, Any] = {
    "name": TOOL_GET_MY_SCHEDULE,
    "description": (
        "Get your own on-call schedule for a date range. "
        "Shows all shifts you are assigned to. "
        "Use this to answer questions like \"What is my schedule this month?\" or "
        "\"When am I on call next week?\""
    ),
    "inputSchema": {
        "type": "object",
        "properties": {
            "startDate": {
                "type": "string",
                "description": "Start date in YYYY-MM-DD format. Defaults to start of current month.",
            },
            "endDate": {
                "type": "string",
                "description": "End date in YYYY-MM-DD format. Defaults to end of current month.",
            },
        },
    },
    "annotations": _READ_ONLY,
}

GET_PHYSICIAN_CONTACT: Dict[str, Any] = {
    "name": TOOL_GET_PHYSICIAN_CONTACT,
    "description": (
        "Get contact information (phone, pager, email) for a physician in your group. "
        "Use this to answer questions like \"What is Dr. Smith's phone number?\""
    ),
    "inputSchema": {
        "type": "object",
        "properties": {
            "physicianName": {
                "type": "string",
                "description": "Name of the physician to look up. Can be full name or last name only.",
                "minLength": 1,
            },
        },
        "required": ["physicianName"],
    },
    "annotations": _READ_ONLY,
}

GET_SHIFT_TYPES: Dict[str, Any] = {
    "name": TOOL_GET_SHIFT_TYPES,
    "description": (
        "Get a list of all shift types available in your medical group. "
        "Shows shift names and abbreviations."
    ),
    "inputSchema": {
        "type": "object",
        "properties": {},
    },
    "annotations": _READ_ONLY,
}

GET_MY_REQUESTS: Dict[str, Any] = {
    "name": TOOL_GET_MY_REQUESTS,
    "description": (
        "Get your submitted shift requests (day off, switch requests, etc.). "
        "Shows request status, dates, and details."
    ),
    "inputSchema": {
        "type": "object",
        "properties": {
            "status": {
                "type": "string",
                "enum": ["pending", "approved", "rejected", "all"],
                "description": "Filter by status. Defaults to showing all requests.",
            },
        },
    },
    "annotations": _READ_ONLY,
}


# ---------------------------------------------------------------------
# Admin Tools
# ---------------------------------------------------------------------

LIST_PENDING_REQUESTS: Dict[str, Any] = {
    "name": TOOL_LIST_PENDING_REQUESTS,
    "description": (
        "[ADMIN ONLY] View all pending shift requests awaiting approval. "
        "Shows who submitted each request and for which dates."
    ),
    "inputSchema": {
        "type": "object",
        "properties": {
            "requestType": {
                "type": "string",
                "description": "Optional: Filter to specific request type (e.g., \"Day Off\", \"Switch\")",
            },
        },
    },
    "annotations": _READ_ONLY,
}

LIST_PENDING_VOLUNTEERS: Dict[str, Any] = {
    "name": TOOL_LIST_PENDING_VOLUNTEERS,
    "description": (
        "[ADMIN ONLY] View all pending volunteer submissions awaiting approval. "
        "Note: This feature may not be available on all OnCalls deployments."
    ),
    "inputSchema": {
        "type": "object",
        "properties": {},
    },
    "annotations": _READ_ONLY,
}

LIST_MEMBERS: Dict[str, Any] = {
    "name": TOOL_LIST_MEMBERS,
    "description": (
        "[ADMIN ONLY] Get a list of all physicians and staff in your medical group. "
        "Shows names, roles, and optionally contact information."
    ),
    "inputSchema": {
        "type": "object",
        "properties": {
            "includeContact": {
                "type": "boolean",
                "description": "Include contact information (phone, email). Defaults to false for privacy.",
            },
        },
    },
    "annotations": _READ_ONLY,
}
