"""
Admin Tools

Read-only tools for group administrators. Dispatch already refuses these for
non-admin sessions; each handler re-checks the flag so it stays safe when
called directly.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from .query_tools import REQUEST_WINDOW, request_status
from ..core.errors import PermissionDeniedError, UpstreamRequestError
from ..oncalls.client import UpstreamSession

logger = logging.getLogger("mcp.tools")


def _require_admin(session: UpstreamSession, what: str) -> None:
    if not session.identity.is_admin:
        raise PermissionDeniedError(
            f"Admin access required. Only administrators can view {what}."
        )


def _pending_message(count: int, noun: str) -> str:
    if count:
        return f"{count} pending {noun}(s) awaiting your approval."
    return f"No pending {noun}s at this time."


class PendingRequestsArgs(BaseModel):
    request_type: Optional[str] = Field(default=None, alias="requestType")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


async def list_pending_requests(session: UpstreamSession, args: Dict[str, Any]) -> Dict[str, Any]:
    _require_admin(session, "pending requests")
    params = PendingRequestsArgs.model_validate(args)

    # docid=0 returns every request in the group
    response = await session.get("/get_all_requests", {
        "docid": 0,
        "groupid": session.identity.group_id,
        **REQUEST_WINDOW,
    })

    requests = [r for r in response.get("monthRequest") or [] if request_status(r) == "pending"]
    if params.request_type:
        needle = params.request_type.lower()
        requests = [r for r in requests if needle in (r.get("req_type") or "").lower()]

    formatted = [
        {
            "id": r.get("ReqID"),
            "physician": r.get("lname"),
            "type": r.get("req_type"),
            "typeAbbr": r.get("abb_type"),
            "date": r.get("ReqDate") or "",
        }
        for r in requests
    ]
    formatted.sort(key=lambda r: r["date"])

    return {
        "pendingRequests": formatted,
        "totalPending": len(formatted),
        "message": _pending_message(len(formatted), "request"),
    }


async def list_pending_volunteers(session: UpstreamSession, args: Dict[str, Any]) -> Dict[str, Any]:
    _require_admin(session, "pending volunteers")

    try:
        response = await session.get("/get_pending_vols", {
            "gid": session.identity.group_id,
            "pending": 1,
        })
    except UpstreamRequestError as exc:
        # Not every OnCalls deployment exposes volunteer management.
        logger.info("Pending volunteers unavailable: %s", exc)
        return {
            "pendingVolunteers": [],
            "totalPending": 0,
            "message": "Volunteer management feature not available on this OnCalls deployment.",
            "error": str(exc),
        }

    volunteers = (
        response.get("volunteers")
        or response.get("data")
        or response.get("pending")
        or []
    )
    formatted = [
        {
            "id": v.get("id"),
            "physician": v.get("doctorName") or v.get("lname") or "Unknown",
            "date": v.get("date") or "",
            "shift": v.get("shiftName") or "Unknown",
            "submittedAt": v.get("createdAt"),
        }
        for v in volunteers
    ]
    formatted.sort(key=lambda v: v["date"])

    return {
        "pendingVolunteers": formatted,
        "totalPending": len(formatted),
        "message": _pending_message(len(formatted), "volunteer"),
    }


class ListMembersArgs(BaseModel):
    include_contact: bool = Field(default=False, alias="includeContact")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


async def list_members(session: UpstreamSession, args: Dict[str, Any]) -> Dict[str, Any]:
    _require_admin(session, "the full member list")
    params = ListMembersArgs.model_validate(args)
    group_id = session.identity.group_id

    response = await session.get("/members", {"groupId": group_id})
    members = response.get("members") or response.get("data") or []

    formatted = []
    for m in members:
        entry = {
            "id": m.get("docid"),
            "name": f"{m.get('fname', '')} {m.get('lname', '')}",
            "username": m.get("Login"),
            "isAdmin": bool(m.get("Admin")),
            "isPhysician": bool(m.get("isdoc")),
        }
        if params.include_contact:
            entry.update(email=m.get("email"), phone=m.get("HomePhone"), pager=m.get("pager"))
        formatted.append(entry)

    formatted.sort(key=lambda m: m["name"])

    return {
        "groupId": group_id,
        "members": formatted,
        "totalMembers": len(formatted),
        "totalPhysicians": sum(1 for m in formatted if m["isPhysician"]),
        "totalAdmins": sum(1 for m in formatted if m["isAdmin"]),
    }
