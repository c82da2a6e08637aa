"""
Schedule Query Tools

Read-only tools available to every authenticated OnCalls user. Each handler
is a thin translation between the tool arguments and one OnCalls endpoint,
scoped to the caller's own group and identity.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .dates import end_of_month, parse_date, start_of_month, today, weeks_between
from ..oncalls.client import UpstreamSession


class _Args(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ---------------------------------------------------------------------
# get-oncall-schedule
# ---------------------------------------------------------------------

class OncallScheduleArgs(_Args):
    date: Optional[str] = None
    shift_type: Optional[str] = Field(default=None, alias="shiftType")


async def get_oncall_schedule(session: UpstreamSession, args: Dict[str, Any]) -> Dict[str, Any]:
    params = OncallScheduleArgs.model_validate(args)
    day = params.date or today()
    parse_date(day)
    user = session.identity

    response = await session.get("/day_schedule", {
        "date": day,
        "groupId": user.group_id,
        "docId": user.doc_id,
    })
    data = response.get("data") or {}
    shifts = data.get("shift_data") or []

    if params.shift_type:
        needle = params.shift_type.lower()
        shifts = [
            s for s in shifts
            if needle in (s.get("callfull") or s.get("callabr") or "").lower()
        ]

    oncall = [
        {
            "shift": s.get("callfull") or s.get("callabr") or "Unknown",
            "shiftAbbr": s.get("callabr"),
            "physician": s.get("lname") or "Unassigned",
        }
        for s in shifts
    ]

    return {
        "date": day,
        "groupName": data.get("group_name") or "Unknown",
        "groupId": user.group_id,
        "oncall": oncall,
        "totalShifts": len(oncall),
    }


# ---------------------------------------------------------------------
# get-my-schedule
# ---------------------------------------------------------------------

class MyScheduleArgs(_Args):
    start_date: Optional[str] = Field(default=None, alias="startDate")
    end_date: Optional[str] = Field(default=None, alias="endDate")


def _assigned_names(lname_map: Any) -> List[str]:
    # month_schedule returns names as {"1": ["Name", ...], ...}
    names: List[str] = []
    if isinstance(lname_map, dict):
        for value in lname_map.values():
            if isinstance(value, list):
                names.extend(str(v) for v in value)
    return names


async def get_my_schedule(session: UpstreamSession, args: Dict[str, Any]) -> Dict[str, Any]:
    params = MyScheduleArgs.model_validate(args)
    start = params.start_date or start_of_month()
    end = params.end_date or end_of_month()
    user = session.identity

    response = await session.get("/month_schedule", {
        "date": start,
        "groupId": user.group_id,
        "docId": user.doc_id,
        "weeks": weeks_between(start, end),
        "viewreq": "false",
        "cluster": "0",
    })
    data = response.get("data") or {}
    last_name = user.last_name.lower()

    my_shifts = []
    for entry in data.get("date_shifts") or []:
        entry_date = entry.get("date", "")
        if entry_date < start or entry_date > end:
            continue
        for shift in entry.get("shifts") or []:
            assigned = _assigned_names(shift.get("lnameFull") or shift.get("lname") or {})
            if last_name and any(last_name in name.lower() for name in assigned):
                my_shifts.append({
                    "date": entry_date,
                    "shift": shift.get("callabr"),
                    "shiftAbbr": shift.get("callabr"),
                })

    my_shifts.sort(key=lambda s: s["date"])

    return {
        "user": user.display_name,
        "startDate": start,
        "endDate": end,
        "groupName": data.get("user_group") or "Unknown",
        "shifts": my_shifts,
        "totalShifts": len(my_shifts),
    }


# ---------------------------------------------------------------------
# get-physician-contact
# ---------------------------------------------------------------------

class PhysicianContactArgs(_Args):
    physician_name: str = Field(..., alias="physicianName", min_length=1)


async def get_physician_contact(session: UpstreamSession, args: Dict[str, Any]) -> Dict[str, Any]:
    params = PhysicianContactArgs.model_validate(args)

    response = await session.get("/members", {"groupId": session.identity.group_id})
    members = response.get("data") or []
    needle = re.sub(r"^dr\.?\s*", "", params.physician_name.strip(), flags=re.IGNORECASE).lower()

    matches = [
        m for m in members
        if needle in f"{m.get('fname', '')} {m.get('lname', '')}".lower()
        or (m.get("lname") or "").lower() == needle
    ]

    if not matches:
        return {
            "found": False,
            "message": f"No physician found matching \"{params.physician_name}\" in your group.",
            "suggestion": "Try using just the last name, or check spelling.",
        }

    if len(matches) > 1:
        return {
            "found": True,
            "multipleMatches": True,
            "message": (
                f"Multiple physicians found matching \"{params.physician_name}\". "
                "Please be more specific."
            ),
            "matches": [
                {"name": f"{m.get('fname', '')} {m.get('lname', '')}", "email": m.get("email")}
                for m in matches
            ],
        }

    physician = matches[0]
    return {
        "found": True,
        "physician": {
            "name": f"{physician.get('fname', '')} {physician.get('lname', '')}",
            "email": physician.get("email"),
            "phone": physician.get("HomePhone") or None,
            "pager": physician.get("pager") or None,
            "isAdmin": bool(physician.get("Admin")),
        },
    }


# ---------------------------------------------------------------------
# get-shift-types
# ---------------------------------------------------------------------

async def get_shift_types(session: UpstreamSession, args: Dict[str, Any]) -> Dict[str, Any]:
    group_id = session.identity.group_id
    response = await session.get("/shiftLegend", {"groupId": group_id})

    shift_types = [
        {
            "id": s.get("id"),
            "name": s.get("callfull"),
            "abbreviation": s.get("callabr"),
            "sortOrder": s.get("sortorder"),
        }
        for s in response.get("data") or []
    ]

    return {
        "groupId": group_id,
        "shiftTypes": shift_types,
        "totalTypes": len(shift_types),
    }


# ---------------------------------------------------------------------
# get-my-requests
# ---------------------------------------------------------------------

# get_all_requests takes an explicit window; this one covers all history.
REQUEST_WINDOW = {"start_date": "2020-01-01", "end_date": "2030-12-31"}


def request_status(item: Dict[str, Any]) -> str:
    if item.get("IsApproved"):
        return "approved"
    if item.get("isrejected"):
        return "rejected"
    return "pending"


class MyRequestsArgs(_Args):
    status: Literal["pending", "approved", "rejected", "all"] = "all"


async def get_my_requests(session: UpstreamSession, args: Dict[str, Any]) -> Dict[str, Any]:
    params = MyRequestsArgs.model_validate(args)
    user = session.identity

    response = await session.get("/get_all_requests", {
        "docid": user.doc_id,
        "groupid": user.group_id,
        **REQUEST_WINDOW,
    })

    requests = [r for r in response.get("monthRequest") or [] if r.get("DocID") == user.doc_id]
    if params.status != "all":
        requests = [r for r in requests if request_status(r) == params.status]

    formatted = [
        {
            "id": r.get("ReqID"),
            "type": r.get("req_type"),
            "typeAbbr": r.get("abb_type"),
            "date": r.get("ReqDate") or "",
            "status": request_status(r),
        }
        for r in requests
    ]
    formatted.sort(key=lambda r: r["date"], reverse=True)

    return {
        "user": user.display_name,
        "filter": params.status,
        "requests": formatted,
        "totalRequests": len(formatted),
    }
