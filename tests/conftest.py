import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from oncalls_mcp_server.config import Settings

BASE_URL = "https://oncalls.test/api"
ISSUER_URL = "https://oncalls.test"

# A syntactically valid JWT (header.payload.signature) with no exp claim.
OAUTH_ACCESS_TOKEN = (
    "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9"
    ".eyJzdWIiOiI0MiJ9"
    ".c2lnbmF0dXJl"
)


class FakeOncalls:
    """
    In-process stand-in for the OnCalls API and its OAuth issuer, served
    through ``httpx.MockTransport``.
    """

    def __init__(self) -> None:
        self.users: Dict[str, Dict[str, Any]] = {
            "Stetzer": {
                "password": "0900",
                "data": {
                    "docid": 7, "GroupId": 12, "fname": "Anna", "lname": "Stetzer",
                    "user_email": "stetzer@example.org", "Admin": 1, "viewReqs": 1,
                },
            },
            "jdoe": {
                "password": "secret",
                "data": {
                    "docid": 8, "GroupId": 12, "fname": "John", "lname": "Doe",
                    "user_email": "jdoe@example.org", "Admin": 0, "viewReqs": 0,
                },
            },
        }
        self.userinfo: Dict[str, Dict[str, Any]] = {
            OAUTH_ACCESS_TOKEN: {
                "sub": "42", "group_id": 12, "given_name": "Olivia", "family_name": "Auth",
                "email": "olivia@example.org", "is_admin": False,
            },
        }
        self.login_status_quirk = False
        self.refresh_fails = False
        self.token_endpoint_fails = False
        self.calls: List[httpx.Request] = []
        self.login_count = 0
        self.refresh_count = 0
        self._issued = 0

    # ------------------------------------------------------------------

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def paths(self) -> List[str]:
        return [request.url.path for request in self.calls]

    def _issue(self, prefix: str) -> str:
        self._issued += 1
        return f"{prefix}-{self._issued}"

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        path = request.url.path

        if path == "/api/login":
            return self._login(request)
        if path == "/api/refresh":
            self.refresh_count += 1
            if self.refresh_fails:
                return httpx.Response(401, json={"message": "Refresh token expired"})
            return httpx.Response(200, json={"access_token": self._issue("access")})
        if path == "/oauth/userinfo":
            token = request.headers.get("authorization", "")[len("Bearer "):]
            info = self.userinfo.get(token)
            if info is None:
                return httpx.Response(401, json={"error": "invalid_token"})
            return httpx.Response(200, json=info)
        if path == "/oauth/token":
            return self._token(request)

        if not request.headers.get("authorization", "").startswith("Bearer "):
            return httpx.Response(401, json={"message": "Missing token"})

        if path == "/api/day_schedule":
            return httpx.Response(200, json={"data": {
                "group_name": "Cardiology",
                "shift_data": [
                    {"callfull": "Day Call", "callabr": "DC", "lname": "Stetzer"},
                    {"callfull": "Night Call", "callabr": "NC", "lname": "Doe"},
                ],
            }})
        if path == "/api/members":
            return httpx.Response(200, json={"data": [
                {"docid": 7, "fname": "Anna", "lname": "Stetzer", "email": "stetzer@example.org",
                 "HomePhone": "555-0100", "pager": "", "Admin": 1, "Login": "Stetzer", "isdoc": 1},
                {"docid": 8, "fname": "John", "lname": "Doe", "email": "jdoe@example.org",
                 "HomePhone": "", "pager": "555-0199", "Admin": 0, "Login": "jdoe", "isdoc": 1},
            ]})
        if path == "/api/shiftLegend":
            return httpx.Response(200, json={"data": [
                {"id": 1, "callfull": "Day Call", "callabr": "DC", "sortorder": 1},
            ]})
        if path == "/api/get_all_requests":
            return httpx.Response(200, json={"monthRequest": [
                {"ReqID": 1, "DocID": 8, "lname": "Doe", "req_type": "Vacation",
                 "abb_type": "VAC", "ReqDate": "2026-11-02", "IsApproved": 0, "isrejected": 0},
                {"ReqID": 2, "DocID": 7, "lname": "Stetzer", "req_type": "Off",
                 "abb_type": "OFF", "ReqDate": "2026-11-05", "IsApproved": 1, "isrejected": 0},
            ]})
        if path == "/api/get_pending_vols":
            return httpx.Response(404, json={"message": "Not Found"})

        return httpx.Response(404, json={"message": f"No route {path}"})

    def _login(self, request: httpx.Request) -> httpx.Response:
        self.login_count += 1
        body = json.loads(request.content)
        user = self.users.get(body.get("username"))
        if user is None or user["password"] != body.get("password"):
            # OnCalls answers bad credentials with HTTP 200 and status false.
            return httpx.Response(200, json={"status": False, "message": "Invalid username or password"})
        if self.login_status_quirk:
            return httpx.Response(200, json={"status": "true", "token": "t", "data": user["data"]})
        return httpx.Response(200, json={
            "status": True,
            "token": self._issue("access"),
            "refresh_token": self._issue("refresh"),
            "data": user["data"],
        })

    def _token(self, request: httpx.Request) -> httpx.Response:
        if self.token_endpoint_fails:
            return httpx.Response(400, json={"error": "invalid_grant", "error_description": "bad code"})
        return httpx.Response(200, json={
            "access_token": OAUTH_ACCESS_TOKEN,
            "token_type": "Bearer",
            "expires_in": 3600,
            "refresh_token": self._issue("oauth-refresh"),
        })


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def oncalls() -> FakeOncalls:
    return FakeOncalls()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Optional[str]] = {
        "oncalls_base_url": BASE_URL,
        "oauth_redirect_uri": "http://test/oauth/callback",
        "oauth_client_id": "oncalls-mcp",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()
