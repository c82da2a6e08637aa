import pytest

from conftest import BASE_URL, ISSUER_URL, OAUTH_ACCESS_TOKEN
from oncalls_mcp_server.auth.models import AuthMethod, OAuthToken, PasswordCredentials, TokenResponse
from oncalls_mcp_server.core.errors import (
    AuthenticationError,
    OAuthFlowError,
    OAuthSessionExpiredError,
    UpstreamRequestError,
)
from oncalls_mcp_server.oncalls.client import UpstreamSession, default_userinfo_url


def password_session(oncalls, clock, username="Stetzer", password="0900"):
    creds = PasswordCredentials(username=username, password=password, method=AuthMethod.CREDENTIAL_HEADERS)
    return UpstreamSession.with_password(BASE_URL, creds, transport=oncalls.transport(), clock=clock)


def test_default_userinfo_url_strips_api_suffix():
    assert default_userinfo_url("https://oncalls.test/api") == "https://oncalls.test/oauth/userinfo"
    assert default_userinfo_url("https://oncalls.test/api/") == "https://oncalls.test/oauth/userinfo"
    assert default_userinfo_url("https://api.oncalls.com/api") == "https://api.oncalls.com/oauth/userinfo"
    assert default_userinfo_url("https://oncalls.test/apiv2") == "https://oncalls.test/apiv2/oauth/userinfo"


@pytest.mark.asyncio
async def test_password_login_builds_identity(oncalls, clock):
    session = password_session(oncalls, clock)
    await session.authenticate()

    identity = session.identity
    assert identity.doc_id == 7
    assert identity.group_id == 12
    assert identity.is_admin is True
    assert identity.display_name == "Anna Stetzer"
    assert session.is_authenticated
    assert not session.is_oauth


@pytest.mark.asyncio
async def test_status_false_with_http_200_is_failure(oncalls, clock):
    session = password_session(oncalls, clock, password="wrong")
    with pytest.raises(AuthenticationError) as excinfo:
        await session.authenticate()
    assert "Invalid username or password" in str(excinfo.value)
    assert not session.is_authenticated


@pytest.mark.asyncio
async def test_truthy_non_boolean_status_is_failure(oncalls, clock):
    oncalls.login_status_quirk = True
    session = password_session(oncalls, clock)
    with pytest.raises(AuthenticationError):
        await session.authenticate()


@pytest.mark.asyncio
async def test_get_sends_bearer_and_drops_none_params(oncalls, clock):
    session = password_session(oncalls, clock)
    await session.authenticate()

    await session.get("/day_schedule", {"date": "2026-10-19", "groupId": 12, "docId": None, "flag": True})

    request = oncalls.calls[-1]
    assert request.headers["authorization"] == f"Bearer {session.tokens.access_token}"
    assert dict(request.url.params) == {"date": "2026-10-19", "groupId": "12", "flag": "true"}


@pytest.mark.asyncio
async def test_non_2xx_surfaces_upstream_message(oncalls, clock):
    session = password_session(oncalls, clock)
    await session.authenticate()

    with pytest.raises(UpstreamRequestError) as excinfo:
        await session.get("/get_pending_vols")
    assert excinfo.value.status_code == 404
    assert str(excinfo.value) == "API request failed: Not Found"


@pytest.mark.asyncio
async def test_expiring_password_session_refreshes(oncalls, clock):
    session = password_session(oncalls, clock)
    await session.authenticate()
    old_token = session.tokens.access_token

    clock.advance(3600)
    await session.get("/shiftLegend", {"groupId": 12})

    assert oncalls.refresh_count == 1
    assert oncalls.login_count == 1
    assert session.tokens.access_token != old_token


@pytest.mark.asyncio
async def test_failed_refresh_falls_back_to_login(oncalls, clock):
    session = password_session(oncalls, clock)
    await session.authenticate()

    oncalls.refresh_fails = True
    clock.advance(3600)
    await session.get("/shiftLegend", {"groupId": 12})

    assert oncalls.refresh_count == 1
    assert oncalls.login_count == 2
    assert not session.tokens.needs_refresh()


@pytest.mark.asyncio
async def test_refresh_and_relogin_both_failing_surfaces_login_error(oncalls, clock):
    session = password_session(oncalls, clock)
    await session.authenticate()

    oncalls.refresh_fails = True
    oncalls.users["Stetzer"]["password"] = "rotated"
    clock.advance(3600)

    with pytest.raises(AuthenticationError) as excinfo:
        await session.get("/shiftLegend", {"groupId": 12})
    assert "Invalid username or password" in str(excinfo.value)
    assert "Refresh token expired" not in str(excinfo.value)


@pytest.mark.asyncio
async def test_relogin_keeps_identity(oncalls, clock):
    session = password_session(oncalls, clock)
    await session.authenticate()
    identity = session.identity

    oncalls.users["Stetzer"]["data"] = dict(oncalls.users["Stetzer"]["data"], Admin=0)
    oncalls.refresh_fails = True
    clock.advance(3600)
    await session.get("/shiftLegend", {"groupId": 12})

    assert session.identity is identity
    assert session.identity.is_admin is True


# ---------------------------------------------------------------------
# OAuth sessions
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_oauth_session_loads_identity_from_userinfo(oncalls, clock):
    session = await UpstreamSession.from_oauth_token(
        BASE_URL, OAUTH_ACCESS_TOKEN, transport=oncalls.transport(), clock=clock,
    )

    assert session.is_oauth
    assert session.identity.doc_id == 42
    assert session.identity.is_admin is False
    assert oncalls.paths() == ["/oauth/userinfo"]


@pytest.mark.asyncio
async def test_oauth_session_rejected_when_userinfo_fails(oncalls, clock):
    with pytest.raises(AuthenticationError):
        await UpstreamSession.from_oauth_token(
            BASE_URL, "aaa.bbb.ccc", transport=oncalls.transport(), clock=clock,
        )


@pytest.mark.asyncio
async def test_oauth_without_refresh_token_expires_terminally(oncalls, clock):
    session = await UpstreamSession.from_oauth_token(
        BASE_URL, OAUTH_ACCESS_TOKEN, expires_in=600, transport=oncalls.transport(), clock=clock,
    )

    clock.advance(600)
    with pytest.raises(OAuthSessionExpiredError) as excinfo:
        await session.ensure_authenticated()

    assert str(excinfo.value) == "OAuth session expired. Please re-authenticate."
    assert "/api/login" not in oncalls.paths()
    assert not session.tokens.has_tokens()

    # Stays expired, still without a password login.
    with pytest.raises(OAuthSessionExpiredError):
        await session.ensure_authenticated()
    assert oncalls.login_count == 0


@pytest.mark.asyncio
async def test_oauth_refresh_failure_is_terminal(oncalls, clock):
    async def failing_refresher(refresh_token):
        raise OAuthFlowError("token_request_failed", "Issuer rejected refresh_token grant (HTTP 400).")

    session = await UpstreamSession.from_oauth_token(
        BASE_URL, OAUTH_ACCESS_TOKEN,
        refresh_token="r1", expires_in=600,
        oauth_refresher=failing_refresher,
        transport=oncalls.transport(), clock=clock,
    )

    clock.advance(600)
    with pytest.raises(OAuthSessionExpiredError):
        await session.get("/shiftLegend")
    assert oncalls.login_count == 0


@pytest.mark.asyncio
async def test_oauth_refresh_success_keeps_old_refresh_token(oncalls, clock):
    seen = []

    async def refresher(refresh_token):
        seen.append(refresh_token)
        return TokenResponse(access_token="new.access.token", expires_in=3600)

    session = await UpstreamSession.from_oauth_token(
        BASE_URL, OAUTH_ACCESS_TOKEN,
        refresh_token="r1", expires_in=600,
        userinfo_url=f"{ISSUER_URL}/oauth/userinfo",
        oauth_refresher=refresher,
        transport=oncalls.transport(), clock=clock,
    )

    clock.advance(600)
    await session.ensure_authenticated()

    assert seen == ["r1"]
    assert session.tokens.access_token == "new.access.token"
    assert session.tokens.refresh_token == "r1"


@pytest.mark.asyncio
async def test_closed_session_cannot_be_used(oncalls, clock):
    session = password_session(oncalls, clock)
    await session.authenticate()
    session.close()

    assert not session.tokens.has_tokens()
    with pytest.raises(AuthenticationError):
        await session.get("/shiftLegend")


# ---------------------------------------------------------------------
# Bound credentials
# ---------------------------------------------------------------------

def test_password_session_accepts_only_its_own_credentials(oncalls, clock):
    session = password_session(oncalls, clock)

    same = PasswordCredentials(username="Stetzer", password="0900", method=AuthMethod.BASIC_BEARER)
    wrong_password = PasswordCredentials(username="Stetzer", password="0901", method=AuthMethod.CREDENTIAL_HEADERS)
    other_user = PasswordCredentials(username="jdoe", password="0900", method=AuthMethod.CREDENTIAL_HEADERS)
    token = OAuthToken(access_token=OAUTH_ACCESS_TOKEN, method=AuthMethod.OAUTH_BEARER)

    assert session.accepts(same)
    assert not session.accepts(wrong_password)
    assert not session.accepts(other_user)
    assert not session.accepts(token)


@pytest.mark.asyncio
async def test_oauth_session_accepts_presented_and_refreshed_tokens(oncalls, clock):
    async def refresher(refresh_token):
        return TokenResponse(access_token="new.access.token", expires_in=3600)

    session = await UpstreamSession.from_oauth_token(
        BASE_URL, OAUTH_ACCESS_TOKEN, refresh_token="r1", expires_in=30,
        oauth_refresher=refresher, transport=oncalls.transport(), clock=clock,
    )
    await session.ensure_authenticated()

    def bearer(value):
        return OAuthToken(access_token=value, method=AuthMethod.OAUTH_BEARER)

    assert session.tokens.access_token == "new.access.token"
    assert session.accepts(bearer(OAUTH_ACCESS_TOKEN))
    assert session.accepts(bearer("new.access.token"))
    assert not session.accepts(bearer("other.access.token"))
    assert not session.accepts(PasswordCredentials(username="x", password="y", method=AuthMethod.CREDENTIAL_HEADERS))


@pytest.mark.asyncio
async def test_closed_session_accepts_nothing(oncalls, clock):
    session = password_session(oncalls, clock)
    await session.authenticate()
    session.close()

    assert not session.accepts(
        PasswordCredentials(username="Stetzer", password="0900", method=AuthMethod.CREDENTIAL_HEADERS)
    )
