import json

import mcp.types as types
import pytest
from mcp.shared.exceptions import McpError

from conftest import BASE_URL
from oncalls_mcp_server.auth.models import AuthMethod, PasswordCredentials
from oncalls_mcp_server.oncalls.client import UpstreamSession
from oncalls_mcp_server.tools.base import Tool
from oncalls_mcp_server.transport.server import (
    AUTHENTICATION_FAILED,
    PERMISSION_DENIED,
    SERVER_NAME,
    SERVER_VERSION,
    build_server,
    is_initialize_request,
)


async def login(oncalls, username, password):
    creds = PasswordCredentials(username=username, password=password, method=AuthMethod.CREDENTIAL_HEADERS)
    session = UpstreamSession.with_password(BASE_URL, creds, transport=oncalls.transport())
    await session.authenticate()
    return session


async def list_tools(server):
    handler = server.request_handlers[types.ListToolsRequest]
    return (await handler(types.ListToolsRequest(method="tools/list"))).root.tools


async def call(server, name, arguments=None):
    handler = server.request_handlers[types.CallToolRequest]
    request = types.CallToolRequest(
        method="tools/call",
        params=types.CallToolRequestParams(name=name, arguments=arguments or {}),
    )
    return (await handler(request)).root


def test_initialize_request_detection():
    assert is_initialize_request({"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}})
    assert not is_initialize_request({"id": 1, "method": "initialize", "params": {}})
    assert not is_initialize_request({"jsonrpc": "2.0", "method": "initialize"})
    assert not is_initialize_request({"jsonrpc": "2.0", "id": 1, "method": "tools/list"})
    assert not is_initialize_request([])


@pytest.mark.asyncio
async def test_initialization_options_advertise_tools(oncalls):
    server = build_server(await login(oncalls, "jdoe", "secret"))
    options = server.create_initialization_options()

    assert options.server_name == SERVER_NAME
    assert options.server_version == SERVER_VERSION
    assert options.capabilities.tools is not None


@pytest.mark.asyncio
async def test_tools_list_filters_admin_tools(oncalls):
    admin_tools = await list_tools(build_server(await login(oncalls, "Stetzer", "0900")))
    user_tools = await list_tools(build_server(await login(oncalls, "jdoe", "secret")))

    assert len(admin_tools) == 8
    assert len(user_tools) == 5
    assert not any(tool.name.startswith("list-") for tool in user_tools)
    assert all(tool.annotations.readOnlyHint for tool in admin_tools)


@pytest.mark.asyncio
async def test_tools_list_uses_injected_function(oncalls):
    seen = []

    def fake_list_tools(is_admin):
        seen.append(is_admin)
        return [{"name": "only-tool", "inputSchema": {"type": "object"}}]

    server = build_server(await login(oncalls, "jdoe", "secret"), list_tools=fake_list_tools)
    tools = await list_tools(server)

    assert seen == [False]
    assert [tool.name for tool in tools] == ["only-tool"]


@pytest.mark.asyncio
async def test_admin_tool_for_non_admin_is_permission_denied(oncalls):
    server = build_server(await login(oncalls, "jdoe", "secret"))
    calls_before = len(oncalls.calls)

    with pytest.raises(McpError) as excinfo:
        await call(server, "list-members")

    assert excinfo.value.error.code == PERMISSION_DENIED
    assert excinfo.value.error.data == {"error": "permission_denied"}
    assert len(oncalls.calls) == calls_before


@pytest.mark.asyncio
async def test_unknown_tool(oncalls):
    server = build_server(await login(oncalls, "jdoe", "secret"))
    with pytest.raises(McpError) as excinfo:
        await call(server, "delete-everything")
    assert excinfo.value.error.code == types.INVALID_PARAMS


@pytest.mark.asyncio
async def test_tool_result_is_wrapped_as_text(oncalls):
    server = build_server(await login(oncalls, "jdoe", "secret"))
    result = await call(server, "get-shift-types")

    assert not result.isError
    payload = json.loads(result.content[0].text)
    assert payload["totalTypes"] == 1


@pytest.mark.asyncio
async def test_handler_failure_becomes_error_result(oncalls):
    server = build_server(await login(oncalls, "jdoe", "secret"))
    result = await call(server, "get-oncall-schedule", {"date": "not-a-date"})

    assert result.isError is True
    assert "Invalid date" in result.content[0].text


@pytest.mark.asyncio
async def test_invalid_arguments_become_error_result(oncalls):
    server = build_server(await login(oncalls, "jdoe", "secret"))
    result = await call(server, "get-physician-contact", {})
    assert result.isError is True


@pytest.mark.asyncio
async def test_authentication_failure_during_call(oncalls):
    session = await login(oncalls, "jdoe", "secret")
    server = build_server(session)
    session.close()

    with pytest.raises(McpError) as excinfo:
        await call(server, "get-shift-types")
    assert excinfo.value.error.code == AUTHENTICATION_FAILED
    assert excinfo.value.error.data == {"error": "authentication_failed"}


@pytest.mark.asyncio
async def test_unexpected_handler_exception_is_contained(oncalls):
    async def broken(session, args):
        raise RuntimeError("boom")

    tool = Tool("broken", {"name": "broken"}, broken)
    server = build_server(await login(oncalls, "jdoe", "secret"), find_tool=lambda name: tool)

    result = await call(server, "broken")
    assert result.isError is True
    assert "boom" not in result.content[0].text
