"""
ProxyGateway tests: only tools/call is governed, denials never reach the
MCP server, allowed messages are forwarded byte-for-byte with the token.
"""

import json

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from spud.agent.interceptor import GovernanceInterceptor
from spud.api.proxy import (
    DEFAULT_DENIAL_MESSAGE,
    DENIED_ERROR_CODE,
    ProxyGateway,
    create_proxy_routes,
    extract_tool_call,
    parse_envelope,
)

DENY = {"permitted": False, "reason": "Blocked by policy", "decision_id": "dec-9"}


def rpc(method, params=None, message_id=1):
    message = {"jsonrpc": "2.0", "id": message_id, "method": method}
    if params is not None:
        message["params"] = params
    return json.dumps(message).encode("utf-8")


@pytest_asyncio.fixture
async def gateway(session, mcp_server):
    return ProxyGateway(GovernanceInterceptor(session), mcp_server.url)


class TestEnvelope:
    def test_parse_envelope(self):
        assert parse_envelope(rpc("tools/list"))["method"] == "tools/list"
        assert parse_envelope(b"not json") is None
        assert parse_envelope(b"[1, 2]") is None
        assert parse_envelope(b'{"id": 1}') is None

    def test_extract_tool_call(self):
        call = extract_tool_call({"params": {"name": "search", "arguments": {"q": "x"}}})
        assert call.name == "search"
        assert call.arguments == {"q": "x"}

    def test_missing_arguments_become_empty(self):
        call = extract_tool_call({"params": {"name": "ping"}})
        assert call.arguments == {}

    def test_params_without_name(self):
        assert extract_tool_call({"params": {"arguments": {}}}) is None
        assert extract_tool_call({"params": "search"}) is None
        assert extract_tool_call({}) is None


class TestGateway:
    @pytest.mark.asyncio
    async def test_non_tool_message_is_not_governed(self, platform, mcp_server, gateway):
        body = rpc("tools/list")
        reply = await gateway.handle(body, {"Content-Type": "application/json"})

        assert reply.status == 200
        assert reply.forwarded
        assert platform.govern_requests == []
        assert len(mcp_server.requests) == 1
        assert mcp_server.requests[0]["body"] == body

    @pytest.mark.asyncio
    async def test_forwarded_request_carries_token(self, mcp_server, gateway):
        await gateway.handle(rpc("initialize"), {"X-Spud-Token": "forged"})

        headers = mcp_server.requests[0]["headers"]
        assert headers.getall("X-Spud-Token") == ["session-token-1"]

    @pytest.mark.asyncio
    async def test_denied_tool_call_never_forwarded(self, platform, mcp_server, gateway):
        platform.govern_response = DENY
        body = rpc("tools/call", {"name": "delete_repo", "arguments": {"repo": "x"}}, 42)

        reply = await gateway.handle(body)

        assert reply.status == 200
        assert not reply.forwarded
        assert reply.json() == {
            "jsonrpc": "2.0",
            "id": 42,
            "error": {"code": DENIED_ERROR_CODE, "message": "Blocked by policy"},
        }
        assert mcp_server.requests == []

    @pytest.mark.asyncio
    async def test_string_id_preserved(self, platform, gateway):
        platform.govern_response = DENY
        reply = await gateway.handle(rpc("tools/call", {"name": "x"}, "req-7"))

        assert reply.json()["id"] == "req-7"

    @pytest.mark.asyncio
    async def test_denial_without_reason(self, platform, gateway):
        platform.govern_response = {"permitted": False, "decision_id": "dec-2"}
        reply = await gateway.handle(rpc("tools/call", {"name": "x"}))

        assert reply.json()["error"]["message"] == DEFAULT_DENIAL_MESSAGE

    @pytest.mark.asyncio
    async def test_allowed_tool_call_forwarded_verbatim(self, platform, mcp_server, gateway):
        body = b'{"jsonrpc":"2.0","id":3,"method":"tools/call","params":{"name":"search","arguments":{"q":"cats"}}}'

        reply = await gateway.handle(body)

        assert reply.forwarded
        assert json.loads(reply.body) == mcp_server.reply
        assert mcp_server.requests[0]["body"] == body

        governed = platform.govern_requests[0]["body"]
        assert governed["action"] == "tool:search"
        assert governed["context"]["tool_name"] == "search"
        assert governed["context"]["tool_arguments"] == {"q": "cats"}

    @pytest.mark.asyncio
    async def test_unreachable_governance_fails_closed(self, platform, mcp_server, gateway):
        platform.govern_status = 503
        reply = await gateway.handle(rpc("tools/call", {"name": "search"}, 5))

        assert reply.json()["id"] == 5
        assert "fail-closed" in reply.json()["error"]["message"]
        assert mcp_server.requests == []

    @pytest.mark.asyncio
    async def test_malformed_body_forwarded(self, platform, mcp_server, gateway):
        await gateway.handle(b"{not json")

        assert platform.govern_requests == []
        assert mcp_server.requests[0]["body"] == b"{not json"

    @pytest.mark.asyncio
    async def test_batch_is_forwarded_ungoverned(self, platform, mcp_server, gateway):
        batch = json.dumps(
            [{"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": "x"}}]
        ).encode("utf-8")
        platform.govern_response = DENY

        reply = await gateway.handle(batch)

        assert reply.forwarded
        assert platform.govern_requests == []
        assert mcp_server.requests[0]["body"] == batch

    @pytest.mark.asyncio
    async def test_upstream_reply_headers_relayed(self, mcp_server, gateway):
        mcp_server.reply_headers = {"Mcp-Session-Id": "sess-42"}

        reply = await gateway.handle(rpc("initialize"))

        assert reply.headers["Mcp-Session-Id"] == "sess-42"
        assert reply.headers["Content-Type"].startswith("application/json")
        assert "Content-Length" not in reply.headers

    @pytest.mark.asyncio
    async def test_statistics(self, platform, gateway):
        platform.govern_response = DENY
        await gateway.handle(rpc("tools/list"))
        await gateway.handle(rpc("tools/call", {"name": "x"}))

        assert gateway.get_statistics() == {"forwarded": 1, "governed": 1, "denied": 1}


class TestRoutes:
    @pytest.mark.asyncio
    async def test_routes_through_fastapi(self, platform, mcp_server, gateway):
        app = FastAPI()
        app.include_router(create_proxy_routes(gateway, "/mcp"))
        platform.govern_response = DENY
        mcp_server.reply_headers = {"Mcp-Session-Id": "sess-7"}

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://proxy") as client:
            allowed = await client.post("/mcp", content=rpc("tools/list"))
            denied = await client.post("/mcp", content=rpc("tools/call", {"name": "x"}, 9))
            stats = await client.get("/mcp/stats")

        assert allowed.status_code == 200
        assert allowed.json() == mcp_server.reply
        assert allowed.headers["mcp-session-id"] == "sess-7"
        assert denied.status_code == 200
        assert denied.json()["error"]["code"] == DENIED_ERROR_CODE
        assert denied.json()["id"] == 9
        assert stats.json()["denied"] == 1
