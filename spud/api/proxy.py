"""
MCP Proxy Gateway - Governance for JSON-RPC tool calls

Sits between an MCP client and an MCP server (HTTP transport):
- tools/call messages go through GovernanceInterceptor.decide()
  - denied: a JSON-RPC error with the original id is returned (HTTP 200)
    and the upstream is never contacted
  - allowed: the original, byte-identical body is forwarded
- every other message (and anything that is not a JSON-RPC envelope) is
  forwarded untouched; malformed input is not a trust decision
- upstream reply headers (e.g. Mcp-Session-Id) are relayed, minus the
  hop-by-hop ones

Forwarded requests carry the session token in X-Spud-Token so the tool
server can verify that governance ran.

NOTE: a JSON-RPC batch (top-level array) is not an envelope and is forwarded
ungoverned, tools/call entries included. Flagged for product review, like
the fail-open collision ordering in core/fail_closed.py.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import aiohttp

from ..agent.interceptor import GovernanceInterceptor
from ..core.client import TokenSession
from ..core.models import ToolCall
from .models import JsonRpcError, JsonRpcErrorResponse

logger = logging.getLogger(__name__)

TOOL_CALL_METHOD = "tools/call"
TOKEN_HEADER = "X-Spud-Token"
DENIED_ERROR_CODE = -32600
DEFAULT_DENIAL_MESSAGE = "Action denied by governance policy"

# Recomputed by the transport, or replaced by the proxy itself
_SKIPPED_HEADERS = {"host", "content-length", "transfer-encoding", "connection", "x-spud-token"}

# Hop-by-hop, or no longer true once aiohttp has decoded the body
_SKIPPED_REPLY_HEADERS = {"content-length", "transfer-encoding", "connection", "content-encoding"}

HeaderInput = Union[Mapping[str, str], Iterable[Tuple[str, str]]]


@dataclass
class ProxyResponse:
    """Framework-neutral reply produced by the gateway."""

    status: int
    body: bytes
    headers: Dict[str, str] = field(default_factory=dict)
    forwarded: bool = True

    def json(self) -> Any:
        return json.loads(self.body)


def parse_envelope(body: bytes) -> Optional[Dict[str, Any]]:
    """Decode a JSON-RPC envelope, or None if the body is not one."""
    # Batches land here as lists and bypass governance; see module NOTE
    try:
        message = json.loads(body)
    except ValueError:
        return None
    if not isinstance(message, dict) or not isinstance(message.get("method"), str):
        return None
    return message


def extract_tool_call(message: Dict[str, Any]) -> Optional[ToolCall]:
    """ToolCall from tools/call params, or None if params carry no tool name."""
    params = message.get("params")
    if not isinstance(params, dict):
        return None
    name = params.get("name")
    if not isinstance(name, str):
        return None

    arguments = params.get("arguments")
    if arguments is None:
        arguments = {}
    elif not isinstance(arguments, dict):
        arguments = {"input": arguments}
    return ToolCall(name=name, arguments=arguments)


def json_rpc_error(message_id: Any, message: str, code: int = DENIED_ERROR_CODE) -> ProxyResponse:
    """Protocol-level error reply; JSON-RPC errors still use HTTP 200."""
    reply = JsonRpcErrorResponse(id=message_id, error=JsonRpcError(code=code, message=message))
    return ProxyResponse(
        status=200,
        body=reply.model_dump_json().encode("utf-8"),
        headers={"Content-Type": "application/json"},
        forwarded=False,
    )


def _header_items(headers: HeaderInput) -> List[Tuple[str, str]]:
    if isinstance(headers, Mapping):
        return list(headers.items())
    return list(headers)


class ProxyGateway:
    """
    Governs the tool-invoking subset of an MCP message stream.

    Usage:
        gateway = ProxyGateway(interceptor, upstream="http://mcp-server:3000/mcp")
        reply = await gateway.handle(body, headers)
    """

    def __init__(
        self,
        interceptor: GovernanceInterceptor,
        upstream: str,
        session: Optional[TokenSession] = None,
    ):
        self._interceptor = interceptor
        self._session = session or interceptor.session
        self._upstream = upstream.rstrip("/")

        # Statistics
        self._stats = {"forwarded": 0, "governed": 0, "denied": 0}

    @property
    def upstream(self) -> str:
        return self._upstream

    async def handle(self, body: bytes, headers: HeaderInput = ()) -> ProxyResponse:
        """
        Handle one inbound message.

        Args:
            body: Raw request body, forwarded byte-for-byte when allowed
            headers: Original request headers

        Returns:
            The upstream reply, or a JSON-RPC error for a denied tool call
        """
        message = parse_envelope(body)
        if message is None or message.get("method") != TOOL_CALL_METHOD:
            return await self.forward(body, headers)

        tool_call = extract_tool_call(message)
        if tool_call is None:
            return await self.forward(body, headers)

        self._stats["governed"] += 1
        result = await self._interceptor.decide(tool_call)

        if not result.proceed:
            self._stats["denied"] += 1
            logger.info(f"Blocked tools/call {tool_call.name} (id={message.get('id')!r})")
            return json_rpc_error(
                message.get("id"),
                result.decision.reason or DEFAULT_DENIAL_MESSAGE,
            )

        return await self.forward(body, headers)

    async def forward(self, body: bytes, headers: HeaderInput = ()) -> ProxyResponse:
        """
        POST the body to the upstream with the session token attached.

        Transport failures (aiohttp.ClientError, asyncio.TimeoutError)
        propagate to the caller unchanged.
        """
        outbound = [
            (name, value)
            for name, value in _header_items(headers)
            if name.lower() not in _SKIPPED_HEADERS
        ]
        token = self._session.auth_token
        if token:
            outbound.append((TOKEN_HEADER, token))

        async with aiohttp.ClientSession(timeout=self._session.timeout) as client:
            async with client.post(self._upstream, data=body, headers=outbound) as response:
                content = await response.read()
                reply_headers = {
                    name: value
                    for name, value in response.headers.items()
                    if name.lower() not in _SKIPPED_REPLY_HEADERS
                }

        self._stats["forwarded"] += 1
        return ProxyResponse(status=response.status, body=content, headers=reply_headers)

    def get_statistics(self) -> Dict[str, int]:
        return dict(self._stats)


# FastAPI integration
def create_proxy_routes(gateway: ProxyGateway, path: str = "/mcp"):
    """Create the FastAPI route that feeds requests through the gateway."""
    from fastapi import APIRouter, Request
    from fastapi.responses import Response

    router = APIRouter(tags=["proxy"])

    @router.post(path)
    async def proxy(request: Request):
        """Govern and forward one MCP message."""
        body = await request.body()
        reply = await gateway.handle(body, request.headers.items())
        return Response(
            content=reply.body,
            status_code=reply.status,
            headers=reply.headers,
        )

    @router.get(f"{path}/stats")
    async def proxy_stats():
        return gateway.get_statistics()

    return router
