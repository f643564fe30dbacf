"""
Spud SDK - Entry points

Two handles, one per side of a governed tool call:

Agent side ("belt"):
    spud = await Spud.init(SpudConfig(api_key=os.environ["SPUD_API_KEY"]))
    agent = spud.agent(AgentConfig(mode="enforcing"))
    agent.add_context_provider(user_context)

    result = await agent.decide(ToolCall("send_email", {"to": "..."}))

Tool-server side ("braces"):
    server = await SpudServer.init(ServerConfig(api_key=os.environ["SPUD_API_KEY"]))
    app.middleware("http")(server.middleware())

    @app.post("/tools/execute")
    async def execute(request: Request):
        claims = request.state.spud
        ...
        await server.report(ReportRequest(event_id=claims.event_id, result="success"))
"""

import logging
from typing import Any, Dict, Optional

from .agent.interceptor import GovernanceInterceptor
from .api.models import ReportResponse
from .api.proxy import ProxyGateway
from .config.settings import AgentConfig, ServerConfig, SpudConfig
from .core.client import TokenSession
from .core.govern import govern, report
from .core.models import Claims, Decision, GovernRequest, ReportRequest
from .server.validate import TrustValidator

logger = logging.getLogger(__name__)


class SpudInstance:
    """Connected agent-side handle returned by Spud.init()."""

    def __init__(self, session: TokenSession):
        self._session = session

    @property
    def session(self) -> TokenSession:
        return self._session

    async def govern(self, request: GovernRequest) -> Decision:
        """Explicit governance check for one action."""
        return await govern(self._session, request)

    def agent(self, config: Optional[AgentConfig] = None) -> GovernanceInterceptor:
        """New interceptor sharing this handle's session."""
        return GovernanceInterceptor(self._session, config)

    def proxy(self, upstream: str, config: Optional[AgentConfig] = None) -> ProxyGateway:
        """MCP proxy gateway governing calls to ``upstream``."""
        return ProxyGateway(self.agent(config), upstream)

    @property
    def is_connected(self) -> bool:
        return self._session.is_connected

    def destroy(self) -> None:
        """Stop heartbeats and token refresh."""
        self._session.destroy()


class Spud:
    """Agent-side entry point."""

    @staticmethod
    async def init(config: SpudConfig) -> SpudInstance:
        """Exchange the API key for a token, start background tasks, return a handle."""
        session = TokenSession(config)
        await session.connect()
        return SpudInstance(session)


class SpudServerInstance:
    """Tool-server handle returned by SpudServer.init()."""

    def __init__(self, session: TokenSession, validator: TrustValidator):
        self._session = session
        self._validator = validator

    @property
    def validator(self) -> TrustValidator:
        return self._validator

    async def validate_token(self, token: str) -> Claims:
        return await self._validator.validate_token(token)

    async def validate(self, request: Any) -> Claims:
        """Validate the X-Spud-Token header of an inbound request."""
        return await self._validator.validate_from_header(request)

    def middleware(self):
        return self._validator.as_middleware()

    def dependency(self):
        return self._validator.dependency()

    async def report(self, request: ReportRequest) -> ReportResponse:
        """Close the audit loop for an executed tool call."""
        return await report(self._session, request)

    @property
    def is_connected(self) -> bool:
        return self._session.is_connected

    def destroy(self) -> None:
        """Stop the session and drop cached signing keys."""
        self._validator.destroy()
        self._session.destroy()

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "session": self._session.get_statistics(),
            "jwks_fetches": self._validator.fetch_count,
        }


class SpudServer:
    """Tool-server entry point."""

    @staticmethod
    async def init(config: ServerConfig) -> SpudServerInstance:
        """
        Connect a session for report calls and fetch the signing keys.

        If the key set cannot be fetched the session is torn down again
        before the error propagates.
        """
        session = TokenSession(config.session_config())
        await session.connect()

        validator = TrustValidator(config)
        try:
            await validator.init()
        except Exception:
            session.destroy()
            raise

        logger.info(f"SpudServer ready ({config.base_url})")
        return SpudServerInstance(session, validator)
