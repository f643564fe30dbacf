"""
Spud - Governance SDK for AI agents and the tool servers they call

Architecture:
- Agent side: TokenSession, GovernanceInterceptor, tool wrappers
- Proxy: ProxyGateway governs MCP tools/call messages in flight
- Server side: TrustValidator verifies X-Spud-Token against rotating keys

Key Properties:
- Governed before execution: a tool runs only after a decision
- Failure policy: an unreachable decision service yields a decision, not a crash
- Verifiable: servers can prove governance ran on every inbound call
"""

__version__ = "0.1.0"

from .agent import AgentContext, GovernanceInterceptor, GovernedTool, filter_tool_calls, wrap_tool, wrap_tools
from .api.proxy import ProxyGateway, ProxyResponse
from .config.settings import AgentConfig, ProxyConfig, ServerConfig, SpudConfig
from .core.client import TokenSession
from .core.errors import SpudError, ToolDenied
from .core.govern import govern, report
from .core.models import (
    Claims,
    Credential,
    Decision,
    FailureMode,
    GovernanceMode,
    GovernRequest,
    InterceptResult,
    ReportRequest,
    ToolCall,
)
from .core.fail_closed import FailurePolicy
from .sdk import Spud, SpudInstance, SpudServer, SpudServerInstance
from .server import TrustValidator

__all__ = [
    "AgentConfig",
    "AgentContext",
    "Claims",
    "Credential",
    "Decision",
    "FailureMode",
    "FailurePolicy",
    "GovernanceInterceptor",
    "GovernanceMode",
    "GovernedTool",
    "GovernRequest",
    "InterceptResult",
    "ProxyConfig",
    "ProxyGateway",
    "ProxyResponse",
    "ReportRequest",
    "ServerConfig",
    "Spud",
    "SpudConfig",
    "SpudError",
    "SpudInstance",
    "SpudServer",
    "SpudServerInstance",
    "TokenSession",
    "ToolCall",
    "ToolDenied",
    "TrustValidator",
    "filter_tool_calls",
    "govern",
    "report",
    "wrap_tool",
    "wrap_tools",
]
