"""Agent side: context providers, interception, tool wrapping."""

from .context import AgentContext
from .execution_wrapper import GovernedTool, filter_tool_calls, wrap_tool, wrap_tools
from .interceptor import GovernanceInterceptor, action_for

__all__ = [
    "AgentContext",
    "GovernanceInterceptor",
    "GovernedTool",
    "action_for",
    "filter_tool_calls",
    "wrap_tool",
    "wrap_tools",
]
