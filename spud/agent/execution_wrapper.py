"""
Execution Wrapper - Governance boundary around tool execution

Wraps tool callables so that decide() runs BEFORE any tool effect:
1. Build a ToolCall from the invocation arguments
2. Ask the interceptor for a verdict
3. Proceed -> call the original tool
4. No proceed -> raise ToolDenied carrying the decision's reason

The wrapper holds a reference to the original tool and delegates to it;
it never copies the tool's internals. Attribute reads that the wrapper
does not define fall through to the original, so framework code that
inspects ``name``, ``description`` or a schema keeps working.
"""

import inspect
import json
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..core.errors import ToolDenied
from ..core.models import InterceptResult, ToolCall
from .interceptor import GovernanceInterceptor

logger = logging.getLogger(__name__)


def arguments_from_input(value: Any) -> Dict[str, Any]:
    """Tool input as an argument mapping; scalars are wrapped as {"input": value}."""
    if isinstance(value, Mapping):
        return dict(value)
    return {"input": value}


def _denial(tool_name: str, result: InterceptResult) -> ToolDenied:
    reason = result.decision.reason or f'Tool "{tool_name}" denied by governance policy'
    return ToolDenied(reason, decision=result.decision)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class GovernedTool:
    """
    Governed stand-in for a tool.

    Usage:
        governed = GovernedTool(interceptor, search_tool)
        result = await governed.invoke({"query": "test"})

        # plain callables work too
        governed = GovernedTool(interceptor, send_email, name="send_email")
        await governed(to="user@example.com")
    """

    def __init__(
        self,
        interceptor: GovernanceInterceptor,
        tool: Any,
        name: Optional[str] = None,
    ):
        tool_name = name or getattr(tool, "name", None) or getattr(tool, "__name__", None)
        if not tool_name:
            raise ValueError("Tool has no name; pass name= explicitly")
        self._interceptor = interceptor
        self._tool = tool
        self.name: str = tool_name

    @property
    def wrapped(self) -> Any:
        """The original tool object."""
        return self._tool

    def __getattr__(self, item: str) -> Any:
        # Only reached for attributes the wrapper itself does not define
        if item in ("_tool", "_interceptor"):
            raise AttributeError(item)
        return getattr(self._tool, item)

    async def check(self, arguments: Dict[str, Any]) -> InterceptResult:
        """Govern one invocation; raise ToolDenied if it may not proceed."""
        result = await self._interceptor.decide(ToolCall(name=self.name, arguments=arguments))
        if not result.proceed:
            raise _denial(self.name, result)
        return result

    async def invoke(self, input: Any, *args: Any, **kwargs: Any) -> Any:
        """Governed equivalent of ``tool.invoke(input, ...)``."""
        await self.check(arguments_from_input(input))
        return await _maybe_await(self._tool.invoke(input, *args, **kwargs))

    async def __call__(self, *args: Any, **kwargs: Any) -> Any:
        """Governed call of the original callable."""
        if kwargs and not args:
            arguments = dict(kwargs)
        elif len(args) == 1 and not kwargs:
            arguments = arguments_from_input(args[0])
        else:
            arguments = {"args": list(args), **kwargs}
        await self.check(arguments)
        return await _maybe_await(self._tool(*args, **kwargs))

    def __repr__(self) -> str:
        return f"GovernedTool(name={self.name!r}, tool={self._tool!r})"


def wrap_tool(
    interceptor: GovernanceInterceptor, tool: Any, name: Optional[str] = None
) -> GovernedTool:
    """Wrap a single tool with governance."""
    return GovernedTool(interceptor, tool, name=name)


def wrap_tools(interceptor: GovernanceInterceptor, tools: Any) -> Any:
    """
    Wrap a collection of tools.

    A list of tool objects returns a list of GovernedTool; a mapping of
    name -> callable returns a mapping with the same keys.
    """
    if isinstance(tools, Mapping):
        return {name: GovernedTool(interceptor, tool, name=name) for name, tool in tools.items()}
    return [GovernedTool(interceptor, tool) for tool in tools]


async def filter_tool_calls(
    interceptor: GovernanceInterceptor,
    tool_calls: Iterable[Mapping[str, Any]],
    name_key: str = "toolName",
    args_key: str = "args",
) -> List[Mapping[str, Any]]:
    """
    Drop tool calls that may not proceed from a model response.

    Each call is a mapping carrying the tool name and its arguments, either
    as a mapping or as a JSON-encoded string. Undecodable arguments are
    governed as an empty mapping. Calls are checked one at a time, in order.
    """
    governed: List[Mapping[str, Any]] = []
    for call in tool_calls:
        raw_args = call.get(args_key)
        if isinstance(raw_args, str):
            try:
                arguments = json.loads(raw_args)
            except ValueError:
                arguments = {}
        else:
            arguments = raw_args
        if not isinstance(arguments, dict):
            arguments = {}

        result = await interceptor.decide(ToolCall(name=call[name_key], arguments=arguments))
        if result.proceed:
            governed.append(call)
        else:
            logger.info(f"Dropped tool call {call[name_key]}: {result.decision.reason}")
    return governed

