"""
Governance Interceptor - Final proceed/deny verdict for a tool call

Flow for one tool call:
1. Run all context providers concurrently and merge their output
2. Attach the tool name and arguments
3. POST /v1/govern (blocking) through the TokenSession
4. On success keep the raw decision; on any failure fabricate one from
   the failure policy
5. Derive "proceed" from the governance mode

Modes:
- enforcing:  proceed == decision.permitted
- permissive: proceed is always True; a deny is logged, not enforced
- dry-run:    proceed is always True; the decision is not auditable

Nothing is stored between calls: decide() depends only on its input, the
registered providers, the mode/policy, and whether the service answers.
"""

import logging
from typing import Any, Dict, Optional

from ..config.settings import AgentConfig
from ..core.client import TokenSession
from ..core.govern import govern
from ..core.models import (
    ContextProvider,
    Decision,
    FailureMode,
    GovernanceMode,
    GovernRequest,
    InterceptResult,
    ToolCall,
)
from .context import AgentContext

logger = logging.getLogger(__name__)


def action_for(tool_name: str) -> str:
    """Action string sent to the platform for a tool invocation."""
    return f"tool:{tool_name}"


class GovernanceInterceptor:
    """
    Intercepts outbound agent tool calls and runs governance checks.

    Usage:
        interceptor = GovernanceInterceptor(session, AgentConfig(mode="enforcing"))
        interceptor.add_context_provider(user_context)

        result = await interceptor.decide(ToolCall("send_email", {"to": "..."}))
        if result.proceed:
            ...
    """

    def __init__(self, session: TokenSession, config: Optional[AgentConfig] = None):
        self._session = session
        self._context = AgentContext(config)

    @property
    def session(self) -> TokenSession:
        return self._session

    @property
    def mode(self) -> GovernanceMode:
        return self._context.mode

    @property
    def context(self) -> AgentContext:
        return self._context

    # === Enrichment ===

    def add_context_provider(self, provider: ContextProvider) -> "GovernanceInterceptor":
        """Register a context provider. Returns self for chaining."""
        self._context.add_provider(provider)
        return self

    enrich_context = add_context_provider

    # === Decisions ===

    def resolve_failure_mode(self, tool_name: str) -> FailureMode:
        return self._context.failure_mode_for(tool_name)

    failure_mode_for = resolve_failure_mode

    async def decide(self, tool_call: ToolCall) -> InterceptResult:
        """
        Run a governance check for a single tool call.

        Never raises for an unreachable decision service; the failure
        policy supplies a synthetic decision instead. Exceptions raised by
        context providers propagate to the caller.
        """
        entity_context = await self._context.build_context(tool_call)
        request = GovernRequest(
            action=action_for(tool_call.name),
            context={
                **entity_context,
                "tool_name": tool_call.name,
                "tool_arguments": tool_call.arguments,
            },
            blocking=True,
        )

        try:
            decision = await govern(self._session, request)
        except Exception as e:
            decision = self._context.fail_closed.handle_failure(tool_call.name, e)

        return self._apply_mode(tool_call, decision)

    intercept = decide

    def _apply_mode(self, tool_call: ToolCall, decision: Decision) -> InterceptResult:
        mode = self._context.mode

        if mode == GovernanceMode.DRY_RUN:
            logger.debug(
                f"[dry-run] {tool_call.name}: permitted={decision.permitted} "
                f"reason={decision.reason}"
            )
            return InterceptResult(proceed=True, decision=decision, auditable=False)

        if mode == GovernanceMode.PERMISSIVE:
            if not decision.permitted:
                logger.warning(
                    f"[permissive] {tool_call.name} would be denied "
                    f"(decision={decision.decision_id or 'synthetic'}): {decision.reason}"
                )
            return InterceptResult(proceed=True, decision=decision)

        if not decision.permitted:
            logger.info(
                f"Denied {tool_call.name} "
                f"(decision={decision.decision_id or 'synthetic'}): {decision.reason}"
            )
        return InterceptResult(proceed=decision.permitted, decision=decision)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "mode": self._context.mode.value,
            "context_providers": self._context.provider_count,
            "failures": self._context.fail_closed.get_stats(),
        }
