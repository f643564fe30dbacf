"""
Agent Context - Business context and policy for governance decisions

Holds the context providers that add business context (user id, org,
roles, ...) to every governance request, plus the governance mode and
failure policy configuration.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from ..config.settings import AgentConfig
from ..core.fail_closed import FailClosedHandler, FailurePolicy
from ..core.models import ContextProvider, FailureMode, GovernanceMode, ToolCall

logger = logging.getLogger(__name__)


class AgentContext:
    """Context providers plus mode and failure policy for one agent."""

    def __init__(self, config: Optional[AgentConfig] = None):
        config = config or AgentConfig()
        self.mode: GovernanceMode = config.mode
        self.failure_policy: FailurePolicy = config.failure_policy
        self.fail_closed = FailClosedHandler(self.failure_policy)
        self._providers: List[ContextProvider] = []

    # === Context providers ===

    def add_provider(self, provider: ContextProvider) -> None:
        """
        Register an async function that adds business context to every
        governance request.

        Usage:
            async def user_context(tool_call):
                return {"user_id": session.user_id, "org_id": session.org_id}

            context.add_provider(user_context)
        """
        self._providers.append(provider)
        logger.debug(f"Context provider registered ({len(self._providers)} total)")

    @property
    def provider_count(self) -> int:
        return len(self._providers)

    async def build_context(self, tool_call: ToolCall) -> Dict[str, Any]:
        """
        Run all providers concurrently and merge their results.

        Results are merged in registration order, so a later provider's
        keys overwrite an earlier provider's regardless of which one
        finished first.
        """
        if not self._providers:
            return {}

        results = await asyncio.gather(
            *(provider(tool_call) for provider in self._providers)
        )

        merged: Dict[str, Any] = {}
        for result in results:
            if result:
                merged.update(result)
        return merged

    # === Failure mode resolution ===

    def failure_mode_for(self, tool_name: str) -> FailureMode:
        """Whether a tool fails open or closed when governance is unreachable."""
        return self.failure_policy.resolve(tool_name)
