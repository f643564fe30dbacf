"""
Fail-Closed Handler - Decisions when governance is unreachable

When the decision service cannot be reached (timeout, network error,
non-success status, malformed reply), the caller still gets a
decision-shaped answer:
1. The tool name is matched against the failure policy
2. fail_open patterns are checked first, then fail_closed, then the default
3. A synthetic Decision is fabricated (permitted == fail-open)
4. The failure is logged with its category

Patterns are exact tool names, or a prefix followed by a trailing "*".

NOTE: a name matching both lists fails OPEN because fail_open is checked
first. Keep this ordering; it is flagged for product review.
The proxy has a sibling note: JSON-RPC batches bypass governance (api/proxy.py).
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

import aiohttp

from .errors import ApiError, NetworkError, RequestTimeout
from .models import Decision, FailureMode

logger = logging.getLogger(__name__)

FAIL_OPEN_REASON = "Governance unavailable — fail-open applied"
FAIL_CLOSED_REASON = "Governance unavailable — fail-closed applied"


class FailureCategory(Enum):
    """Categories of governance failures"""

    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    API_ERROR = "api_error"
    INVALID_RESPONSE = "invalid_response"
    UNKNOWN_ERROR = "unknown_error"


def match_pattern(pattern: str, name: str) -> bool:
    """Exact match, or prefix match when the pattern ends with '*'."""
    if pattern.endswith("*"):
        return name.startswith(pattern[:-1])
    return pattern == name


def matches_any(patterns: Iterable[str], name: str) -> bool:
    return any(match_pattern(p, name) for p in patterns)


@dataclass(frozen=True)
class FailurePolicy:
    """Per-session rules for tools when governance is down."""

    fail_open: Tuple[str, ...] = ()
    fail_closed: Tuple[str, ...] = ()
    default: FailureMode = FailureMode.CLOSED

    @classmethod
    def create(
        cls,
        fail_open: Optional[Iterable[str]] = None,
        fail_closed: Optional[Iterable[str]] = None,
        default: Any = FailureMode.CLOSED,
    ) -> "FailurePolicy":
        return cls(
            fail_open=tuple(fail_open or ()),
            fail_closed=tuple(fail_closed or ()),
            default=FailureMode(default),
        )

    def resolve(self, tool_name: str) -> FailureMode:
        """Fail-open patterns first, then fail-closed, then the default."""
        if matches_any(self.fail_open, tool_name):
            return FailureMode.OPEN
        if matches_any(self.fail_closed, tool_name):
            return FailureMode.CLOSED
        return self.default


def categorize_failure(error: BaseException) -> FailureCategory:
    """Map an exception from the decision request to a category."""
    if isinstance(error, (RequestTimeout, asyncio.TimeoutError)):
        return FailureCategory.TIMEOUT
    if isinstance(error, (NetworkError, aiohttp.ClientError)):
        return FailureCategory.NETWORK_ERROR
    if isinstance(error, ApiError):
        return FailureCategory.API_ERROR
    if isinstance(error, (ValueError, TypeError, KeyError)):
        return FailureCategory.INVALID_RESPONSE
    return FailureCategory.UNKNOWN_ERROR


class FailClosedHandler:
    """
    Turns a failed decision request into a synthetic Decision.

    Default behavior: DENY unless the tool matches a fail-open pattern
    or the policy default is overridden to open.
    """

    def __init__(self, policy: Optional[FailurePolicy] = None):
        self.policy = policy or FailurePolicy()
        self._failure_count = 0
        self._last_failure: Optional[datetime] = None

    def failure_mode_for(self, tool_name: str) -> FailureMode:
        return self.policy.resolve(tool_name)

    def handle_failure(self, tool_name: str, error: BaseException) -> Decision:
        """
        Build the synthetic decision for a tool whose governance check failed.

        Args:
            tool_name: Name of the tool being governed
            error: Whatever the decision request raised

        Returns:
            Decision with permitted == (failure mode is open) and an empty id
        """
        self._failure_count += 1
        self._last_failure = datetime.utcnow()

        category = categorize_failure(error)
        mode = self.failure_mode_for(tool_name)
        allowed = mode == FailureMode.OPEN

        logger.warning(
            f"Governance failure ({category.value}): {error!r} | "
            f"Tool: {tool_name} | Fail mode: {mode.value}"
        )

        return Decision(
            permitted=allowed,
            reason=FAIL_OPEN_REASON if allowed else FAIL_CLOSED_REASON,
            decision_id="",
        )

    def get_stats(self) -> Dict[str, Any]:
        """Get failure statistics"""
        return {
            "failure_count": self._failure_count,
            "last_failure": (
                self._last_failure.isoformat() if self._last_failure else None
            ),
            "fail_open_patterns": list(self.policy.fail_open),
            "fail_closed_patterns": list(self.policy.fail_closed),
            "default": self.policy.default.value,
        }
