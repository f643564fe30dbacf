"""
Core data model shared by the agent side and the server side.

Credential and Decision are frozen: a new value replaces the old one as a
whole, so concurrent readers never see a half-updated object.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Mapping, Optional

from .errors import InvalidFormat


class GovernanceMode(Enum):
    """How the interceptor reacts to governance decisions."""

    ENFORCING = "enforcing"  # Block on deny
    PERMISSIVE = "permissive"  # Log but allow
    DRY_RUN = "dry-run"  # Evaluate, neither block nor audit


class FailureMode(Enum):
    """What to do with a tool call when governance is unreachable."""

    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class Credential:
    """Short-lived bearer token obtained by exchanging the API key."""

    token: str
    expires_at: float  # Unix seconds

    def seconds_remaining(self, now: float) -> float:
        return self.expires_at - now


@dataclass
class ToolCall:
    """A single tool invocation the agent wants to make."""

    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Decision:
    """Governance verdict for one action, as returned by the platform."""

    permitted: bool
    decision_id: str = ""
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "permitted": self.permitted,
            "reason": self.reason,
            "decision_id": self.decision_id,
        }


@dataclass(frozen=True)
class InterceptResult:
    """Outcome of an interception: the raw decision plus the derived verdict."""

    proceed: bool
    decision: Decision
    auditable: bool = True


@dataclass
class GovernRequest:
    """Parameters for an explicit govern call."""

    action: str
    context: Dict[str, Any] = field(default_factory=dict)
    blocking: bool = True


@dataclass
class ReportRequest:
    """Execution outcome reported back through /v1/confirm."""

    event_id: str
    result: str  # success | failure | error
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Claims:
    """Decoded payload of a validated inbound token."""

    tenant_id: Optional[str] = None
    profile: Optional[str] = None
    permissions: FrozenSet[str] = frozenset()
    scope: Optional[str] = None
    event_id: Optional[str] = None
    exp: Optional[float] = None
    iat: Optional[float] = None
    sub: Optional[str] = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Claims":
        permissions = payload.get("permissions") or ()
        if isinstance(permissions, str):
            permissions = (permissions,)
        if not isinstance(permissions, (list, tuple)) or not all(
            isinstance(p, str) for p in permissions
        ):
            raise InvalidFormat("JWT permissions claim must be a string or a list of strings")
        return cls(
            tenant_id=payload.get("tenant_id"),
            profile=payload.get("profile"),
            permissions=frozenset(permissions),
            scope=payload.get("scope"),
            event_id=payload.get("event_id"),
            exp=payload.get("exp"),
            iat=payload.get("iat"),
            sub=payload.get("sub"),
            raw=dict(payload),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "profile": self.profile,
            "permissions": sorted(self.permissions),
            "scope": self.scope,
            "event_id": self.event_id,
            "exp": self.exp,
            "iat": self.iat,
            "sub": self.sub,
        }


# Async function that contributes business context for one tool call
ContextProvider = Callable[[ToolCall], Awaitable[Dict[str, Any]]]
