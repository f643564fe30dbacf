"""
Wire models for the Spud platform API.

Responses from the platform are validated with pydantic before they are
turned into core dataclasses; a reply that does not match is treated the
same as a failed call by the caller.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class TokenRequest(BaseModel):
    """POST /v1/auth/token"""

    api_key: str


class TokenResponse(BaseModel):
    """Reply to /v1/auth/token."""

    token: str
    expires_at: float  # Unix seconds


class GovernBody(BaseModel):
    """POST /v1/govern"""

    action: str
    context: Dict[str, Any] = Field(default_factory=dict)
    blocking: bool = True


class GovernResponse(BaseModel):
    """Reply to /v1/govern."""

    permitted: bool
    reason: Optional[str] = None
    decision_id: str = ""


class ConfirmBody(BaseModel):
    """POST /v1/confirm"""

    event_id: str
    result: Literal["success", "failure", "error"]
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ReportResponse(BaseModel):
    """Reply to /v1/confirm."""

    acknowledged: bool


class JsonWebKey(BaseModel):
    """One entry of the published key set; algorithm fields pass through."""

    model_config = {"extra": "allow"}

    kty: str
    kid: str
    alg: Optional[str] = None
    use: Optional[str] = None


class JsonWebKeySet(BaseModel):
    """GET /.well-known/jwks.json"""

    keys: List[JsonWebKey] = Field(default_factory=list)


class JsonRpcError(BaseModel):
    code: int
    message: str


class JsonRpcErrorResponse(BaseModel):
    """Protocol-level error reply, delivered with HTTP 200."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: Any = None
    error: JsonRpcError
