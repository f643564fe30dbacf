"""
Spud Errors - Typed failures with stable machine codes

Every failure the SDK surfaces is a SpudError subclass carrying a stable
``code``. Callers branch on the code (or the class), never on the message.

Codes:
- AUTH_FAILED        - API key exchange rejected or returned a bad expiry
- NOT_CONNECTED      - request() before connect()
- CLIENT_DESTROYED   - any operation after destroy()
- API_ERROR          - non-2xx response from the platform (carries status)
- TIMEOUT            - outbound call exceeded its timeout
- NETWORK_ERROR      - outbound call failed at the transport layer
- INVALID_JWT        - malformed inbound token
- INVALID_SIGNATURE  - signature does not verify
- TOKEN_EXPIRED      - exp claim not in the future
- KEY_NOT_FOUND      - kid absent from the key set after a forced refetch
- UNSUPPORTED_ALG    - alg other than RS256 / ES256
- MISSING_TOKEN      - no X-Spud-Token header
- JWKS_FETCH_FAILED  - key set endpoint unreachable or malformed
- TOOL_DENIED        - governance denied a wrapped tool call
"""

from typing import Any, Dict, Optional


class SpudError(Exception):
    """Base error for everything raised by the SDK."""

    code = "SPUD_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        """JSON body used by the HTTP adapters."""
        return {"error": self.message, "code": self.code}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


# === Session lifecycle ===


class AuthenticationError(SpudError):
    code = "AUTH_FAILED"


class NotConnected(SpudError):
    code = "NOT_CONNECTED"

    def __init__(self, message: str = "Client is not connected, call connect() first"):
        super().__init__(message)


class Destroyed(SpudError):
    code = "CLIENT_DESTROYED"

    def __init__(self, message: str = "Client has been destroyed"):
        super().__init__(message)


class ApiError(SpudError):
    code = "API_ERROR"

    def __init__(self, message: str, status_code: int):
        super().__init__(message, status_code=status_code)

    @property
    def status(self) -> int:
        return self.status_code


class RequestTimeout(SpudError):
    code = "TIMEOUT"


class NetworkError(SpudError):
    code = "NETWORK_ERROR"


# === Token validation ===


class InvalidFormat(SpudError):
    code = "INVALID_JWT"


class InvalidSignature(SpudError):
    code = "INVALID_SIGNATURE"


class TokenExpired(SpudError):
    code = "TOKEN_EXPIRED"


class KeyNotFound(SpudError):
    code = "KEY_NOT_FOUND"


class UnsupportedAlgorithm(SpudError):
    code = "UNSUPPORTED_ALG"


class MissingToken(SpudError):
    code = "MISSING_TOKEN"

    def __init__(self, message: str = "Missing X-Spud-Token header"):
        super().__init__(message, status_code=401)


class JwksFetchFailed(SpudError):
    code = "JWKS_FETCH_FAILED"


# === Agent side ===


class ToolDenied(SpudError):
    """Raised by tool wrappers when governance does not let a call proceed."""

    code = "TOOL_DENIED"

    def __init__(self, message: str, decision: Any = None):
        super().__init__(message)
        self.decision = decision
