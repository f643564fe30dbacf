"""Tool-server side: inbound token verification."""

from .keys import KeyVerifier, PyJWTVerifier, SigningKeySet, SUPPORTED_ALGORITHMS
from .validate import TOKEN_HEADER, TrustValidator, extract_token

__all__ = [
    "KeyVerifier",
    "PyJWTVerifier",
    "SigningKeySet",
    "SUPPORTED_ALGORITHMS",
    "TOKEN_HEADER",
    "TrustValidator",
    "extract_token",
]
