"""
Trust Validator - Inbound token verification on the tool server

Authenticates the X-Spud-Token attached by the agent-side proxy:
1. Three dot-separated segments, header carrying kid + alg
2. alg must be RS256 or ES256 (rejected before any key lookup)
3. Signing key resolved from the published key set (JWKS)
4. Signature verified over "header.payload"
5. exp, when present, must be strictly in the future

Key resolution:
- parsed-key cache
- cached key set while within its TTL (refetched when stale)
- exactly one forced refetch when the kid is missing (key rotation)
- KEY_NOT_FOUND after that; never retried further

Each refetch replaces the key set whole and clears the parsed-key cache.

Usage:
    validator = TrustValidator(ServerConfig(api_key="..."))
    await validator.init()

    app.middleware("http")(validator.as_middleware())

    @app.post("/tools/execute")
    async def execute(request: Request):
        claims = request.state.spud
"""

import asyncio
import json
import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

import aiohttp
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from jwt.utils import base64url_decode
from pydantic import ValidationError

from ..api.models import JsonWebKeySet
from ..config.settings import ServerConfig
from ..core.errors import (
    InvalidFormat,
    InvalidSignature,
    JwksFetchFailed,
    KeyNotFound,
    MissingToken,
    SpudError,
    TokenExpired,
)
from ..core.models import Claims
from .keys import KeyVerifier, PyJWTVerifier, SigningKeySet, require_supported

logger = logging.getLogger(__name__)

TOKEN_HEADER = "X-Spud-Token"
JWKS_PATH = "/.well-known/jwks.json"


def _decode_segment(segment: str, what: str) -> Dict[str, Any]:
    try:
        decoded = json.loads(base64url_decode(segment.encode("ascii")))
    except (ValueError, TypeError) as e:
        raise InvalidFormat(f"Invalid JWT {what} encoding") from e
    if not isinstance(decoded, dict):
        raise InvalidFormat(f"JWT {what} is not a JSON object")
    return decoded


def extract_token(source: Any) -> Optional[str]:
    """
    Token from the X-Spud-Token header of a request or header mapping.

    A repeated header (or a list value) yields its first entry.
    """
    headers = getattr(source, "headers", source)
    if headers is None:
        return None

    for getter_name in ("getlist", "getall"):
        getter = getattr(headers, getter_name, None)
        if callable(getter):
            try:
                values = getter(TOKEN_HEADER)
            except KeyError:
                values = []
            return values[0] if values else None

    value = headers.get(TOKEN_HEADER)
    if value is None:
        value = headers.get(TOKEN_HEADER.lower())
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    return value or None


class TrustValidator:
    """
    Verifies inbound tokens against the platform's rotating signing keys.

    The verifier is injectable so tests can use substitute key material.
    """

    def __init__(
        self,
        config: ServerConfig,
        verifier: Optional[KeyVerifier] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._config = config
        self._verifier = verifier or PyJWTVerifier()
        self._clock = clock
        self._timeout = aiohttp.ClientTimeout(total=config.timeout_seconds)

        self._key_set: Optional[SigningKeySet] = None
        self._parsed_keys: Dict[Tuple[str, str], Any] = {}
        self._lock = asyncio.Lock()

        # Statistics
        self._fetch_count = 0

    @property
    def jwks_url(self) -> str:
        return f"{self._config.base_url}{JWKS_PATH}"

    @property
    def fetch_count(self) -> int:
        """Number of successful key set fetches so far."""
        return self._fetch_count

    @property
    def key_set(self) -> Optional[SigningKeySet]:
        return self._key_set

    async def init(self) -> None:
        """Fetch the key set eagerly so an unreachable endpoint fails fast."""
        key_set = await self._refresh_key_set()
        logger.info(f"TrustValidator initialized with {len(key_set)} signing keys")

    def destroy(self) -> None:
        """Drop the cached key set and parsed keys."""
        self._key_set = None
        self._parsed_keys = {}

    # === Public API ===

    async def validate_token(self, token: str) -> Claims:
        """
        Validate a raw token string and return its claims.

        Raises:
            InvalidFormat, UnsupportedAlgorithm, KeyNotFound,
            InvalidSignature, TokenExpired, JwksFetchFailed
        """
        if not isinstance(token, str):
            raise InvalidFormat("Invalid JWT format")
        parts = token.split(".")
        if len(parts) != 3:
            raise InvalidFormat("Invalid JWT format")
        header_b64, payload_b64, signature_b64 = parts

        header = _decode_segment(header_b64, "header")
        kid = header.get("kid")
        alg = header.get("alg")
        if not kid or not alg or not isinstance(kid, str) or not isinstance(alg, str):
            raise InvalidFormat("JWT missing kid or alg in header")

        require_supported(alg)
        key = await self.resolve_key(kid, alg)

        try:
            signature = base64url_decode(signature_b64.encode("ascii"))
        except (ValueError, TypeError) as e:
            raise InvalidFormat("Invalid JWT signature encoding") from e

        signing_input = f"{header_b64}.{payload_b64}".encode("utf-8")
        if not self._verifier.verify(alg, key, signing_input, signature):
            raise InvalidSignature("Invalid JWT signature")

        payload = _decode_segment(payload_b64, "payload")
        exp = payload.get("exp")
        if exp is not None:
            if isinstance(exp, bool) or not isinstance(exp, (int, float)):
                raise InvalidFormat("JWT exp claim is not numeric")
            if exp <= self._clock():
                raise TokenExpired("JWT has expired")

        return Claims.from_payload(payload)

    async def validate_from_header(self, request: Any) -> Claims:
        """Validate the X-Spud-Token header of a request (or header mapping)."""
        token = extract_token(request)
        if not token:
            raise MissingToken()
        return await self.validate_token(token)

    validate = validate_from_header

    def as_middleware(self):
        """
        Starlette/FastAPI HTTP middleware.

        On success sets ``request.state.spud`` and continues; on failure
        responds with a JSON error and never lets the exception escape.

        Usage:
            app.middleware("http")(validator.as_middleware())
        """

        async def spud_middleware(request: Request, call_next):
            try:
                claims = await self.validate_from_header(request)
            except SpudError as e:
                logger.info(f"Rejected request to {request.url.path}: {e.code}")
                return JSONResponse(e.to_dict(), status_code=401)
            except Exception:
                logger.exception("Internal error while validating token")
                return JSONResponse({"error": "Internal validation error"}, status_code=500)

            request.state.spud = claims
            return await call_next(request)

        return spud_middleware

    middleware = as_middleware

    def dependency(self):
        """
        FastAPI dependency returning the validated claims.

        Usage:
            @app.post("/tools/execute")
            async def execute(claims: Claims = Depends(validator.dependency())):
                ...
        """

        async def require_claims(request: Request) -> Claims:
            try:
                claims = await self.validate_from_header(request)
            except SpudError as e:
                raise HTTPException(status_code=401, detail=e.to_dict())
            request.state.spud = claims
            return claims

        return require_claims

    # === Key management ===

    async def resolve_key(self, kid: str, alg: str) -> Any:
        """Parsed key for kid, refetching the key set at most once when absent."""
        cached = self._parsed_keys.get((kid, alg))
        if cached is not None:
            return cached

        key_set = await self._get_key_set()
        jwk = key_set.get(kid)

        if jwk is None:
            # Force refresh in case of key rotation
            logger.info(f"Signing key {kid} not in key set, forcing refetch")
            key_set = await self._refresh_key_set()
            jwk = key_set.get(kid)

        if jwk is None:
            raise KeyNotFound(f"Signing key not found: {kid}")

        key = self._verifier.load_key(jwk, alg)
        self._parsed_keys[(kid, alg)] = key
        return key

    async def _get_key_set(self) -> SigningKeySet:
        key_set = self._key_set
        if key_set is not None and key_set.is_fresh(self._clock()):
            return key_set
        return await self._refresh_key_set()

    async def _refresh_key_set(self) -> SigningKeySet:
        """Fetch the key set and replace the cached one whole."""
        async with self._lock:
            data = await self._fetch_jwks()
            key_set = SigningKeySet.from_jwks(
                data,
                fetched_at=self._clock(),
                ttl=self._config.jwks_cache_ttl_seconds,
            )
            self._key_set = key_set
            self._parsed_keys = {}
            self._fetch_count += 1
            logger.debug(f"Fetched {len(key_set)} signing keys from {self.jwks_url}")
            return key_set

    async def _fetch_jwks(self) -> Dict[str, Any]:
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.get(self.jwks_url) as response:
                    if not 200 <= response.status < 300:
                        raise JwksFetchFailed(
                            f"Failed to fetch JWKS: {response.status} {response.reason}",
                            status_code=response.status,
                        )
                    data = await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise JwksFetchFailed(f"Fetching JWKS timed out after {self._config.timeout_seconds}s") from e
        except aiohttp.ClientError as e:
            raise JwksFetchFailed(f"Failed to fetch JWKS: {e}") from e
        except ValueError as e:
            raise JwksFetchFailed("JWKS endpoint returned invalid JSON") from e

        try:
            return JsonWebKeySet.model_validate(data).model_dump(exclude_none=True)
        except ValidationError as e:
            raise JwksFetchFailed(f"Malformed JWKS document: {e}") from e
