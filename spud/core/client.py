"""
Token Session - Authenticated connection to the Spud platform

Owns the bearer credential and every network call made with it:
1. Exchange the API key for a short-lived token (POST /v1/auth/token)
2. Refresh the token silently before it expires
3. Send a best-effort heartbeat at a fixed interval
4. Attach the token to authenticated requests

The refresh and heartbeat loops are two asyncio tasks owned by the session
and cancelled together by destroy(). The credential is a frozen value that
is swapped in a single assignment; readers never see a partial update.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

import aiohttp
from pydantic import ValidationError

from ..api.models import TokenRequest, TokenResponse
from ..config.settings import SpudConfig
from .errors import (
    ApiError,
    AuthenticationError,
    Destroyed,
    NetworkError,
    NotConnected,
    RequestTimeout,
)
from .models import Credential

logger = logging.getLogger(__name__)


def _is_success(status: int) -> bool:
    return 200 <= status < 300


class TokenSession:
    """
    Low-level API client that owns the token lifecycle.

    Usage:
        session = TokenSession(SpudConfig(api_key="..."))
        await session.connect()
        data = await session.request("POST", "/v1/govern", {...})
        session.destroy()
    """

    def __init__(self, config: SpudConfig, clock: Callable[[], float] = time.time):
        self._config = config
        self._clock = clock
        self._timeout = aiohttp.ClientTimeout(total=config.timeout_seconds)

        self._credential: Optional[Credential] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._destroyed = False

        # Statistics
        self._refresh_count = 0
        self._refresh_failures = 0
        self._heartbeats_sent = 0
        self._heartbeat_failures = 0

    @property
    def config(self) -> SpudConfig:
        return self._config

    @property
    def timeout(self) -> aiohttp.ClientTimeout:
        return self._timeout

    # === Bootstrap ===

    async def connect(self) -> None:
        """Exchange the API key for a token and start the background tasks."""
        if self._destroyed:
            raise Destroyed()

        credential = await self._fetch_credential()
        if self._destroyed:
            # destroy() ran while the exchange was in flight
            raise Destroyed()

        self._credential = credential
        logger.info(
            f"Connected to {self._config.base_url} "
            f"(token expires in {self.seconds_until_expiry:.0f}s)"
        )
        self._start_background_tasks()

    def destroy(self) -> None:
        """Cancel both background tasks and clear the credential. Idempotent."""
        self._destroyed = True
        for task in (self._refresh_task, self._heartbeat_task):
            if task is not None and not task.done():
                task.cancel()
        self._refresh_task = None
        self._heartbeat_task = None
        if self._credential is not None:
            logger.info("Session destroyed")
        self._credential = None

    def _start_background_tasks(self) -> None:
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._refresh_loop())
        if self._heartbeat_task is None or self._heartbeat_task.done():
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    # === Authenticated requests ===

    async def request(self, method: str, path: str, body: Any = None) -> Any:
        """
        Make an authenticated request to the Spud API.

        Args:
            method: HTTP method
            path: Path appended to the base URL (e.g. "/v1/govern")
            body: JSON-serializable body, or None for no body

        Returns:
            Decoded JSON response (None for an empty body)

        Raises:
            Destroyed, NotConnected, ApiError, RequestTimeout, NetworkError
        """
        if self._destroyed:
            raise Destroyed()
        credential = self._credential
        if credential is None:
            raise NotConnected()

        url = f"{self._config.base_url}{path}"
        kwargs: Dict[str, Any] = {}
        if body is not None:
            kwargs["json"] = body

        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.request(
                    method,
                    url,
                    headers=self._auth_headers(credential),
                    **kwargs,
                ) as response:
                    if not _is_success(response.status):
                        text = await response.text()
                        raise ApiError(
                            f"API request failed: {response.status} {response.reason} - {text}",
                            status_code=response.status,
                        )
                    return await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise RequestTimeout(
                f"{method} {path} timed out after {self._config.timeout_seconds}s"
            ) from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e

    # === Token lifecycle ===

    async def _fetch_credential(self) -> Credential:
        url = f"{self._config.base_url}/v1/auth/token"
        payload = TokenRequest(api_key=self._config.api_key).model_dump()

        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.post(url, json=payload) as response:
                    if not _is_success(response.status):
                        text = await response.text()
                        raise AuthenticationError(
                            f"Token exchange failed: {response.status} {response.reason} - {text}",
                            status_code=response.status,
                        )
                    data = await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise RequestTimeout(
                f"Token exchange timed out after {self._config.timeout_seconds}s"
            ) from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"Token exchange failed: {e}") from e
        except ValueError as e:
            raise AuthenticationError("Token exchange returned invalid JSON") from e

        try:
            parsed = TokenResponse.model_validate(data)
        except ValidationError as e:
            raise AuthenticationError(f"Malformed token response: {e}") from e

        self._check_expiry(parsed.expires_at)
        return Credential(token=parsed.token, expires_at=parsed.expires_at)

    def _check_expiry(self, expires_at: float) -> None:
        """Reject expiries in the past or beyond the maximum lifetime."""
        now = self._clock()
        if expires_at <= now:
            raise AuthenticationError(
                f"Token expiry {expires_at} is not in the future (now={now:.0f})"
            )
        if expires_at - now > self._config.max_token_lifetime_seconds:
            raise AuthenticationError(
                f"Token lifetime {expires_at - now:.0f}s exceeds maximum "
                f"{self._config.max_token_lifetime_seconds:.0f}s"
            )

    def refresh_delay(self) -> float:
        """Seconds until the next refresh: max(time_until_expiry - margin, 0)."""
        credential = self._credential
        if credential is None:
            return 0.0
        remaining = credential.seconds_remaining(self._clock())
        return max(remaining - self._config.refresh_before_expiry_seconds, 0.0)

    async def _refresh_loop(self) -> None:
        """Background task: refresh before expiry, retry on failure, forever."""
        while not self._destroyed:
            try:
                await asyncio.sleep(self.refresh_delay())
                credential = await self._fetch_credential()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._refresh_failures += 1
                logger.warning(
                    f"Token refresh failed, retrying in "
                    f"{self._config.refresh_retry_seconds}s: {e}"
                )
                try:
                    await asyncio.sleep(self._config.refresh_retry_seconds)
                except asyncio.CancelledError:
                    break
                continue

            if self._destroyed:
                break
            self._credential = credential
            self._refresh_count += 1
            logger.debug(f"Token refreshed (expires_at={credential.expires_at})")

    # === Heartbeat ===

    async def _heartbeat_loop(self) -> None:
        """Background task: best-effort liveness signal, failures swallowed."""
        while not self._destroyed:
            try:
                await asyncio.sleep(self._config.heartbeat_interval_seconds)
            except asyncio.CancelledError:
                break

            credential = self._credential
            if self._destroyed or credential is None:
                continue

            try:
                await self._send_heartbeat(credential)
                self._heartbeats_sent += 1
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._heartbeat_failures += 1
                logger.debug(f"Heartbeat failed: {e}")

    async def _send_heartbeat(self, credential: Credential) -> None:
        url = f"{self._config.base_url}/v1/heartbeat"
        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            async with session.post(url, headers=self._auth_headers(credential)) as response:
                await response.read()

    # === Accessors ===

    @staticmethod
    def _auth_headers(credential: Credential) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {credential.token}",
            "Content-Type": "application/json",
        }

    @property
    def is_connected(self) -> bool:
        """Whether the session currently holds a credential."""
        return self._credential is not None and not self._destroyed

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    @property
    def seconds_until_expiry(self) -> float:
        """Seconds until the cached token expires, or 0 if not connected."""
        credential = self._credential
        if credential is None:
            return 0.0
        return max(credential.seconds_remaining(self._clock()), 0.0)

    @property
    def auth_token(self) -> Optional[str]:
        """Current token, or None if not connected. Used by the proxy."""
        credential = self._credential
        return credential.token if credential is not None else None

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "connected": self.is_connected,
            "seconds_until_expiry": self.seconds_until_expiry,
            "refresh_count": self._refresh_count,
            "refresh_failures": self._refresh_failures,
            "heartbeats_sent": self._heartbeats_sent,
            "heartbeat_failures": self._heartbeat_failures,
        }
