"""
Spud SDK - Configuration

Configuration for the agent-side session, the server-side validator, the
interceptor, and the MCP proxy daemon. Every dataclass can be built
directly or loaded with ``from_env()``.

Environment Variables:
  SPUD_API_KEY               - API key exchanged for a bearer token (keep secret!)
  SPUD_BASE_URL              - Spud platform URL (default: https://api.spud.dev)
  SPUD_HEARTBEAT_INTERVAL    - Seconds between heartbeats (default: 60)
  SPUD_REFRESH_BEFORE_EXPIRY - Seconds before expiry to refresh the token (default: 300)
  SPUD_REFRESH_RETRY         - Seconds to wait after a failed refresh (default: 30)
  SPUD_TIMEOUT               - Timeout for every outbound call, seconds (default: 10)
  SPUD_MAX_TOKEN_LIFETIME    - Longest token lifetime accepted, seconds (default: 86400)
  SPUD_JWKS_CACHE_TTL        - Signing key set cache TTL, seconds (default: 3600)
  SPUD_MODE                  - enforcing | permissive | dry-run (default: enforcing)
  SPUD_FAIL_OPEN             - Comma-separated tool patterns that fail open
  SPUD_FAIL_CLOSED           - Comma-separated tool patterns that fail closed
  SPUD_FAIL_DEFAULT          - open | closed (default: closed)
  SPUD_UPSTREAM              - MCP server endpoint the proxy forwards to
  SPUD_PROXY_HOST            - Proxy bind host (default: 127.0.0.1)
  SPUD_PROXY_PORT            - Proxy bind port (default: 8787)
  SPUD_PROXY_PATH            - Proxy route path (default: /mcp)
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List

from ..core.fail_closed import FailurePolicy
from ..core.models import FailureMode, GovernanceMode

logger = logging.getLogger("spud.config")

DEFAULT_BASE_URL = "https://api.spud.dev"
DEFAULT_HEARTBEAT_INTERVAL = 60.0
DEFAULT_REFRESH_BEFORE_EXPIRY = 300.0  # 5 minutes
DEFAULT_REFRESH_RETRY = 30.0
DEFAULT_TIMEOUT = 10.0
DEFAULT_MAX_TOKEN_LIFETIME = 86400.0  # 24 hours
DEFAULT_JWKS_CACHE_TTL = 3600.0  # 1 hour


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def normalize_base_url(url: str) -> str:
    """Strip trailing slashes so paths can be appended directly."""
    return url.rstrip("/")


@dataclass
class SpudConfig:
    """Agent-side session configuration."""

    api_key: str
    base_url: str = DEFAULT_BASE_URL
    heartbeat_interval_seconds: float = DEFAULT_HEARTBEAT_INTERVAL
    refresh_before_expiry_seconds: float = DEFAULT_REFRESH_BEFORE_EXPIRY
    refresh_retry_seconds: float = DEFAULT_REFRESH_RETRY
    timeout_seconds: float = DEFAULT_TIMEOUT
    max_token_lifetime_seconds: float = DEFAULT_MAX_TOKEN_LIFETIME

    def __post_init__(self):
        self.base_url = normalize_base_url(self.base_url)

    @classmethod
    def from_env(cls) -> "SpudConfig":
        """Load configuration from environment variables."""
        if not os.getenv("SPUD_API_KEY"):
            logger.warning("SPUD_API_KEY is not set; token exchange will fail")
        return cls(
            api_key=os.getenv("SPUD_API_KEY", ""),
            base_url=os.getenv("SPUD_BASE_URL", DEFAULT_BASE_URL),
            heartbeat_interval_seconds=_env_float(
                "SPUD_HEARTBEAT_INTERVAL", DEFAULT_HEARTBEAT_INTERVAL
            ),
            refresh_before_expiry_seconds=_env_float(
                "SPUD_REFRESH_BEFORE_EXPIRY", DEFAULT_REFRESH_BEFORE_EXPIRY
            ),
            refresh_retry_seconds=_env_float("SPUD_REFRESH_RETRY", DEFAULT_REFRESH_RETRY),
            timeout_seconds=_env_float("SPUD_TIMEOUT", DEFAULT_TIMEOUT),
            max_token_lifetime_seconds=_env_float(
                "SPUD_MAX_TOKEN_LIFETIME", DEFAULT_MAX_TOKEN_LIFETIME
            ),
        )

    def is_configured(self) -> bool:
        return bool(self.api_key)


@dataclass
class ServerConfig:
    """Tool-server configuration: key validation plus report calls."""

    api_key: str
    base_url: str = DEFAULT_BASE_URL
    jwks_cache_ttl_seconds: float = DEFAULT_JWKS_CACHE_TTL
    timeout_seconds: float = DEFAULT_TIMEOUT

    def __post_init__(self):
        self.base_url = normalize_base_url(self.base_url)

    @classmethod
    def from_env(cls) -> "ServerConfig":
        return cls(
            api_key=os.getenv("SPUD_API_KEY", ""),
            base_url=os.getenv("SPUD_BASE_URL", DEFAULT_BASE_URL),
            jwks_cache_ttl_seconds=_env_float("SPUD_JWKS_CACHE_TTL", DEFAULT_JWKS_CACHE_TTL),
            timeout_seconds=_env_float("SPUD_TIMEOUT", DEFAULT_TIMEOUT),
        )

    def session_config(self) -> SpudConfig:
        """Session settings used for the server's own report calls."""
        return SpudConfig(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout_seconds=self.timeout_seconds,
        )


@dataclass
class AgentConfig:
    """Interceptor configuration: governance mode and failure policy."""

    mode: GovernanceMode = GovernanceMode.ENFORCING
    failure_policy: FailurePolicy = field(default_factory=FailurePolicy)

    def __post_init__(self):
        self.mode = GovernanceMode(self.mode)

    @classmethod
    def from_env(cls) -> "AgentConfig":
        return cls(
            mode=GovernanceMode(os.getenv("SPUD_MODE", GovernanceMode.ENFORCING.value)),
            failure_policy=FailurePolicy.create(
                fail_open=_env_list("SPUD_FAIL_OPEN"),
                fail_closed=_env_list("SPUD_FAIL_CLOSED"),
                default=os.getenv("SPUD_FAIL_DEFAULT", FailureMode.CLOSED.value),
            ),
        )


@dataclass
class ProxyConfig:
    """MCP proxy daemon configuration."""

    upstream: str
    host: str = "127.0.0.1"
    port: int = 8787
    path: str = "/mcp"

    def __post_init__(self):
        self.upstream = normalize_base_url(self.upstream)

    @classmethod
    def from_env(cls) -> "ProxyConfig":
        return cls(
            upstream=os.getenv("SPUD_UPSTREAM", ""),
            host=os.getenv("SPUD_PROXY_HOST", "127.0.0.1"),
            port=int(os.getenv("SPUD_PROXY_PORT", "8787")),
            path=os.getenv("SPUD_PROXY_PATH", "/mcp"),
        )
