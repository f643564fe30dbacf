"""
Spud Proxy Daemon - Main Entry Point

Runs the MCP governance proxy as a local HTTP service (default port 8787).
An MCP client points at the proxy instead of the MCP server; every
tools/call is governed before it is forwarded upstream.

Endpoints:
- GET  /health        - Health check (session state)
- POST /mcp           - Governed MCP endpoint (path is configurable)
- GET  /mcp/stats     - Proxy counters
- GET  /api/v1/stats  - Session, interceptor and proxy statistics

Configuration comes from environment variables (see spud.config.settings).
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import uvicorn
from fastapi import FastAPI

from . import __version__
from .agent.interceptor import GovernanceInterceptor
from .api.proxy import ProxyGateway, create_proxy_routes
from .config.settings import AgentConfig, ProxyConfig, SpudConfig
from .core.client import TokenSession

logger = logging.getLogger("spud.daemon")


def create_app(
    spud_config: Optional[SpudConfig] = None,
    agent_config: Optional[AgentConfig] = None,
    proxy_config: Optional[ProxyConfig] = None,
) -> FastAPI:
    """
    Build the proxy application.

    The session connects when the app starts and is destroyed when it
    stops; no tools/call is forwarded before the first token is held.
    """
    spud_config = spud_config or SpudConfig.from_env()
    agent_config = agent_config or AgentConfig.from_env()
    proxy_config = proxy_config or ProxyConfig.from_env()

    if not proxy_config.upstream:
        raise ValueError("No upstream MCP server configured (set SPUD_UPSTREAM)")

    session = TokenSession(spud_config)
    interceptor = GovernanceInterceptor(session, agent_config)
    gateway = ProxyGateway(interceptor, proxy_config.upstream)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Spud proxy starting (upstream={proxy_config.upstream})")
        await session.connect()
        try:
            yield
        finally:
            logger.info("Spud proxy shutting down...")
            session.destroy()

    app = FastAPI(
        title="Spud Proxy",
        description="Governance proxy for MCP tool calls",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.session = session
    app.state.interceptor = interceptor
    app.state.gateway = gateway

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "ok" if session.is_connected else "disconnected",
            "service": "spud-proxy",
            "version": __version__,
            "mode": interceptor.mode.value,
            "timestamp": datetime.utcnow().isoformat() + "Z",
        }

    @app.get("/api/v1/stats")
    async def stats():
        return {
            "session": session.get_statistics(),
            "interceptor": interceptor.get_stats(),
            "proxy": gateway.get_statistics(),
        }

    app.include_router(create_proxy_routes(gateway, proxy_config.path))
    return app


# === Main Entry Point ===


def main(proxy_config: Optional[ProxyConfig] = None):
    """Run the proxy daemon."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    proxy_config = proxy_config or ProxyConfig.from_env()
    app = create_app(proxy_config=proxy_config)

    logger.info(f"Starting Spud proxy v{__version__}")
    logger.info(f"   Listening on http://{proxy_config.host}:{proxy_config.port}")
    logger.info(f"   Governed endpoint: POST {proxy_config.path}")

    uvicorn.run(
        app,
        host=proxy_config.host,
        port=proxy_config.port,
        log_level="info",
        access_log=False,
    )


if __name__ == "__main__":
    main()
