#!/usr/bin/env python3
"""
Spud CLI

Command-line interface for the governance proxy and for one-off checks.
Credentials and endpoints come from the SPUD_* environment variables.
"""

import argparse
import asyncio
import json
import sys

import httpx

from .agent.interceptor import GovernanceInterceptor
from .config.settings import AgentConfig, ProxyConfig, ServerConfig, SpudConfig
from .core.client import TokenSession
from .core.errors import SpudError
from .core.models import ToolCall
from .server.validate import TrustValidator


def proxy_url(args) -> str:
    return f"http://{args.host}:{args.port}"


def cmd_serve(args):
    """Run the proxy daemon."""
    from .main import main as run_daemon

    config = ProxyConfig.from_env()
    if args.upstream:
        config.upstream = args.upstream.rstrip("/")
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if not config.upstream:
        print("❌ No upstream configured. Pass --upstream or set SPUD_UPSTREAM")
        sys.exit(1)
    run_daemon(config)


def cmd_status(args):
    """Show proxy daemon status."""
    try:
        with httpx.Client(base_url=proxy_url(args), timeout=10) as client:
            health = client.get("/health").json()
            stats = client.get("/api/v1/stats").json()
    except httpx.ConnectError:
        print("❌ Spud proxy not running")
        print("Start with: spud serve --upstream http://localhost:3000/mcp")
        sys.exit(1)

    print("🛡️  Spud Proxy Status")
    print("=" * 40)
    print(f"Status: {health['status']}")
    print(f"Version: {health['version']}")
    print(f"Mode: {health['mode']}")
    print()

    session = stats["session"]
    print(f"Token expires in: {session['seconds_until_expiry']:.0f}s")
    print(f"Refreshes: {session['refresh_count']} ({session['refresh_failures']} failed)")
    print()

    proxy = stats["proxy"]
    print(f"Forwarded: {proxy['forwarded']}")
    print(f"Governed: {proxy['governed']}")
    print(f"Denied: {proxy['denied']}")


async def _check(tool_name: str, arguments: dict) -> int:
    session = TokenSession(SpudConfig.from_env())
    try:
        await session.connect()
        interceptor = GovernanceInterceptor(session, AgentConfig.from_env())
        result = await interceptor.decide(ToolCall(name=tool_name, arguments=arguments))
    finally:
        session.destroy()

    decision = result.decision
    icon = "✅" if result.proceed else "❌"
    print(f"{icon} {tool_name}: {'proceed' if result.proceed else 'blocked'}")
    print(f"   Permitted: {decision.permitted}")
    print(f"   Decision: {decision.decision_id or '(synthetic)'}")
    if decision.reason:
        print(f"   Reason: {decision.reason}")
    return 0 if result.proceed else 2


def cmd_check(args):
    """Ask for a governance decision on a tool call."""
    try:
        arguments = json.loads(args.args)
    except ValueError as e:
        print(f"❌ --args is not valid JSON: {e}")
        sys.exit(1)
    if not isinstance(arguments, dict):
        print("❌ --args must be a JSON object")
        sys.exit(1)

    try:
        code = asyncio.run(_check(args.tool, arguments))
    except SpudError as e:
        print(f"❌ {e.code}: {e.message}")
        sys.exit(1)
    sys.exit(code)


async def _validate(token: str):
    validator = TrustValidator(ServerConfig.from_env())
    try:
        return await validator.validate_token(token)
    finally:
        validator.destroy()


def cmd_validate(args):
    """Validate an X-Spud-Token and print its claims."""
    try:
        claims = asyncio.run(_validate(args.token))
    except SpudError as e:
        print(f"❌ {e.code}: {e.message}")
        sys.exit(1)

    print("✅ Token valid")
    print(json.dumps(claims.to_dict(), indent=2))


def main():
    parser = argparse.ArgumentParser(
        description="Spud governance CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  spud serve --upstream http://localhost:3000/mcp   Run the MCP proxy
  spud status                                       Show proxy status
  spud check send_email --args '{"to": "a@b.c"}'    Test a tool call
  spud validate eyJhbGciOi...                       Verify a token
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the proxy daemon")
    serve_parser.add_argument("--upstream", help="MCP server endpoint")
    serve_parser.add_argument("--host", help="Bind host")
    serve_parser.add_argument("--port", type=int, help="Bind port")
    serve_parser.set_defaults(func=cmd_serve)

    # status
    status_parser = subparsers.add_parser("status", help="Show proxy status")
    status_parser.add_argument("--host", default="127.0.0.1")
    status_parser.add_argument("--port", type=int, default=8787)
    status_parser.set_defaults(func=cmd_status)

    # check
    check_parser = subparsers.add_parser("check", help="Govern a single tool call")
    check_parser.add_argument("tool", help="Tool name")
    check_parser.add_argument("--args", default="{}", help="Tool arguments as JSON")
    check_parser.set_defaults(func=cmd_check)

    # validate
    validate_parser = subparsers.add_parser("validate", help="Validate a token")
    validate_parser.add_argument("token", help="Raw X-Spud-Token value")
    validate_parser.set_defaults(func=cmd_validate)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
