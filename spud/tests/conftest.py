"""
Shared fixtures: an in-process fake of the Spud platform, a fake MCP
server, and real RSA / EC signing keys for minting tokens.
"""

import asyncio
import json
import time
import uuid

import jwt
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from jwt.algorithms import ECAlgorithm, RSAAlgorithm

from spud.config.settings import ServerConfig, SpudConfig
from spud.core.client import TokenSession


class FakePlatform:
    """Scriptable stand-in for the Spud control plane."""

    def __init__(self):
        self.token = "session-token-1"
        self.expires_in = 3600.0
        self.expires_at = None  # overrides expires_in when set
        self.token_status = 200
        self.token_delay = 0.0
        self.token_requests = []

        self.govern_response = {"permitted": True, "decision_id": "dec-1", "reason": None}
        self.govern_status = 200
        self.govern_delay = 0.0
        self.govern_requests = []

        self.confirm_response = {"acknowledged": True}
        self.confirm_requests = []

        self.heartbeats = []

        self.jwks = {"keys": []}
        self.jwks_status = 200
        self.jwks_fetches = 0

    @property
    def token_calls(self) -> int:
        return len(self.token_requests)

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/v1/auth/token", self._token)
        app.router.add_post("/v1/govern", self._govern)
        app.router.add_post("/v1/confirm", self._confirm)
        app.router.add_post("/v1/heartbeat", self._heartbeat)
        app.router.add_get("/.well-known/jwks.json", self._jwks)
        return app

    async def _token(self, request):
        self.token_requests.append(await request.json())
        if self.token_delay:
            await asyncio.sleep(self.token_delay)
        if self.token_status != 200:
            return web.json_response({"error": "invalid api key"}, status=self.token_status)
        expires_at = self.expires_at
        if expires_at is None:
            expires_at = time.time() + self.expires_in
        return web.json_response({"token": self.token, "expires_at": expires_at})

    async def _govern(self, request):
        self.govern_requests.append(
            {"headers": dict(request.headers), "body": await request.json()}
        )
        if self.govern_delay:
            await asyncio.sleep(self.govern_delay)
        return web.json_response(self.govern_response, status=self.govern_status)

    async def _confirm(self, request):
        self.confirm_requests.append(
            {"headers": dict(request.headers), "body": await request.json()}
        )
        return web.json_response(self.confirm_response)

    async def _heartbeat(self, request):
        self.heartbeats.append(dict(request.headers))
        return web.json_response({"ok": True})

    async def _jwks(self, request):
        self.jwks_fetches += 1
        if self.jwks_status != 200:
            return web.json_response({"error": "unavailable"}, status=self.jwks_status)
        return web.json_response(self.jwks)


class FakeMcpServer:
    """Records everything forwarded to it and answers with a fixed reply."""

    def __init__(self):
        self.requests = []
        self.reply = {"jsonrpc": "2.0", "id": 1, "result": {"content": []}}
        self.reply_headers = {}

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/mcp", self._handle)
        return app

    async def _handle(self, request):
        self.requests.append({"headers": request.headers.copy(), "body": await request.read()})
        return web.json_response(self.reply, headers=self.reply_headers)


class StubSession:
    """Minimal TokenSession stand-in for decision-logic tests."""

    def __init__(self, response=None, error=None):
        self.response = response if response is not None else {
            "permitted": True,
            "decision_id": "dec-1",
        }
        self.error = error
        self.calls = []
        self.auth_token = "stub-token"

    async def request(self, method, path, body=None):
        self.calls.append((method, path, body))
        if self.error is not None:
            raise self.error
        return self.response


# === Servers ===


@pytest_asyncio.fixture
async def platform():
    fake = FakePlatform()
    server = TestServer(fake.app())
    await server.start_server()
    fake.url = str(server.make_url("")).rstrip("/")
    yield fake
    await server.close()


@pytest_asyncio.fixture
async def mcp_server():
    fake = FakeMcpServer()
    server = TestServer(fake.app())
    await server.start_server()
    fake.url = str(server.make_url("/mcp"))
    yield fake
    await server.close()


@pytest.fixture
def spud_config(platform):
    return SpudConfig(api_key="sk-test", base_url=platform.url, timeout_seconds=2.0)


@pytest.fixture
def server_config(platform):
    return ServerConfig(api_key="sk-test", base_url=platform.url, timeout_seconds=2.0)


@pytest_asyncio.fixture
async def session(spud_config):
    session = TokenSession(spud_config)
    await session.connect()
    yield session
    session.destroy()
    await asyncio.sleep(0)


# === Signing keys ===


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ec_key():
    return ec.generate_private_key(ec.SECP256R1())


def public_jwk(private_key, kid: str, alg: str) -> dict:
    algorithm = RSAAlgorithm if alg == "RS256" else ECAlgorithm
    jwk = json.loads(algorithm.to_jwk(private_key.public_key()))
    jwk.update({"kid": kid, "alg": alg, "use": "sig"})
    return jwk


def mint_token(private_key, kid: str, alg: str = "RS256", **claims) -> str:
    payload = {
        "tenant_id": "tenant-1",
        "profile": "default",
        "permissions": ["tools:execute"],
        "scope": "mcp",
        "event_id": str(uuid.uuid4()),
        "iat": int(time.time()),
        "exp": int(time.time()) + 300,
    }
    payload.update(claims)
    payload = {k: v for k, v in payload.items() if v is not None}
    return jwt.encode(payload, private_key, algorithm=alg, headers={"kid": kid})


@pytest.fixture
def mint():
    return mint_token


@pytest.fixture
def jwk_for():
    return public_jwk


@pytest.fixture
def make_stub():
    return StubSession
