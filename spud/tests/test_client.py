"""
TokenSession tests: token exchange, expiry window, refresh, heartbeat and
request errors, all against the in-process fake platform.
"""

import asyncio

import pytest

from spud.config.settings import SpudConfig
from spud.core.client import TokenSession
from spud.core.errors import (
    ApiError,
    AuthenticationError,
    Destroyed,
    NetworkError,
    NotConnected,
    RequestTimeout,
)

NOW = 1_700_000_000.0


def fixed_clock():
    return NOW


def make_config(platform, **overrides):
    values = {"api_key": "sk-test", "base_url": platform.url, "timeout_seconds": 2.0}
    values.update(overrides)
    return SpudConfig(**values)


async def shutdown(session):
    session.destroy()
    await asyncio.sleep(0)


class TestConnect:
    @pytest.mark.asyncio
    async def test_connect_exchanges_api_key(self, platform, session):
        assert session.is_connected
        assert session.auth_token == "session-token-1"
        assert platform.token_requests == [{"api_key": "sk-test"}]

    @pytest.mark.asyncio
    async def test_rejected_api_key(self, platform, spud_config):
        platform.token_status = 401
        session = TokenSession(spud_config)

        with pytest.raises(AuthenticationError) as exc:
            await session.connect()

        assert exc.value.code == "AUTH_FAILED"
        assert exc.value.status_code == 401
        assert not session.is_connected

    @pytest.mark.asyncio
    async def test_malformed_token_response(self, platform, spud_config):
        platform.expires_at = "soon"
        session = TokenSession(spud_config)

        with pytest.raises(AuthenticationError):
            await session.connect()

    @pytest.mark.asyncio
    async def test_trailing_slash_in_base_url(self, platform):
        session = TokenSession(make_config(platform, base_url=platform.url + "//"))
        await session.connect()
        assert session.config.base_url == platform.url
        await shutdown(session)


class TestExpiryWindow:
    """Token expiry must fall in (now, now + max lifetime]."""

    @pytest.mark.asyncio
    async def test_expiry_in_the_past_rejected(self, platform):
        platform.expires_at = NOW - 1
        session = TokenSession(make_config(platform), clock=fixed_clock)

        with pytest.raises(AuthenticationError):
            await session.connect()
        assert not session.is_connected

    @pytest.mark.asyncio
    async def test_expiry_equal_to_now_rejected(self, platform):
        platform.expires_at = NOW
        session = TokenSession(make_config(platform), clock=fixed_clock)

        with pytest.raises(AuthenticationError):
            await session.connect()

    @pytest.mark.asyncio
    async def test_expiry_beyond_max_lifetime_rejected(self, platform):
        platform.expires_at = NOW + 86400 + 1
        session = TokenSession(make_config(platform), clock=fixed_clock)

        with pytest.raises(AuthenticationError):
            await session.connect()

    @pytest.mark.asyncio
    async def test_expiry_at_max_lifetime_accepted(self, platform):
        platform.expires_at = NOW + 86400
        session = TokenSession(make_config(platform), clock=fixed_clock)

        await session.connect()
        assert session.is_connected
        assert session.seconds_until_expiry == 86400
        await shutdown(session)

    @pytest.mark.asyncio
    async def test_custom_max_lifetime(self, platform):
        platform.expires_at = NOW + 7200
        config = make_config(platform, max_token_lifetime_seconds=3600)
        session = TokenSession(config, clock=fixed_clock)

        with pytest.raises(AuthenticationError):
            await session.connect()


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_delay_subtracts_margin(self, platform):
        platform.expires_at = NOW + 3600
        session = TokenSession(make_config(platform), clock=fixed_clock)
        await session.connect()

        assert session.refresh_delay() == 3300
        await shutdown(session)

    @pytest.mark.asyncio
    async def test_refresh_delay_never_negative(self, platform):
        platform.expires_at = NOW + 120
        session = TokenSession(make_config(platform), clock=fixed_clock)
        await session.connect()

        assert session.refresh_delay() == 0
        await shutdown(session)

    def test_refresh_delay_without_credential(self, platform):
        session = TokenSession(make_config(platform))
        assert session.refresh_delay() == 0

    @pytest.mark.asyncio
    async def test_token_refreshed_before_expiry(self, platform):
        config = make_config(platform, refresh_before_expiry_seconds=3599.8)
        session = TokenSession(config)
        await session.connect()

        platform.token = "session-token-2"
        await asyncio.sleep(0.6)

        assert session.auth_token == "session-token-2"
        assert platform.token_calls >= 2
        await shutdown(session)

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_token_and_retries(self, platform):
        config = make_config(
            platform,
            refresh_before_expiry_seconds=3599.9,
            refresh_retry_seconds=0.05,
        )
        session = TokenSession(config)
        await session.connect()

        platform.token_status = 500
        await asyncio.sleep(0.5)

        assert platform.token_calls >= 3
        assert session.is_connected
        assert session.auth_token == "session-token-1"
        assert session.get_statistics()["refresh_failures"] >= 1

        platform.token_status = 200
        platform.token = "session-token-2"
        await asyncio.sleep(0.4)

        assert session.auth_token == "session-token-2"
        await shutdown(session)


class TestHeartbeat:
    @pytest.mark.asyncio
    async def test_heartbeat_sent_with_token(self, platform):
        session = TokenSession(make_config(platform, heartbeat_interval_seconds=0.05))
        await session.connect()
        await asyncio.sleep(0.3)

        assert platform.heartbeats
        assert platform.heartbeats[0]["Authorization"] == "Bearer session-token-1"
        await shutdown(session)

    @pytest.mark.asyncio
    async def test_destroy_stops_background_tasks(self, platform):
        session = TokenSession(
            make_config(
                platform,
                heartbeat_interval_seconds=0.05,
                refresh_before_expiry_seconds=3599.9,
            )
        )
        await session.connect()
        await asyncio.sleep(0.2)
        await shutdown(session)

        heartbeats = len(platform.heartbeats)
        token_calls = platform.token_calls
        await asyncio.sleep(0.3)

        assert len(platform.heartbeats) == heartbeats
        assert platform.token_calls == token_calls


class TestRequest:
    @pytest.mark.asyncio
    async def test_request_before_connect(self, spud_config):
        session = TokenSession(spud_config)

        with pytest.raises(NotConnected) as exc:
            await session.request("POST", "/v1/govern", {})
        assert exc.value.code == "NOT_CONNECTED"

    @pytest.mark.asyncio
    async def test_request_after_destroy(self, session):
        session.destroy()

        with pytest.raises(Destroyed) as exc:
            await session.request("POST", "/v1/govern", {})
        assert exc.value.code == "CLIENT_DESTROYED"
        assert not session.is_connected

    @pytest.mark.asyncio
    async def test_connect_after_destroy(self, spud_config):
        session = TokenSession(spud_config)
        session.destroy()

        with pytest.raises(Destroyed):
            await session.connect()

    @pytest.mark.asyncio
    async def test_destroy_during_token_exchange(self, platform, spud_config):
        platform.token_delay = 0.2
        session = TokenSession(spud_config)

        connecting = asyncio.create_task(session.connect())
        while not platform.token_requests:
            await asyncio.sleep(0.01)
        session.destroy()

        with pytest.raises(Destroyed):
            await connecting
        assert session.credential is None
        assert not session.is_connected
        assert session.get_statistics()["refresh_count"] == 0

        await asyncio.sleep(0.1)
        assert platform.token_calls == 1

    @pytest.mark.asyncio
    async def test_destroy_is_idempotent(self, session):
        session.destroy()
        session.destroy()
        assert session.is_destroyed
        assert session.auth_token is None

    @pytest.mark.asyncio
    async def test_request_attaches_bearer_token(self, platform, session):
        data = await session.request("POST", "/v1/govern", {"action": "tool:x"})

        assert data["permitted"] is True
        sent = platform.govern_requests[0]
        assert sent["headers"]["Authorization"] == "Bearer session-token-1"
        assert sent["body"] == {"action": "tool:x"}

    @pytest.mark.asyncio
    async def test_non_success_status_raises_api_error(self, platform, session):
        platform.govern_status = 503

        with pytest.raises(ApiError) as exc:
            await session.request("POST", "/v1/govern", {})

        assert exc.value.code == "API_ERROR"
        assert exc.value.status == 503

    @pytest.mark.asyncio
    async def test_slow_response_times_out(self, platform):
        session = TokenSession(make_config(platform, timeout_seconds=0.3))
        await session.connect()
        platform.govern_delay = 1.0

        with pytest.raises(RequestTimeout) as exc:
            await session.request("POST", "/v1/govern", {})
        assert exc.value.code == "TIMEOUT"
        await shutdown(session)

    @pytest.mark.asyncio
    async def test_unreachable_platform(self, session):
        session.config.base_url = "http://127.0.0.1:1"

        with pytest.raises(NetworkError) as exc:
            await session.request("POST", "/v1/govern", {})
        assert exc.value.code == "NETWORK_ERROR"
