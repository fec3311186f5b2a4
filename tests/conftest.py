"""Pytest configuration and shared fixtures."""

import asyncio

import pytest

from fakes import FakeServer, RecordingPresenter
from tickfeed.clients.transport import WebSocketTransport
from tickfeed.config.settings import (
    EndpointConfig,
    KeepaliveConfig,
    ProtocolConfig,
    ReconnectConfig,
    TickFeedSettings,
)


@pytest.fixture
def settings() -> TickFeedSettings:
    """Settings with short timings for tests."""
    return TickFeedSettings(
        service_name="test-tickfeed",
        environment="local",
        endpoint=EndpointConfig(url="wss://feed.test/ws/", token="test-token"),
        protocol=ProtocolConfig(request_timeout_seconds=0.2),
        keepalive=KeepaliveConfig(interval_seconds=0.05, timeout_seconds=0.1),
        reconnect=ReconnectConfig(
            max_attempts=3,
            initial_backoff_seconds=0.01,
            max_backoff_seconds=0.05,
            jitter=False,
        ),
    )


@pytest.fixture
def fake_server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def transport(settings, fake_server) -> WebSocketTransport:
    return WebSocketTransport(settings.endpoint, connector=fake_server.connect)


@pytest.fixture
def presenter() -> RecordingPresenter:
    return RecordingPresenter()


@pytest.fixture
def wait_until():
    """Poll a predicate until it holds or the timeout expires."""
    async def _wait_until(predicate, timeout: float = 2.0, interval: float = 0.005):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("Condition not met before timeout")
            await asyncio.sleep(interval)
    return _wait_until
