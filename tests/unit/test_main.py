"""Tests for the service entry point."""

import asyncio

import pytest

from fakes import ConnectionScript, tick_frame
from tickfeed.main import TickFeedService, main
from tickfeed.protocol.messages import SessionState


@pytest.fixture
def service(settings, presenter, transport):
    return TickFeedService(settings, presenter=presenter, transport=transport)


class TestTickFeedService:
    """Exit status of a service run."""

    @pytest.mark.asyncio
    async def test_missing_token(self, settings, service, fake_server):
        settings.endpoint.token = ""

        assert await service.start(install_signal_handlers=False) == 1
        assert fake_server.connections == []

    @pytest.mark.asyncio
    async def test_fatal_session(self, service, fake_server):
        fake_server.fail_connect = True
        assert await service.start(install_signal_handlers=False) == 1

    @pytest.mark.asyncio
    async def test_server_ends_stream(self, service, fake_server):
        fake_server.scripts = [
            ConnectionScript(end_close={"reason": "maintenance", "reconnect": False}),
        ]

        assert await service.start(install_signal_handlers=False) == 1
        assert service.session.last_close.reason == "maintenance"

    @pytest.mark.asyncio
    async def test_operator_shutdown(self, service, fake_server, presenter, wait_until):
        fake_server.scripts = [ConnectionScript(stream=[tick_frame([[1700000000, 0, 65000.5, "0.001"]])])]
        task = asyncio.create_task(service.start(install_signal_handlers=False))

        await wait_until(
            lambda: service.session is not None and service.session.state is SessionState.STREAMING
        )
        await wait_until(lambda: service.session.dispatcher.stats['records_forwarded'] == 1)
        service.shutdown.trigger("operator")

        assert await asyncio.wait_for(task, timeout=2.0) == 0
        assert [r.price for r in presenter.records] == [65000.5]
        assert service.session.state is SessionState.TERMINATED


class TestMain:
    """Process entry point."""

    @pytest.mark.asyncio
    async def test_missing_config_file(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CONFIG_FILE", str(tmp_path / "missing.yaml"))

        with pytest.raises(FileNotFoundError):
            await main()
