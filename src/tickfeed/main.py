"""Tick feed service - streams ticks from the service to a presenter."""

import asyncio
import logging
import os
import sys
from typing import Optional

from .clients.transport import WebSocketTransport
from .config.settings import TickFeedSettings, load_settings
from .dispatcher import LogPresenter, Presenter, QueuedPresenter
from .errors import FatalSessionError
from .session import TickFeedSession
from .shutdown import ShutdownCoordinator
from .utils.logging import setup_logging

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "config/local.yaml"


class TickFeedService:
    """Wires configuration, presenter, shutdown signal and session together."""

    def __init__(
        self,
        settings: TickFeedSettings,
        presenter: Optional[Presenter] = None,
        transport: Optional[WebSocketTransport] = None,
    ):
        self.settings = settings
        self.presenter = QueuedPresenter(
            presenter or LogPresenter(),
            maxsize=settings.presenter.queue_size,
        )
        self.transport = transport
        self.shutdown: Optional[ShutdownCoordinator] = None
        self.session: Optional[TickFeedSession] = None

    async def start(self, install_signal_handlers: bool = True) -> int:
        """
        Run the session to completion.

        Returns:
            Process exit status: 0 after an operator shutdown, 1 otherwise
        """
        logger.info(f"Starting {self.settings.service_name} ({self.settings.environment})")

        if not self.settings.endpoint.token:
            logger.error("No authentication token configured (set TICKFEED_ENDPOINT__TOKEN)")
            return 1

        self.shutdown = ShutdownCoordinator()
        if install_signal_handlers:
            self.shutdown.install_signal_handlers()

        self.session = TickFeedSession(
            self.settings, self.presenter, self.shutdown, transport=self.transport
        )
        self.presenter.start()

        try:
            await self.session.run()
        except FatalSessionError as e:
            logger.error(f"Session terminated: {e}")
            return 1
        finally:
            await self.presenter.stop()
            logger.info(f"Session stats: {self.session.get_stats()}")

        if self.shutdown.is_set():
            logger.info(f"{self.settings.service_name} stopped")
            return 0

        close = self.session.last_close
        logger.error(f"Stream ended by server: {close.reason if close else 'unknown'}")
        return 1


async def main() -> int:
    """Main entry point."""
    config_file = os.getenv("CONFIG_FILE")
    if config_file is None and os.path.exists(DEFAULT_CONFIG_FILE):
        config_file = DEFAULT_CONFIG_FILE

    settings = load_settings(config_file)
    setup_logging(settings.logging, settings.service_name)

    service = TickFeedService(settings)
    try:
        return await service.start()
    except Exception as e:
        logger.error(f"Service failed: {e}", exc_info=True)
        return 1


def run() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
