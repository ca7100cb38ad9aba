"""Process entry point: RTMP listener plus signal-driven shutdown."""

import asyncio
import signal
import sys
from typing import Optional

import structlog

from hls_ingest.core.config import Settings, get_settings
from hls_ingest.core.logging import configure_logging
from hls_ingest.infrastructure.storage.cleanup import ShutdownCoordinator
from hls_ingest.infrastructure.streaming.rtmp_server import IngestRTMPServer

logger = structlog.get_logger(__name__)


def install_signal_handlers(loop: asyncio.AbstractEventLoop, stop: asyncio.Event) -> None:
    """Set ``stop`` on SIGINT or SIGTERM."""
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda sig=sig: _request_stop(stop, sig))
        except NotImplementedError:
            logger.warning("Signal handlers not supported on this platform", signal=sig.name)


def _request_stop(stop: asyncio.Event, sig: signal.Signals) -> None:
    logger.info("Received shutdown signal", signal=sig.name)
    stop.set()


async def serve(
    settings: Settings,
    *,
    server: Optional[IngestRTMPServer] = None,
    stop: Optional[asyncio.Event] = None,
) -> None:
    """Run the listener until ``stop`` is set, then shut down and sweep artifacts."""
    if server is None:
        server = IngestRTMPServer(settings)
    coordinator = ShutdownCoordinator.from_settings(settings, server.layout)
    if stop is None:
        stop = asyncio.Event()
        install_signal_handlers(asyncio.get_running_loop(), stop)

    try:
        await server.create()
        await server.start()
        logger.info("Ingest service running", app=settings.app_name, environment=settings.environment)
        await stop.wait()
    finally:
        await server.stop()
        coordinator.cleanup()


def run() -> None:
    """Console script entry point."""
    settings = get_settings()
    configure_logging(settings)
    try:
        asyncio.run(serve(settings))
    except OSError as e:
        logger.error("Failed to start RTMP listener", error=str(e))
        sys.exit(1)
    logger.info("Shutdown complete")


if __name__ == "__main__":
    run()
