"""RTMP listener built on pyrtmp.

pyrtmp owns the wire protocol (handshake, chunking, AMF commands). Each
accepted connection gets a fresh :class:`IngestRTMPController`, which owns one
:class:`~hls_ingest.domain.session.IngestSession` and translates pyrtmp
callbacks into session events.
"""

import asyncio
from typing import Awaitable, Optional, Set

import structlog
from pyrtmp import StreamClosedException
from pyrtmp.rtmp import RTMPProtocol, SimpleRTMPController, SimpleRTMPServer
from pyrtmp.session_manager import SessionManager

from hls_ingest.core.config import Settings
from hls_ingest.domain.exceptions import IngestError
from hls_ingest.domain.session import IngestSession
from hls_ingest.infrastructure.storage.output import OutputLayout
from hls_ingest.infrastructure.streaming.registry import StreamNameRegistry
from hls_ingest.infrastructure.transcoder.ffmpeg import FFmpegSpawner

logger = structlog.get_logger(__name__)


class IngestRTMPController(SimpleRTMPController):
    """Per-connection controller forwarding publish and media events to a session.

    An ``IngestError`` escaping the session closes it before propagating, so
    the transcoder is gone by the time pyrtmp drops the connection.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        spawner: FFmpegSpawner,
        layout: OutputLayout,
        registry: StreamNameRegistry,
        live_sessions: Optional[Set[IngestSession]] = None,
    ):
        super().__init__()
        self.ingest = IngestSession(
            settings, spawner=spawner, layout=layout, registry=registry, logger=logger
        )
        self.live_sessions = live_sessions if live_sessions is not None else set()
        self.live_sessions.add(self.ingest)

    async def _guarded(self, event: Awaitable[None]) -> None:
        try:
            await event
        except IngestError:
            await self.close()
            raise

    async def close(self) -> None:
        await self.ingest.on_close()
        self.live_sessions.discard(self.ingest)

    async def on_ns_publish(self, session: SessionManager, message) -> None:
        await self._guarded(self.ingest.on_publish_request(message.publishing_name))
        await super().on_ns_publish(session, message)

    async def on_metadata(self, session: SessionManager, message) -> None:
        timestamp = getattr(message, "timestamp", 0)
        await self._guarded(self.ingest.on_metadata_frame(timestamp, message.to_raw_meta()))
        await super().on_metadata(session, message)

    async def on_audio_message(self, session: SessionManager, message) -> None:
        await self._guarded(self.ingest.on_audio_frame(message.timestamp, message.payload))
        await super().on_audio_message(session, message)

    async def on_video_message(self, session: SessionManager, message) -> None:
        await self._guarded(self.ingest.on_video_frame(message.timestamp, message.payload))
        await super().on_video_message(session, message)

    async def on_stream_closed(self, session: SessionManager, exception: StreamClosedException) -> None:
        await self.close()
        await super().on_stream_closed(session, exception)

    async def cleanup(self, session: SessionManager) -> None:
        # Runs on every connection exit, including resets and protocol errors.
        await self.close()
        await super().cleanup(session)


class IngestRTMPServer(SimpleRTMPServer):
    """RTMP listener that hands every connection its own ingest session."""

    def __init__(
        self,
        settings: Settings,
        *,
        spawner: Optional[FFmpegSpawner] = None,
        layout: Optional[OutputLayout] = None,
        registry: Optional[StreamNameRegistry] = None,
    ):
        super().__init__()
        self.server = None
        self.settings = settings
        self.spawner = spawner if spawner is not None else FFmpegSpawner.from_settings(settings)
        if layout is None:
            layout = OutputLayout(settings.output_root, directory_mode=settings.directory_mode)
        self.layout = layout
        if registry is None:
            registry = StreamNameRegistry(settings.duplicate_publish_policy)
        self.registry = registry
        self.sessions: Set[IngestSession] = set()

    def create_controller(self) -> IngestRTMPController:
        return IngestRTMPController(
            self.settings,
            spawner=self.spawner,
            layout=self.layout,
            registry=self.registry,
            live_sessions=self.sessions,
        )

    async def create(self, host: Optional[str] = None, port: Optional[int] = None):
        host = host or self.settings.rtmp_host
        port = port if port is not None else self.settings.rtmp_port
        loop = asyncio.get_running_loop()
        self.server = await loop.create_server(
            lambda: RTMPProtocol(controller=self.create_controller()),
            host=host,
            port=port,
        )
        logger.info("RTMP listener bound", host=host, port=port, output_root=str(self.layout.root))

    async def close_sessions(self) -> int:
        """Close every live session; returns how many were closed."""
        sessions = list(self.sessions)
        for ingest in sessions:
            await ingest.on_close()
        self.sessions.difference_update(sessions)
        if sessions:
            logger.info("Closed live sessions", count=len(sessions))
        return len(sessions)

    async def stop(self) -> None:
        """Stop accepting connections and close live sessions.

        Does not wait for client connections to drain.
        """
        if self.server is not None:
            self.server.close()
        await self.close_sessions()
        logger.info("RTMP listener stopped")
