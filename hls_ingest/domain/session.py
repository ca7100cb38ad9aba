"""Stream-ingest session.

One :class:`IngestSession` exists per accepted RTMP connection. The protocol
layer feeds it publish, metadata, audio, video and close events; the session
re-muxes frames into FLV and writes them into a per-session FFmpeg process
that produces HLS output under ``<output_root>/<stream name>/``.

State machine::

    IDLE --publish--> PUBLISHING --close--> CLOSED
    IDLE ----------------close------------> CLOSED

CLOSED is terminal. Frames are only forwarded while PUBLISHING.
"""

import uuid
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from hls_ingest.core.config import Settings, get_settings
from hls_ingest.domain.exceptions import (
    DecodeError,
    ForwardingError,
    IngestError,
    InvalidRequestError,
    StartupError,
)
from hls_ingest.infrastructure.media.flv import (
    FLVTag,
    FLVTagType,
    decode_audio_data,
    decode_script_data,
    decode_video_data,
)
from hls_ingest.infrastructure.media.muxer import FLVMuxer
from hls_ingest.infrastructure.storage.output import OutputLayout
from hls_ingest.infrastructure.streaming.registry import StreamNameRegistry
from hls_ingest.infrastructure.transcoder.ffmpeg import FFmpegSpawner, TranscoderProcess


class SessionState(str, Enum):
    """Lifecycle states of an ingest session."""

    IDLE = "idle"
    PUBLISHING = "publishing"
    CLOSED = "closed"


@dataclass
class SessionStats:
    """Per-session counters, logged when the session closes."""

    metadata_frames: int = 0
    audio_frames: int = 0
    video_frames: int = 0
    dropped_frames: int = 0
    forwarding_failures: int = 0
    bytes_written: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def _materialize(payload: Any) -> bytes:
    """Copy a frame payload into an owned ``bytes`` object.

    Accepts bytes-like objects and readable binary streams. The caller's
    buffer may be reused after the callback returns.
    """
    if payload is None:
        return b""
    if hasattr(payload, "read"):
        payload = payload.read()
    return bytes(payload)


class IngestSession:
    """Per-connection state machine that feeds one transcoder."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        spawner: Optional[FFmpegSpawner] = None,
        layout: Optional[OutputLayout] = None,
        registry: Optional[StreamNameRegistry] = None,
        logger=None,
        session_id: Optional[str] = None,
    ):
        self.settings = settings if settings is not None else get_settings()
        self.spawner = spawner if spawner is not None else FFmpegSpawner.from_settings(self.settings)
        if layout is None:
            layout = OutputLayout(self.settings.output_root, directory_mode=self.settings.directory_mode)
        self.layout = layout
        if registry is None:
            registry = StreamNameRegistry(self.settings.duplicate_publish_policy)
        self.registry = registry
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.stats = SessionStats()

        self._log = (logger or structlog.get_logger(__name__)).bind(session_id=self.session_id)
        self._state = SessionState.IDLE
        self._publishing_name: Optional[str] = None
        self._output_dir: Optional[Path] = None
        self._claim_key: Optional[str] = None
        self._transcoder: Optional[TranscoderProcess] = None
        self._muxer: Optional[FLVMuxer] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def publishing_name(self) -> Optional[str]:
        return self._publishing_name

    @property
    def output_dir(self) -> Optional[Path]:
        return self._output_dir

    @property
    def is_publishing(self) -> bool:
        return self._state == SessionState.PUBLISHING

    @property
    def transcoder(self) -> Optional[TranscoderProcess]:
        return self._transcoder

    @property
    def muxer(self) -> Optional[FLVMuxer]:
        return self._muxer

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    async def on_publish_request(self, name: str) -> None:
        """Start publishing under ``name``.

        Creates the output directory, spawns the transcoder, writes the FLV
        header and enters PUBLISHING. On failure nothing is held and the
        session stays IDLE.

        Raises:
            InvalidRequestError: empty name, or already publishing.
            StreamNameInUseError: name held by another live session.
            PathError: output directory unsafe or not creatable.
            StartupError: transcoder or FLV header could not be started.
        """
        if self._state == SessionState.CLOSED:
            self._log.info("Ignoring publish on closed session", stream=name)
            return
        if self._state == SessionState.PUBLISHING:
            raise InvalidRequestError(
                f"Session is already publishing {self._publishing_name!r}", stream_name=name
            )
        if name is None or not str(name).strip():
            raise InvalidRequestError("Publishing name must not be empty", stream_name=name)

        output_dir = self.layout.resolve(name)
        claim_key = str(output_dir)
        self.registry.claim(claim_key, self.session_id)

        log = self._log.bind(stream=name)
        transcoder = None
        try:
            self.layout.ensure(name)
            transcoder = await self.spawner.spawn(output_dir)
            muxer = FLVMuxer(transcoder)
            await muxer.start()
        except IngestError as e:
            await self._abort_startup(transcoder, claim_key, log)
            if isinstance(e, StartupError) and e.stream_name is None:
                e.stream_name = name
            log.error("Publish failed", error=str(e), error_type=type(e).__name__)
            raise

        if self._state == SessionState.CLOSED:
            # close() arrived while the transcoder was starting
            await self._abort_startup(transcoder, claim_key, log)
            log.info("Session closed during publish startup")
            return

        self._publishing_name = name
        self._output_dir = output_dir
        self._claim_key = claim_key
        self._transcoder = transcoder
        self._muxer = muxer
        self.stats.bytes_written = muxer.bytes_written
        self._state = SessionState.PUBLISHING
        self._log = log
        log.info("Publishing started", output_dir=str(output_dir), pid=transcoder.pid)

    async def _abort_startup(self, transcoder: Optional[TranscoderProcess], claim_key: str, log) -> None:
        if transcoder is not None:
            await transcoder.release()
        self.registry.release(claim_key, self.session_id)
        log.debug("Released partial publish resources")

    # ------------------------------------------------------------------
    # Frames
    # ------------------------------------------------------------------

    async def on_metadata_frame(self, timestamp: int, payload: Any) -> None:
        """Forward a script data frame. Malformed metadata is dropped, never fatal."""
        if self._state != SessionState.PUBLISHING:
            return
        data = _materialize(payload)
        try:
            script = decode_script_data(data)
        except DecodeError as e:
            self.stats.dropped_frames += 1
            self._log.warning("Dropping malformed metadata", error=str(e), size=len(data))
            return

        tag = FLVTag(tag_type=FLVTagType.SCRIPT_DATA, timestamp=timestamp, data=script)
        if await self._forward(tag):
            self.stats.metadata_frames += 1

    async def on_audio_frame(self, timestamp: int, payload: Any) -> None:
        """Forward an audio frame.

        Raises:
            DecodeError: if the payload is not a valid audio tag body.
        """
        if self._state != SessionState.PUBLISHING:
            return
        data = _materialize(payload)
        try:
            audio = decode_audio_data(data)
        except DecodeError as e:
            e.stream_name = self._publishing_name
            raise

        tag = FLVTag(tag_type=FLVTagType.AUDIO, timestamp=timestamp, data=audio)
        if await self._forward(tag):
            self.stats.audio_frames += 1

    async def on_video_frame(self, timestamp: int, payload: Any) -> None:
        """Forward a video frame.

        Raises:
            DecodeError: if the payload is not a valid video tag body.
        """
        if self._state != SessionState.PUBLISHING:
            return
        data = _materialize(payload)
        try:
            video = decode_video_data(data)
        except DecodeError as e:
            e.stream_name = self._publishing_name
            raise

        tag = FLVTag(tag_type=FLVTagType.VIDEO, timestamp=timestamp, data=video)
        if await self._forward(tag):
            self.stats.video_frames += 1

    async def _forward(self, tag: FLVTag) -> bool:
        # close() may have run while the caller was decoding
        if self._state != SessionState.PUBLISHING or self._muxer is None:
            return False
        try:
            written = await self._muxer.write_tag(tag)
        except ForwardingError as e:
            self.stats.forwarding_failures += 1
            self._log.warning(
                "Failed to forward frame",
                tag_type=tag.tag_type.name,
                timestamp=tag.timestamp,
                error=str(e),
            )
            return False
        self.stats.bytes_written += written
        return True

    # ------------------------------------------------------------------
    # Close
    # ------------------------------------------------------------------

    async def on_close(self) -> None:
        """Close the session; idempotent.

        Closes the transcoder's stdin and kills it if still running, without
        waiting for it to exit.
        """
        if self._state == SessionState.CLOSED:
            return
        previous = self._state
        self._state = SessionState.CLOSED

        transcoder, self._transcoder = self._transcoder, None
        self._muxer = None
        if transcoder is not None:
            await transcoder.release()
        if self._claim_key is not None:
            self.registry.release(self._claim_key, self.session_id)
            self._claim_key = None

        self._log.info("Session closed", previous_state=previous.value, **self.stats.to_dict())
