"""FLV muxer bound to an asynchronous byte sink."""

from typing import Protocol, runtime_checkable

import structlog

from hls_ingest.domain.exceptions import ForwardingError, StartupError
from hls_ingest.infrastructure.media.flv import FLVEncoder, FLVTag, FLVTagType

logger = structlog.get_logger(__name__)


@runtime_checkable
class ByteSink(Protocol):
    """Anything that accepts bytes and applies backpressure by suspending."""

    async def write(self, data: bytes) -> None:
        ...


class FLVMuxer:
    """Re-assembles decoded frames into a contiguous FLV stream on a sink.

    The sink is borrowed, not owned: closing it is the caller's job.
    """

    def __init__(self, sink: ByteSink, encoder: FLVEncoder = None):
        self.sink = sink
        self.encoder = encoder or FLVEncoder(has_audio=True, has_video=True)
        self.started = False
        self.tags_written = {tag_type: 0 for tag_type in FLVTagType}
        self.bytes_written = 0

    async def start(self) -> None:
        """Write the FLV header.

        Raises:
            StartupError: if the sink rejects the header.
        """
        if self.started:
            return
        header = self.encoder.encode_header()
        try:
            await self.sink.write(header)
        except ForwardingError as e:
            raise StartupError(f"Failed to write FLV header: {e.message}") from e
        self.started = True
        self.bytes_written += len(header)

    async def write_tag(self, tag: FLVTag) -> int:
        """Encode one tag and forward it; returns the number of bytes written.

        Raises:
            ForwardingError: if the tag cannot be encoded or the sink rejects it.
        """
        if not self.started:
            raise ForwardingError("FLV muxer used before its header was written")
        try:
            buffer = self.encoder.encode(tag)
        except (ValueError, OverflowError) as e:
            raise ForwardingError(f"Failed to encode {tag.tag_type.name} tag: {e}") from e

        await self.sink.write(buffer)
        self.tags_written[tag.tag_type] += 1
        self.bytes_written += len(buffer)
        return len(buffer)
