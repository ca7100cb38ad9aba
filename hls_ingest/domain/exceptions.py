"""Ingest session exceptions.

Every failure a session can report is an ``IngestError``. The protocol layer
refuses the publish or drops the connection when one of these escapes a
callback; the session itself absorbs only metadata decode failures and
forwarding failures.
"""

from typing import Optional


class IngestError(Exception):
    """Base exception for ingest session errors."""

    def __init__(self, message: str, *, stream_name: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stream_name = stream_name

    def __str__(self) -> str:
        if self.stream_name:
            return f"{self.message} (stream={self.stream_name!r})"
        return self.message


class InvalidRequestError(IngestError):
    """Malformed or out-of-order publish request."""
    pass


class StreamNameInUseError(InvalidRequestError):
    """Another live session already publishes under this name."""
    pass


class PathError(IngestError):
    """Output directory cannot be safely derived or created."""
    pass


class StartupError(IngestError):
    """Transcoder spawn or muxer binding failed."""
    pass


class DecodeError(IngestError):
    """A frame payload could not be decoded as an FLV tag body."""
    pass


class ForwardingError(IngestError):
    """A well-formed frame could not be written to the transcoder pipe."""
    pass
