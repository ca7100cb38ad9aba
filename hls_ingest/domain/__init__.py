"""Domain layer for the ingest service.

Holds the per-connection ingest session state machine and the error taxonomy
every layer reports through.
"""

from hls_ingest.domain.exceptions import (
    IngestError,
    InvalidRequestError,
    StreamNameInUseError,
    PathError,
    StartupError,
    DecodeError,
    ForwardingError,
)

__all__ = [
    "IngestError",
    "InvalidRequestError",
    "StreamNameInUseError",
    "PathError",
    "StartupError",
    "DecodeError",
    "ForwardingError",
]
