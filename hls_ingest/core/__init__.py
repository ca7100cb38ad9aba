"""Core service components.

Configuration and logging setup shared by every layer.
"""

from hls_ingest.core.config import Settings, get_settings
from hls_ingest.core.logging import configure_logging

__all__ = [
    "Settings",
    "get_settings",
    "configure_logging",
]
