"""RTMP to HLS ingest service."""

__version__ = "0.1.0"
