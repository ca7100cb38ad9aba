"""RTMP listener and stream name bookkeeping."""
