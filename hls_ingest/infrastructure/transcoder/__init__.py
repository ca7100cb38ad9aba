"""FFmpeg transcoder process management."""

from .ffmpeg import FFmpegHLSCommand, FFmpegSpawner, TranscoderProcess

__all__ = ["FFmpegHLSCommand", "FFmpegSpawner", "TranscoderProcess"]
