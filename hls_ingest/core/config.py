"""
Core configuration module for the RTMP to HLS ingest service.

This module defines all configuration settings for the service using Pydantic Settings.
Configuration values are loaded from environment variables (prefixed with
``HLS_INGEST_``) or a ``.env`` file, with defaults matching the stock deployment.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Service settings loaded from environment variables.

    All settings can be overridden via environment variables or a .env file.
    The settings are validated using Pydantic's type system.
    """

    model_config = SettingsConfigDict(
        env_prefix="HLS_INGEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application Settings
    app_name: str = Field(default="rtmp-hls-ingest", description="Service name")
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Deployment environment"
    )

    # RTMP Listener Settings
    rtmp_host: str = Field(default="0.0.0.0", description="RTMP listener bind address")
    rtmp_port: int = Field(default=1935, description="RTMP listener port")

    # Output Settings
    output_root: Path = Field(
        default=Path("public"),
        description="Root directory under which each stream gets its own output directory",
    )
    playlist_name: str = Field(
        default="index.m3u8", description="Playlist file name written inside a stream directory"
    )
    segment_extension: str = Field(
        default="ts", description="File extension of the media segments FFmpeg produces"
    )
    directory_mode: int = Field(
        default=0o755, description="Permission bits for newly created stream directories"
    )
    default_stream_name: Optional[str] = Field(
        default=None,
        description="Stream directory always swept on shutdown, even if nothing published to it",
    )

    # Transcoder Settings
    ffmpeg_binary: str = Field(default="ffmpeg", description="FFmpeg executable name or path")
    video_codec: str = Field(default="copy", description="FFmpeg video codec (-c:v)")
    audio_codec: str = Field(default="aac", description="FFmpeg audio codec (-c:a)")
    hls_segment_seconds: int = Field(default=2, description="Target HLS segment duration")
    hls_list_size: int = Field(
        default=5, description="Number of segments kept in the rolling playlist window"
    )
    hls_flags: str = Field(
        default="delete_segments", description="Value passed to -hls_flags (FFmpeg joins several with '+')"
    )
    ffmpeg_loglevel: Optional[str] = Field(
        default=None, description="FFmpeg -loglevel value (None keeps FFmpeg's default)"
    )
    ffmpeg_input_fflags: Optional[str] = Field(
        default=None, description="Input -fflags value, e.g. 'nobuffer' for low-latency ingest"
    )
    ffmpeg_input_flags: Optional[str] = Field(
        default=None, description="Input -flags value, e.g. 'low_delay'"
    )
    transcoder_output: Literal["inherit", "log"] = Field(
        default="inherit",
        description="'inherit' shares this process's stdout/stderr, 'log' relays lines to the logger",
    )

    # Session Policy
    duplicate_publish_policy: Literal["reject", "allow"] = Field(
        default="reject",
        description="Whether a second live publish under an already held stream name is refused",
    )

    # Logging Settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_json_format: bool = Field(default=False, description="Use JSON format for logs")

    @field_validator("rtmp_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError(f"rtmp_port must be between 1 and 65535, got {v}")
        return v

    @field_validator("hls_segment_seconds", "hls_list_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("HLS segment duration and list size must be positive")
        return v

    @field_validator("playlist_name")
    @classmethod
    def validate_playlist_name(cls, v: str) -> str:
        if not v or "/" in v or "\\" in v or v in (".", ".."):
            raise ValueError(f"playlist_name must be a bare file name, got {v!r}")
        return v

    @computed_field
    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Service settings instance
    """
    return Settings()
