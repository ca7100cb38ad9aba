"""Pytest configuration and fixtures."""

import sys
from pathlib import Path
from typing import List, Optional, Tuple

# Add the project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from hls_ingest.core.config import Settings
from hls_ingest.domain.exceptions import ForwardingError
from hls_ingest.infrastructure.media.amf import AMFEncoder, ECMAArray
from hls_ingest.infrastructure.storage.output import OutputLayout
from hls_ingest.infrastructure.streaming.registry import StreamNameRegistry


class FakeTranscoder:
    """In-memory stand-in for a transcoder pipe."""

    def __init__(self, pid: int = 4242):
        self.pid = pid
        self.buffer = bytearray()
        self.fail_writes = False
        self.released = False
        self.release_calls = 0

    async def write(self, data: bytes) -> None:
        if self.released or self.fail_writes:
            raise ForwardingError("Transcoder pipe closed")
        self.buffer.extend(data)

    async def release(self) -> bool:
        self.release_calls += 1
        if self.released:
            return False
        self.released = True
        return True


class FakeSpawner:
    """Records spawn requests and hands out fake transcoders."""

    def __init__(self):
        self.error: Optional[Exception] = None
        self.fail_header = False
        self.spawned: List[Tuple[Path, FakeTranscoder]] = []

    async def spawn(self, output_dir: Path) -> FakeTranscoder:
        if self.error is not None:
            raise self.error
        transcoder = FakeTranscoder(pid=4242 + len(self.spawned))
        transcoder.fail_writes = self.fail_header
        self.spawned.append((output_dir, transcoder))
        return transcoder


@pytest.fixture
def output_root(tmp_path) -> Path:
    return tmp_path / "public"


@pytest.fixture
def settings(output_root) -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        output_root=output_root,
        rtmp_host="127.0.0.1",
        rtmp_port=1935,
        log_level="DEBUG",
    )


@pytest.fixture
def layout(settings) -> OutputLayout:
    return OutputLayout(settings.output_root, directory_mode=settings.directory_mode)


@pytest.fixture
def registry() -> StreamNameRegistry:
    return StreamNameRegistry("reject")


@pytest.fixture
def fake_spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture
def avc_keyframe() -> bytes:
    """AVC NALU keyframe tag body (keyframe, codec 7, composition time 0)."""
    return bytes([0x17, 0x01, 0x00, 0x00, 0x00]) + b"\x00\x00\x00\x05\x65\x88\x84\x00\x21"


@pytest.fixture
def aac_raw_frame() -> bytes:
    """AAC raw frame tag body (44 kHz, 16 bit, stereo)."""
    return bytes([0xAF, 0x01]) + b"\x21\x10\x04\x60\x8c\x1c"


@pytest.fixture
def metadata_payload() -> bytes:
    """onMetaData script body as sent by OBS."""
    return AMFEncoder.encode_string("onMetaData") + AMFEncoder.encode_ecma_array(
        ECMAArray(
            {
                "width": 1280.0,
                "height": 720.0,
                "framerate": 30.0,
                "videocodecid": 7.0,
                "audiocodecid": 10.0,
                "encoder": "obs-output module",
            }
        )
    )
