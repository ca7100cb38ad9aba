"""FLV (Flash Video) tag codec.

This module decodes the tag bodies that arrive as RTMP audio, video and data
messages into typed frames, and encodes typed frames back into a contiguous
FLV byte stream that FFmpeg can read from a pipe.

FLV Specification: Adobe Flash Video File Format Specification v10.1
"""

import io
import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple, Union

from hls_ingest.domain.exceptions import DecodeError
from hls_ingest.infrastructure.media.amf import AMFDecoder, AMFEncoder


class FLVTagType(Enum):
    """FLV tag types."""

    AUDIO = 8
    VIDEO = 9
    SCRIPT_DATA = 18


class FLVSoundFormat(Enum):
    """FLV audio codec formats."""

    LINEAR_PCM_PLATFORM_ENDIAN = 0
    ADPCM = 1
    MP3 = 2
    LINEAR_PCM_LITTLE_ENDIAN = 3
    NELLYMOSER_16_MONO = 4
    NELLYMOSER_8_MONO = 5
    NELLYMOSER = 6
    G711_A_LAW = 7
    G711_MU_LAW = 8
    RESERVED = 9
    AAC = 10
    SPEEX = 11
    MP3_8_KHZ = 14
    DEVICE_SPECIFIC = 15


class FLVSoundRate(Enum):
    """FLV audio sample rates."""

    RATE_5_5_KHZ = 0
    RATE_11_KHZ = 1
    RATE_22_KHZ = 2
    RATE_44_KHZ = 3


class FLVSoundSize(Enum):
    """FLV audio sample sizes."""

    BITS_8 = 0
    BITS_16 = 1


class FLVSoundType(Enum):
    """FLV audio channel configuration."""

    MONO = 0
    STEREO = 1


class FLVAACPacketType(Enum):
    """FLV AAC packet types."""

    SEQUENCE_HEADER = 0
    RAW = 1


class FLVVideoCodec(Enum):
    """FLV video codec formats."""

    JPEG = 1
    SORENSON_H263 = 2
    SCREEN_VIDEO = 3
    ON2_VP6 = 4
    ON2_VP6_ALPHA = 5
    SCREEN_VIDEO_V2 = 6
    AVC = 7  # H.264


class FLVVideoFrameType(Enum):
    """FLV video frame types."""

    KEY_FRAME = 1
    INTER_FRAME = 2
    DISPOSABLE_INTER_FRAME = 3
    GENERATED_KEY_FRAME = 4
    VIDEO_INFO_COMMAND = 5


class FLVAVCPacketType(Enum):
    """FLV AVC packet types (for H.264)."""

    SEQUENCE_HEADER = 0
    NALU = 1
    END_OF_SEQUENCE = 2


@dataclass
class FLVHeader:
    """FLV file header information."""

    version: int = 1
    has_audio: bool = True
    has_video: bool = True
    data_offset: int = 9


@dataclass
class AudioData:
    """Decoded FLV audio tag body."""

    sound_format: FLVSoundFormat
    sound_rate: FLVSoundRate
    sound_size: FLVSoundSize
    sound_type: FLVSoundType
    aac_packet_type: Optional[FLVAACPacketType] = None
    data: bytes = b""


@dataclass
class VideoData:
    """Decoded FLV video tag body."""

    frame_type: FLVVideoFrameType
    codec_id: FLVVideoCodec
    avc_packet_type: Optional[FLVAVCPacketType] = None
    composition_time: int = 0
    data: bytes = b""

    @property
    def is_keyframe(self) -> bool:
        return self.frame_type == FLVVideoFrameType.KEY_FRAME


@dataclass
class ScriptData:
    """Decoded FLV script data tag body (e.g. ``onMetaData``)."""

    name: str
    value: Any = None
    extra: List[Any] = field(default_factory=list)


@dataclass
class FLVTag:
    """Complete FLV tag."""

    tag_type: FLVTagType
    timestamp: int
    data: Union[AudioData, VideoData, ScriptData]
    stream_id: int = 0


# ----------------------------------------------------------------------
# Tag body decoding
# ----------------------------------------------------------------------


def decode_audio_data(payload: bytes) -> AudioData:
    """Decode an FLV audio tag body.

    Raises:
        DecodeError: if the header byte is missing or carries reserved values,
            or an AAC body lacks its packet type.
    """
    if not payload:
        raise DecodeError("Empty audio payload")

    audio_header = payload[0]
    try:
        sound_format = FLVSoundFormat((audio_header >> 4) & 0x0F)
        sound_rate = FLVSoundRate((audio_header >> 2) & 0x03)
        sound_size = FLVSoundSize((audio_header >> 1) & 0x01)
        sound_type = FLVSoundType(audio_header & 0x01)
    except ValueError as e:
        raise DecodeError(f"Invalid audio tag header {audio_header:#04x}: {e}") from e

    if sound_format != FLVSoundFormat.AAC:
        return AudioData(
            sound_format=sound_format,
            sound_rate=sound_rate,
            sound_size=sound_size,
            sound_type=sound_type,
            data=bytes(payload[1:]),
        )

    if len(payload) < 2:
        raise DecodeError("AAC audio payload missing packet type")
    try:
        aac_packet_type = FLVAACPacketType(payload[1])
    except ValueError as e:
        raise DecodeError(f"Invalid AAC packet type {payload[1]}") from e

    return AudioData(
        sound_format=sound_format,
        sound_rate=sound_rate,
        sound_size=sound_size,
        sound_type=sound_type,
        aac_packet_type=aac_packet_type,
        data=bytes(payload[2:]),
    )


def decode_video_data(payload: bytes) -> VideoData:
    """Decode an FLV video tag body.

    Raises:
        DecodeError: if the header byte is missing or invalid, or an AVC body
            is shorter than its 4-byte packet header.
    """
    if not payload:
        raise DecodeError("Empty video payload")

    video_header = payload[0]
    try:
        frame_type = FLVVideoFrameType((video_header >> 4) & 0x0F)
        codec_id = FLVVideoCodec(video_header & 0x0F)
    except ValueError as e:
        raise DecodeError(f"Invalid video tag header {video_header:#04x}: {e}") from e

    if codec_id != FLVVideoCodec.AVC:
        return VideoData(frame_type=frame_type, codec_id=codec_id, data=bytes(payload[1:]))

    if len(payload) < 5:
        raise DecodeError(f"AVC video payload too short ({len(payload)} bytes)")
    try:
        avc_packet_type = FLVAVCPacketType(payload[1])
    except ValueError as e:
        raise DecodeError(f"Invalid AVC packet type {payload[1]}") from e

    composition_time = struct.unpack(">I", b"\x00" + bytes(payload[2:5]))[0]
    # Signed 24-bit
    if composition_time >= 0x800000:
        composition_time -= 0x1000000

    return VideoData(
        frame_type=frame_type,
        codec_id=codec_id,
        avc_packet_type=avc_packet_type,
        composition_time=composition_time,
        data=bytes(payload[5:]),
    )


def decode_script_data(payload: bytes) -> ScriptData:
    """Decode an FLV script data tag body: a name followed by AMF0 values.

    Raises:
        DecodeError: if the AMF0 stream is malformed or does not start with a
            string name.
    """
    if not payload:
        raise DecodeError("Empty script data payload")

    decoder = AMFDecoder(bytes(payload))
    try:
        name = decoder.decode_value()
        if not isinstance(name, str):
            raise DecodeError(f"Script data name must be a string, got {type(name).__name__}")
        value = decoder.decode_value() if decoder.remaining else None
        extra = decoder.decode_all()
    except ValueError as e:
        raise DecodeError(f"Malformed script data: {e}") from e

    return ScriptData(name=name, value=value, extra=extra)


# ----------------------------------------------------------------------
# Tag body encoding
# ----------------------------------------------------------------------


def encode_audio_data(audio: AudioData) -> bytes:
    """Encode an audio tag body."""
    audio_header = (
        (audio.sound_format.value << 4)
        | (audio.sound_rate.value << 2)
        | (audio.sound_size.value << 1)
        | audio.sound_type.value
    )
    body = bytes([audio_header])
    if audio.sound_format == FLVSoundFormat.AAC:
        packet_type = audio.aac_packet_type or FLVAACPacketType.RAW
        body += bytes([packet_type.value])
    return body + audio.data


def encode_video_data(video: VideoData) -> bytes:
    """Encode a video tag body."""
    body = bytes([(video.frame_type.value << 4) | video.codec_id.value])
    if video.codec_id == FLVVideoCodec.AVC:
        packet_type = video.avc_packet_type or FLVAVCPacketType.NALU
        body += bytes([packet_type.value])
        body += struct.pack(">i", video.composition_time)[1:]
    return body + video.data


def encode_script_data(script: ScriptData) -> bytes:
    """Encode a script data tag body."""
    body = AMFEncoder.encode_string(script.name)
    if script.value is not None or script.extra:
        body += AMFEncoder.encode_value(script.value)
    for value in script.extra:
        body += AMFEncoder.encode_value(value)
    return body


class FLVEncoder:
    """Serializes FLV tags into a contiguous FLV stream.

    The header is produced once by :meth:`encode_header`; every subsequent
    :meth:`encode` call returns one tag followed by its PreviousTagSize.
    """

    FLV_SIGNATURE = b"FLV"
    TAG_HEADER_SIZE = 11
    MAX_DATA_SIZE = 0xFFFFFF

    def __init__(self, has_audio: bool = True, has_video: bool = True):
        self.has_audio = has_audio
        self.has_video = has_video

    def encode_header(self) -> bytes:
        """FLV header followed by PreviousTagSize0."""
        type_flags = (0x04 if self.has_audio else 0) | (0x01 if self.has_video else 0)
        return self.FLV_SIGNATURE + struct.pack(">BBI", 1, type_flags, 9) + struct.pack(">I", 0)

    def encode_body(self, tag: FLVTag) -> bytes:
        if tag.tag_type == FLVTagType.AUDIO and isinstance(tag.data, AudioData):
            return encode_audio_data(tag.data)
        if tag.tag_type == FLVTagType.VIDEO and isinstance(tag.data, VideoData):
            return encode_video_data(tag.data)
        if tag.tag_type == FLVTagType.SCRIPT_DATA and isinstance(tag.data, ScriptData):
            return encode_script_data(tag.data)
        raise ValueError(
            f"Tag type {tag.tag_type.name} does not match body {type(tag.data).__name__}"
        )

    def encode(self, tag: FLVTag) -> bytes:
        """Encode one tag, including its trailing PreviousTagSize."""
        body = self.encode_body(tag)
        if len(body) > self.MAX_DATA_SIZE:
            raise ValueError(f"Tag body too large for FLV: {len(body)} bytes")

        timestamp = tag.timestamp & 0xFFFFFFFF
        header = (
            bytes([tag.tag_type.value])
            + struct.pack(">I", len(body))[1:]
            + struct.pack(">I", timestamp & 0xFFFFFF)[1:]
            + bytes([(timestamp >> 24) & 0xFF])
            + struct.pack(">I", tag.stream_id & 0xFFFFFF)[1:]
        )
        return header + body + struct.pack(">I", self.TAG_HEADER_SIZE + len(body))


# ----------------------------------------------------------------------
# Stream reading
# ----------------------------------------------------------------------


class FLVReader:
    """Reads an FLV byte stream back into a header and typed tags."""

    def __init__(self, data: bytes):
        self.data = io.BytesIO(data)
        self.size = len(data)

    def read_bytes(self, count: int) -> bytes:
        """Read specified number of bytes."""
        data = self.data.read(count)
        if len(data) < count:
            raise EOFError(f"Expected {count} bytes, got {len(data)}")
        return data

    def read_ui8(self) -> int:
        return self.read_bytes(1)[0]

    def read_ui24(self) -> int:
        return struct.unpack(">I", b"\x00" + self.read_bytes(3))[0]

    def read_ui32(self) -> int:
        return struct.unpack(">I", self.read_bytes(4))[0]

    def parse_header(self) -> FLVHeader:
        """Parse the FLV header and PreviousTagSize0."""
        try:
            signature = self.read_bytes(3)
            if signature != FLVEncoder.FLV_SIGNATURE:
                raise DecodeError(f"Invalid FLV signature: {signature!r}")
            version = self.read_ui8()
            type_flags = self.read_ui8()
            data_offset = self.read_ui32()
            if data_offset > 9:
                self.read_bytes(data_offset - 9)
            self.read_ui32()
        except EOFError as e:
            raise DecodeError(f"Truncated FLV header: {e}") from e

        return FLVHeader(
            version=version,
            has_audio=bool(type_flags & 0x04),
            has_video=bool(type_flags & 0x01),
            data_offset=data_offset,
        )

    def parse_tag(self) -> Optional[FLVTag]:
        """Parse the next tag, or return None at end of stream or on a partial tag."""
        start = self.data.tell()
        if self.size - start < FLVEncoder.TAG_HEADER_SIZE:
            return None
        try:
            tag_type_byte = self.read_ui8()
            data_size = self.read_ui24()
            timestamp = self.read_ui24()
            timestamp |= self.read_ui8() << 24
            stream_id = self.read_ui24()
            body = self.read_bytes(data_size)
            previous_tag_size = self.read_ui32()
        except EOFError:
            self.data.seek(start)
            return None

        if previous_tag_size != FLVEncoder.TAG_HEADER_SIZE + data_size:
            raise DecodeError(
                f"PreviousTagSize mismatch at offset {start}: "
                f"{previous_tag_size} != {FLVEncoder.TAG_HEADER_SIZE + data_size}"
            )
        try:
            tag_type = FLVTagType(tag_type_byte)
        except ValueError as e:
            raise DecodeError(f"Unknown tag type {tag_type_byte} at offset {start}") from e

        data: Union[AudioData, VideoData, ScriptData]
        if tag_type == FLVTagType.AUDIO:
            data = decode_audio_data(body)
        elif tag_type == FLVTagType.VIDEO:
            data = decode_video_data(body)
        else:
            data = decode_script_data(body)

        return FLVTag(tag_type=tag_type, timestamp=timestamp, data=data, stream_id=stream_id)

    def parse_tags(self) -> List[FLVTag]:
        """Parse all complete tags remaining in the stream."""
        tags = []
        while True:
            tag = self.parse_tag()
            if tag is None:
                return tags
            tags.append(tag)


def read_flv_stream(data: bytes) -> Tuple[FLVHeader, List[FLVTag]]:
    """Read a complete FLV byte stream into its header and tags."""
    reader = FLVReader(data)
    header = reader.parse_header()
    return header, reader.parse_tags()
