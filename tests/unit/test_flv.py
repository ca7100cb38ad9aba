"""Unit tests for the FLV tag codec."""

import struct

import pytest

from hls_ingest.domain.exceptions import DecodeError
from hls_ingest.infrastructure.media.amf import ECMAArray
from hls_ingest.infrastructure.media.flv import (
    AudioData,
    FLVAACPacketType,
    FLVAVCPacketType,
    FLVEncoder,
    FLVHeader,
    FLVReader,
    FLVSoundFormat,
    FLVSoundRate,
    FLVSoundSize,
    FLVSoundType,
    FLVTag,
    FLVTagType,
    FLVVideoCodec,
    FLVVideoFrameType,
    ScriptData,
    VideoData,
    decode_audio_data,
    decode_script_data,
    decode_video_data,
    encode_audio_data,
    encode_video_data,
    read_flv_stream,
)


class TestTagBodyDecoding:
    """Test decoding of RTMP message payloads as FLV tag bodies."""

    def test_decode_aac_audio(self, aac_raw_frame):
        audio = decode_audio_data(aac_raw_frame)

        assert audio.sound_format == FLVSoundFormat.AAC
        assert audio.sound_rate == FLVSoundRate.RATE_44_KHZ
        assert audio.sound_size == FLVSoundSize.BITS_16
        assert audio.sound_type == FLVSoundType.STEREO
        assert audio.aac_packet_type == FLVAACPacketType.RAW
        assert audio.data == aac_raw_frame[2:]

    def test_decode_aac_sequence_header(self):
        audio = decode_audio_data(b"\xaf\x00\x12\x10")
        assert audio.aac_packet_type == FLVAACPacketType.SEQUENCE_HEADER
        assert audio.data == b"\x12\x10"

    def test_decode_mp3_audio(self):
        """Non-AAC formats have no packet type byte."""
        audio = decode_audio_data(b"\x2e\xff\xfb")
        assert audio.sound_format == FLVSoundFormat.MP3
        assert audio.aac_packet_type is None
        assert audio.data == b"\xff\xfb"

    def test_decode_avc_video(self, avc_keyframe):
        video = decode_video_data(avc_keyframe)

        assert video.frame_type == FLVVideoFrameType.KEY_FRAME
        assert video.is_keyframe
        assert video.codec_id == FLVVideoCodec.AVC
        assert video.avc_packet_type == FLVAVCPacketType.NALU
        assert video.composition_time == 0
        assert video.data == avc_keyframe[5:]

    def test_decode_negative_composition_time(self):
        video = decode_video_data(b"\x27\x01\xff\xff\xfe" + b"nal")
        assert video.frame_type == FLVVideoFrameType.INTER_FRAME
        assert video.composition_time == -2

    def test_decode_sorenson_video(self):
        video = decode_video_data(b"\x22abc")
        assert video.codec_id == FLVVideoCodec.SORENSON_H263
        assert video.avc_packet_type is None
        assert video.data == b"abc"

    def test_decode_accepts_memoryview(self, avc_keyframe):
        video = decode_video_data(memoryview(avc_keyframe))
        assert isinstance(video.data, bytes)

    def test_decode_script_data(self, metadata_payload):
        script = decode_script_data(metadata_payload)
        assert script.name == "onMetaData"
        assert script.value["encoder"] == "obs-output module"
        assert script.extra == []

    @pytest.mark.parametrize("payload", [b"", b"\xaf", b"\xaf\x05", b"\xd0\x00"])
    def test_decode_audio_malformed(self, payload):
        with pytest.raises(DecodeError):
            decode_audio_data(payload)

    @pytest.mark.parametrize("payload", [b"", b"\x17\x01", b"\x60\x00", b"\x18\x00", b"\x17\x09\x00\x00\x00"])
    def test_decode_video_malformed(self, payload):
        with pytest.raises(DecodeError):
            decode_video_data(payload)

    @pytest.mark.parametrize(
        "payload",
        [
            b"",
            b"\x00" + b"\x00" * 8,
            b"\x02\x00\x09short",
            b"\xfe",
            b"\x02\x00\x0aonMetaData" + b"\x0a\x00\x00\x00\x01" * 5000,
        ],
    )
    def test_decode_script_malformed(self, payload):
        with pytest.raises(DecodeError):
            decode_script_data(payload)


class TestFLVEncoder:
    """Test FLV stream encoding."""

    def test_header_layout(self):
        """9-byte header with audio and video flags, then PreviousTagSize0."""
        header = FLVEncoder().encode_header()

        assert len(header) == 13
        assert header[:3] == b"FLV"
        assert header[3] == 1
        assert header[4] == 0x05
        assert struct.unpack(">I", header[5:9])[0] == 9
        assert header[9:] == b"\x00\x00\x00\x00"

    def test_header_flags(self):
        assert FLVEncoder(has_audio=False).encode_header()[4] == 0x01
        assert FLVEncoder(has_video=False).encode_header()[4] == 0x04

    def test_tag_layout(self, avc_keyframe):
        """11-byte tag header, body, trailing PreviousTagSize."""
        tag = FLVTag(FLVTagType.VIDEO, 1234, decode_video_data(avc_keyframe))

        encoded = FLVEncoder().encode(tag)

        body_size = len(avc_keyframe)
        assert encoded[0] == 9
        assert struct.unpack(">I", b"\x00" + encoded[1:4])[0] == body_size
        assert struct.unpack(">I", b"\x00" + encoded[4:7])[0] == 1234
        assert encoded[7] == 0
        assert encoded[8:11] == b"\x00\x00\x00"
        assert encoded[11 : 11 + body_size] == avc_keyframe
        assert struct.unpack(">I", encoded[-4:])[0] == 11 + body_size

    def test_extended_timestamp(self, aac_raw_frame):
        """Timestamps past 24 bits spill into the extension byte."""
        tag = FLVTag(FLVTagType.AUDIO, 0x12345678, decode_audio_data(aac_raw_frame))

        encoded = FLVEncoder().encode(tag)

        assert encoded[4:7] == b"\x34\x56\x78"
        assert encoded[7] == 0x12

    def test_body_reencodes_identically(self, avc_keyframe, aac_raw_frame):
        assert encode_video_data(decode_video_data(avc_keyframe)) == avc_keyframe
        assert encode_audio_data(decode_audio_data(aac_raw_frame)) == aac_raw_frame

    def test_mismatched_body_rejected(self, aac_raw_frame):
        tag = FLVTag(FLVTagType.VIDEO, 0, decode_audio_data(aac_raw_frame))
        with pytest.raises(ValueError):
            FLVEncoder().encode(tag)


class TestFLVReader:
    """Test reading an FLV stream back."""

    def _stream(self, *tags):
        encoder = FLVEncoder()
        return encoder.encode_header() + b"".join(encoder.encode(tag) for tag in tags)

    def test_read_stream(self, avc_keyframe, aac_raw_frame):
        data = self._stream(
            FLVTag(FLVTagType.SCRIPT_DATA, 0, ScriptData("onMetaData", ECMAArray({"width": 640.0}))),
            FLVTag(FLVTagType.VIDEO, 0, decode_video_data(avc_keyframe)),
            FLVTag(FLVTagType.AUDIO, 21, decode_audio_data(aac_raw_frame)),
        )

        header, tags = read_flv_stream(data)

        assert header == FLVHeader(version=1, has_audio=True, has_video=True, data_offset=9)
        assert [t.tag_type for t in tags] == [FLVTagType.SCRIPT_DATA, FLVTagType.VIDEO, FLVTagType.AUDIO]
        assert tags[0].data.value == {"width": 640.0}
        assert tags[2].timestamp == 21

    def test_partial_tag_left_unread(self, aac_raw_frame):
        data = self._stream(FLVTag(FLVTagType.AUDIO, 0, decode_audio_data(aac_raw_frame)))

        _, tags = read_flv_stream(data[:-3])

        assert tags == []

    def test_invalid_signature(self):
        with pytest.raises(DecodeError):
            FLVReader(b"FLX\x01\x05\x00\x00\x00\x09\x00\x00\x00\x00").parse_header()

    def test_truncated_header(self):
        with pytest.raises(DecodeError):
            FLVReader(b"FLV\x01").parse_header()

    def test_previous_tag_size_mismatch(self, aac_raw_frame):
        data = bytearray(self._stream(FLVTag(FLVTagType.AUDIO, 0, decode_audio_data(aac_raw_frame))))
        data[-1] ^= 0xFF

        with pytest.raises(DecodeError):
            read_flv_stream(bytes(data))

    def test_reader_primitives(self):
        reader = FLVReader(b"\x01\x00\x00\x02\x00\x00\x00\x03")
        assert reader.read_ui8() == 1
        assert reader.read_ui24() == 2
        assert reader.read_ui32() == 3
        with pytest.raises(EOFError):
            reader.read_bytes(1)


class TestTagBodyDataclasses:
    def test_video_keyframe_property(self):
        inter = VideoData(FLVVideoFrameType.INTER_FRAME, FLVVideoCodec.AVC)
        assert not inter.is_keyframe

    def test_audio_defaults(self):
        audio = AudioData(
            FLVSoundFormat.AAC, FLVSoundRate.RATE_44_KHZ, FLVSoundSize.BITS_16, FLVSoundType.STEREO
        )
        assert audio.aac_packet_type is None
        assert audio.data == b""
