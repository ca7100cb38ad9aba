"""Unit tests for the AMF0 codec."""

import struct
from datetime import datetime, timezone

import pytest

from hls_ingest.infrastructure.media.amf import AMFDecoder, AMFEncoder, ECMAArray


class TestAMFEncoder:
    """Test AMF0 encoding."""

    def test_encode_number(self):
        """Test number encoding."""
        encoded = AMFEncoder.encode_number(42.5)
        assert encoded[0] == AMFEncoder.AMF0_NUMBER
        assert struct.unpack(">d", encoded[1:9])[0] == 42.5

    def test_encode_boolean(self):
        """Test boolean encoding."""
        assert AMFEncoder.encode_boolean(True) == b"\x01\x01"
        assert AMFEncoder.encode_boolean(False) == b"\x01\x00"

    def test_encode_string(self):
        """Test string encoding."""
        encoded = AMFEncoder.encode_string("onMetaData")
        assert encoded[0] == AMFEncoder.AMF0_STRING
        assert struct.unpack(">H", encoded[1:3])[0] == 10
        assert encoded[3:] == b"onMetaData"

    def test_encode_long_string(self):
        """Strings over 65535 bytes use the long string marker."""
        encoded = AMFEncoder.encode_string("x" * 70000)
        assert encoded[0] == AMFEncoder.AMF0_LONG_STRING
        assert struct.unpack(">I", encoded[1:5])[0] == 70000

    def test_encode_null(self):
        assert AMFEncoder.encode_null() == b"\x05"

    def test_encode_object(self):
        """Test anonymous object encoding."""
        encoded = AMFEncoder.encode_object({"a": 1})
        assert encoded[0] == AMFEncoder.AMF0_OBJECT
        assert encoded.endswith(b"\x00\x00\x09")

    def test_encode_ecma_array(self):
        """ECMA arrays carry an element count before the properties."""
        encoded = AMFEncoder.encode_ecma_array(ECMAArray({"width": 1280.0, "height": 720.0}))
        assert encoded[0] == AMFEncoder.AMF0_ECMA_ARRAY
        assert struct.unpack(">I", encoded[1:5])[0] == 2
        assert encoded.endswith(b"\x00\x00\x09")

    def test_encode_value_dispatch(self):
        """Test type dispatch, including bool before int."""
        assert AMFEncoder.encode_value(True)[0] == AMFEncoder.AMF0_BOOLEAN
        assert AMFEncoder.encode_value(3)[0] == AMFEncoder.AMF0_NUMBER
        assert AMFEncoder.encode_value(None) == b"\x05"
        assert AMFEncoder.encode_value([1, 2])[0] == AMFEncoder.AMF0_STRICT_ARRAY
        assert AMFEncoder.encode_value(ECMAArray())[0] == AMFEncoder.AMF0_ECMA_ARRAY
        assert AMFEncoder.encode_value({})[0] == AMFEncoder.AMF0_OBJECT

    def test_encode_unsupported_type(self):
        with pytest.raises(ValueError):
            AMFEncoder.encode_value(object())


class TestAMFDecoder:
    """Test AMF0 decoding."""

    def test_decode_on_metadata(self):
        """Test decoding a typical onMetaData body."""
        data = AMFEncoder.encode_string("onMetaData") + AMFEncoder.encode_ecma_array(
            ECMAArray({"width": 1920.0, "stereo": True, "encoder": "Lavf60.3.100"})
        )

        values = AMFDecoder(data).decode_all()

        assert values[0] == "onMetaData"
        assert isinstance(values[1], ECMAArray)
        assert values[1] == {"width": 1920.0, "stereo": True, "encoder": "Lavf60.3.100"}

    def test_ecma_array_reencodes_identically(self):
        data = AMFEncoder.encode_ecma_array(ECMAArray({"duration": 0.0, "filesize": 0.0}))
        decoded = AMFDecoder(data).decode_value()
        assert AMFEncoder.encode_value(decoded) == data

    def test_decode_nested_values(self):
        """Test objects, strict arrays and null inside each other."""
        value = {"tracks": [1.0, "two", None], "info": {"live": False}}
        decoded = AMFDecoder(AMFEncoder.encode_value(value)).decode_value()
        assert decoded == value

    def test_decode_undefined_as_none(self):
        assert AMFDecoder(b"\x06").decode_value() is None

    def test_decode_date(self):
        moment = datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc)
        decoded = AMFDecoder(AMFEncoder.encode_date(moment)).decode_value()
        assert decoded == moment

    def test_decode_long_string(self):
        text = "y" * 66000
        assert AMFDecoder(AMFEncoder.encode_string(text)).decode_value() == text

    def test_decode_tracks_offset(self):
        decoder = AMFDecoder(AMFEncoder.encode_number(1.0) + AMFEncoder.encode_null())
        decoder.decode_value()
        assert decoder.offset == 9
        assert decoder.remaining == 1

    def test_nesting_within_limit(self):
        value = None
        for _ in range(AMFDecoder.MAX_DEPTH - 1):
            value = [value]
        decoder = AMFDecoder(AMFEncoder.encode_value(value) + AMFEncoder.encode_number(2.0))

        assert decoder.decode_value() == value
        assert decoder.decode_value() == 2.0

    @pytest.mark.parametrize("container", [b"\x0a\x00\x00\x00\x01", b"\x03\x00\x01a", b"\x08\x00\x00\x00\x01\x00\x01a"])
    def test_nesting_beyond_limit(self, container):
        """Deeply nested containers raise ValueError instead of exhausting the stack."""
        with pytest.raises(ValueError, match="nesting"):
            AMFDecoder(container * 5000).decode_value()

    @pytest.mark.parametrize(
        "data",
        [
            b"",
            b"\x00\x01\x02",
            b"\x02\x00\x05ab",
            b"\x03\x00\x01a",
            b"\x03\x00\x00\x07",
            b"\x0d",
        ],
    )
    def test_decode_malformed(self, data):
        """Truncated data, bad end markers and unknown markers raise ValueError."""
        with pytest.raises(ValueError):
            AMFDecoder(data).decode_value()
