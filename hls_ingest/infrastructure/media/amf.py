"""AMF0 (Action Message Format) encoding and decoding.

RTMP data messages and FLV script tags carry their payload as a sequence of
AMF0 values; ``onMetaData`` is a string followed by an ECMA array.

AMF0 Specification: Adobe Action Message Format -- AMF 0
"""

import struct
from datetime import datetime, timezone
from typing import Any, Dict, List


class ECMAArray(dict):
    """Associative array that encodes with the ECMA array marker (0x08).

    Plain ``dict`` values encode as anonymous objects (0x03); keeping the two
    apart lets a decoded ``onMetaData`` re-encode byte-for-byte.
    """


class AMFEncoder:
    """AMF0 encoder for script data values."""

    # AMF0 Type Markers
    AMF0_NUMBER = 0x00
    AMF0_BOOLEAN = 0x01
    AMF0_STRING = 0x02
    AMF0_OBJECT = 0x03
    AMF0_NULL = 0x05
    AMF0_UNDEFINED = 0x06
    AMF0_ECMA_ARRAY = 0x08
    AMF0_OBJECT_END = 0x09
    AMF0_STRICT_ARRAY = 0x0A
    AMF0_DATE = 0x0B
    AMF0_LONG_STRING = 0x0C

    @classmethod
    def encode_number(cls, value: float) -> bytes:
        """Encode AMF0 number (double)."""
        return bytes([cls.AMF0_NUMBER]) + struct.pack(">d", value)

    @classmethod
    def encode_boolean(cls, value: bool) -> bytes:
        """Encode AMF0 boolean."""
        return bytes([cls.AMF0_BOOLEAN, 1 if value else 0])

    @classmethod
    def encode_string(cls, value: str) -> bytes:
        """Encode AMF0 string, switching to long string past 65535 bytes."""
        utf8_bytes = value.encode("utf-8")
        if len(utf8_bytes) > 0xFFFF:
            return (
                bytes([cls.AMF0_LONG_STRING])
                + struct.pack(">I", len(utf8_bytes))
                + utf8_bytes
            )
        return bytes([cls.AMF0_STRING]) + struct.pack(">H", len(utf8_bytes)) + utf8_bytes

    @classmethod
    def encode_null(cls) -> bytes:
        """Encode AMF0 null."""
        return bytes([cls.AMF0_NULL])

    @classmethod
    def _encode_properties(cls, obj: Dict[str, Any]) -> bytes:
        result = b""
        for key, value in obj.items():
            key_bytes = str(key).encode("utf-8")
            result += struct.pack(">H", len(key_bytes)) + key_bytes
            result += cls.encode_value(value)
        # Empty property name followed by the end marker
        return result + struct.pack(">H", 0) + bytes([cls.AMF0_OBJECT_END])

    @classmethod
    def encode_object(cls, obj: Dict[str, Any]) -> bytes:
        """Encode AMF0 anonymous object."""
        return bytes([cls.AMF0_OBJECT]) + cls._encode_properties(obj)

    @classmethod
    def encode_ecma_array(cls, obj: Dict[str, Any]) -> bytes:
        """Encode AMF0 ECMA array (associative count is advisory)."""
        return (
            bytes([cls.AMF0_ECMA_ARRAY])
            + struct.pack(">I", len(obj))
            + cls._encode_properties(obj)
        )

    @classmethod
    def encode_array(cls, arr: List[Any]) -> bytes:
        """Encode AMF0 strict array."""
        result = bytes([cls.AMF0_STRICT_ARRAY]) + struct.pack(">I", len(arr))
        for item in arr:
            result += cls.encode_value(item)
        return result

    @classmethod
    def encode_date(cls, value: datetime) -> bytes:
        """Encode AMF0 date (milliseconds since epoch, UTC time zone)."""
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        millis = value.timestamp() * 1000.0
        return bytes([cls.AMF0_DATE]) + struct.pack(">dh", millis, 0)

    @classmethod
    def encode_value(cls, value: Any) -> bytes:
        """Encode any Python value to AMF0."""
        if isinstance(value, bool):
            return cls.encode_boolean(value)
        elif isinstance(value, (int, float)):
            return cls.encode_number(float(value))
        elif isinstance(value, str):
            return cls.encode_string(value)
        elif isinstance(value, ECMAArray):
            return cls.encode_ecma_array(value)
        elif isinstance(value, dict):
            return cls.encode_object(value)
        elif isinstance(value, (list, tuple)):
            return cls.encode_array(list(value))
        elif isinstance(value, datetime):
            return cls.encode_date(value)
        elif value is None:
            return cls.encode_null()
        else:
            raise ValueError(f"Cannot encode value of type {type(value)}")


class AMFDecoder:
    """AMF0 decoder over an in-memory buffer.

    Every ``decode_*`` method raises ``ValueError`` when the buffer runs out,
    holds an unsupported marker, or nests containers deeper than
    ``MAX_DEPTH``.
    """

    MAX_DEPTH = 64

    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0
        self._depth = 0

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def _take(self, count: int, what: str) -> bytes:
        if self.offset + count > len(self.data):
            raise ValueError(f"Insufficient data for {what}")
        chunk = self.data[self.offset : self.offset + count]
        self.offset += count
        return chunk

    def decode_number(self) -> float:
        """Decode AMF0 number."""
        return struct.unpack(">d", self._take(8, "number"))[0]

    def decode_boolean(self) -> bool:
        """Decode AMF0 boolean."""
        return self._take(1, "boolean")[0] != 0

    def decode_string(self) -> str:
        """Decode AMF0 string."""
        length = struct.unpack(">H", self._take(2, "string length"))[0]
        return self._take(length, "string").decode("utf-8")

    def decode_long_string(self) -> str:
        """Decode AMF0 long string."""
        length = struct.unpack(">I", self._take(4, "long string length"))[0]
        return self._take(length, "long string").decode("utf-8")

    def _decode_properties(self, target: Dict[str, Any]) -> Dict[str, Any]:
        while True:
            name_length = struct.unpack(">H", self._take(2, "property name length"))[0]
            if name_length == 0:
                if self._take(1, "object end marker")[0] != AMFEncoder.AMF0_OBJECT_END:
                    raise ValueError("Invalid object end marker")
                return target
            name = self._take(name_length, "property name").decode("utf-8")
            target[name] = self.decode_value()

    def decode_object(self) -> Dict[str, Any]:
        """Decode AMF0 anonymous object."""
        return self._decode_properties({})

    def decode_ecma_array(self) -> ECMAArray:
        """Decode AMF0 ECMA array."""
        self._take(4, "ECMA array count")
        return self._decode_properties(ECMAArray())

    def decode_array(self) -> List[Any]:
        """Decode AMF0 strict array."""
        length = struct.unpack(">I", self._take(4, "array length"))[0]
        return [self.decode_value() for _ in range(length)]

    def decode_date(self) -> datetime:
        """Decode AMF0 date; the time zone field is ignored."""
        millis, _tz = struct.unpack(">dh", self._take(10, "date"))
        try:
            return datetime.fromtimestamp(millis / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError) as e:
            raise ValueError(f"Date out of range: {millis}") from e

    def decode_value(self) -> Any:
        """Decode any AMF0 value."""
        if self._depth >= self.MAX_DEPTH:
            raise ValueError(f"AMF0 nesting exceeds {self.MAX_DEPTH} levels")
        self._depth += 1
        try:
            return self._decode_marked_value()
        finally:
            self._depth -= 1

    def _decode_marked_value(self) -> Any:
        type_marker = self._take(1, "value type")[0]

        if type_marker == AMFEncoder.AMF0_NUMBER:
            return self.decode_number()
        elif type_marker == AMFEncoder.AMF0_BOOLEAN:
            return self.decode_boolean()
        elif type_marker == AMFEncoder.AMF0_STRING:
            return self.decode_string()
        elif type_marker == AMFEncoder.AMF0_LONG_STRING:
            return self.decode_long_string()
        elif type_marker == AMFEncoder.AMF0_OBJECT:
            return self.decode_object()
        elif type_marker == AMFEncoder.AMF0_ECMA_ARRAY:
            return self.decode_ecma_array()
        elif type_marker == AMFEncoder.AMF0_STRICT_ARRAY:
            return self.decode_array()
        elif type_marker == AMFEncoder.AMF0_DATE:
            return self.decode_date()
        elif type_marker in (AMFEncoder.AMF0_NULL, AMFEncoder.AMF0_UNDEFINED):
            return None
        else:
            raise ValueError(f"Unsupported AMF0 type marker: {type_marker:#04x}")

    def decode_all(self) -> List[Any]:
        """Decode values until the buffer is exhausted."""
        values = []
        while self.remaining > 0:
            values.append(self.decode_value())
        return values
