"""Media container components.

AMF0 script data, FLV tag bodies and the FLV stream muxer that feeds the
transcoder.
"""

from .amf import AMFDecoder, AMFEncoder, ECMAArray
from .flv import FLVEncoder, FLVHeader, FLVReader, FLVTag, FLVTagType, read_flv_stream
from .muxer import FLVMuxer

__all__ = [
    # AMF
    "AMFDecoder",
    "AMFEncoder",
    "ECMAArray",

    # FLV
    "FLVEncoder",
    "FLVHeader",
    "FLVReader",
    "FLVTag",
    "FLVTagType",
    "read_flv_stream",

    # Muxer
    "FLVMuxer",
]
