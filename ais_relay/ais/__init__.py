"""AIS encoding module.

This module provides:
- Canonical vessel record shared by every source
- Six-bit armoring and bit-field primitives
- Message builders for types 1, 5, 19 and 24
- AIVDM sentence framing
"""

from ais_relay.ais.models import (
    AISSensor,
    Design,
    Measurement,
    Navigation,
    NavigationStatus,
    PositionFix,
    VesselRecord,
)
from ais_relay.ais.encoding import (
    BitBuilder,
    EncodingError,
    bits_to_payload,
    checksum,
)
from ais_relay.ais.fields import AnglePolicy
from ais_relay.ais.messages import (
    BuildResult,
    EncoderOptions,
    build_extended_class_b_report,
    build_messages,
    build_position_report,
    build_static_class_b,
    build_static_voyage,
)
from ais_relay.ais.nmea import (
    FramingError,
    create_sentence,
    frame_message,
    frame_payload,
)

__all__ = [
    # Models
    "AISSensor",
    "Design",
    "Measurement",
    "Navigation",
    "NavigationStatus",
    "PositionFix",
    "VesselRecord",
    # Encoding
    "BitBuilder",
    "EncodingError",
    "bits_to_payload",
    "checksum",
    # Messages
    "AnglePolicy",
    "BuildResult",
    "EncoderOptions",
    "build_extended_class_b_report",
    "build_messages",
    "build_position_report",
    "build_static_class_b",
    "build_static_voyage",
    # Framing
    "FramingError",
    "create_sentence",
    "frame_message",
    "frame_payload",
]
