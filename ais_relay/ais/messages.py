"""AIS message assembly for types 1, 5, 19 and 24.

Builders never raise: each returns a :class:`BuildResult` carrying either
the armored payload or the reason the message could not be produced.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from ais_relay.ais.encoding import BitBuilder, bits_to_payload
from ais_relay.ais.fields import (
    AnglePolicy,
    compute_dimensions,
    compute_motion,
    compute_rot,
    draught_decimeters,
    encode_position,
    epfd_from_source,
    eta_fields,
    navigation_status_code,
    parse_imo,
    position_timestamp,
    ship_type_code,
)
from ais_relay.ais.models import VesselRecord

logger = logging.getLogger(__name__)

# Expected bit lengths per layout
POSITION_REPORT_BITS = 168
EXTENDED_CLASS_B_BITS = 312
STATIC_VOYAGE_BITS = 424
STATIC_CLASS_B_BITS = 168


@dataclass(frozen=True)
class EncoderOptions:
    """Tunables of the SOG/COG/heading pipeline per message family."""

    min_alarm_sog: float = 0.2
    class_a_angle_policy: AnglePolicy = AnglePolicy.MAGNITUDE
    class_b_angle_policy: AnglePolicy = AnglePolicy.MAGNITUDE


@dataclass(frozen=True)
class BuildResult:
    """Outcome of building one AIS message."""

    message_type: str
    payload: Optional[str] = None
    bit_length: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.payload is not None

    @classmethod
    def from_bits(cls, message_type: str, bits: str) -> "BuildResult":
        return cls(
            message_type=message_type,
            payload=bits_to_payload(bits),
            bit_length=len(bits),
        )

    @classmethod
    def failure(cls, message_type: str, error: str) -> "BuildResult":
        return cls(message_type=message_type, error=error)


def _guarded(
    message_type: str,
    record: VesselRecord,
    build: Callable[[], BuildResult],
) -> BuildResult:
    try:
        return build()
    except (ValueError, TypeError, ArithmeticError) as e:
        logger.error(f"Error creating type {message_type} for MMSI {record.mmsi}: {e}")
        return BuildResult.failure(message_type, str(e))


def _mmsi(record: VesselRecord) -> int:
    mmsi = int(record.mmsi)
    if mmsi <= 0 or mmsi >= 1 << 30:
        raise ValueError(f"Invalid MMSI: {record.mmsi}")
    return mmsi


def _header(message_type: int, mmsi: int) -> BitBuilder:
    return BitBuilder().uint(message_type, 6).uint(0, 2).uint(mmsi, 30)


def _add_dimensions(bits: BitBuilder, record: VesselRecord) -> None:
    dims = compute_dimensions(record.design, record.ais)
    bits.uint(dims.to_bow, 9).uint(dims.to_stern, 9)
    bits.uint(dims.to_port, 6).uint(dims.to_starboard, 6)


def build_position_report(
    record: VesselRecord,
    options: EncoderOptions = EncoderOptions(),
    now: Optional[datetime] = None,
) -> BuildResult:
    """Type 1 - Class A position report (168 bits)."""
    now = now or datetime.now(timezone.utc)

    def build() -> BuildResult:
        mmsi = _mmsi(record)
        nav = record.navigation
        if nav.position is None:
            return BuildResult.failure("1", "missing position")

        motion = compute_motion(
            nav.speed_over_ground,
            nav.course_over_ground,
            nav.heading,
            options.min_alarm_sog,
            options.class_a_angle_policy,
        )
        lon, lat = encode_position(nav.position)

        bits = _header(1, mmsi)
        bits.uint(navigation_status_code(nav.state, record.mmsi), 4)
        bits.signed(compute_rot(nav.rate_of_turn), 8)
        bits.uint(motion.sog, 10)
        bits.uint(0, 1)  # position accuracy
        bits.signed(lon, 28).signed(lat, 27)
        bits.uint(motion.cog, 12)
        bits.uint(motion.heading, 9)
        bits.uint(position_timestamp(nav.position, nav.speed_over_ground is not None, now), 6)
        bits.uint(0, 2)  # maneuver
        bits.uint(0, 3)  # spare
        bits.uint(0, 1)  # RAIM
        bits.uint(0, 19)  # radio status

        if len(bits) != POSITION_REPORT_BITS:
            return BuildResult.failure("1", f"bit length {len(bits)} != {POSITION_REPORT_BITS}")
        return BuildResult.from_bits("1", bits.bits)

    return _guarded("1", record, build)


def build_extended_class_b_report(
    record: VesselRecord,
    options: EncoderOptions = EncoderOptions(),
    now: Optional[datetime] = None,
) -> BuildResult:
    """Type 19 - extended Class B position report (exactly 312 bits)."""
    now = now or datetime.now(timezone.utc)

    def build() -> BuildResult:
        mmsi = _mmsi(record)
        nav = record.navigation
        if nav.position is None:
            return BuildResult.failure("19", "missing position")

        motion = compute_motion(
            nav.speed_over_ground,
            nav.course_over_ground,
            nav.heading,
            options.min_alarm_sog,
            options.class_b_angle_policy,
        )
        lon, lat = encode_position(nav.position)

        bits = _header(19, mmsi)
        bits.uint(0, 8)  # reserved
        bits.uint(motion.sog, 10)
        bits.uint(0, 1)  # position accuracy
        bits.signed(lon, 28).signed(lat, 27)
        bits.uint(motion.cog, 12)
        bits.uint(motion.heading, 9)
        bits.uint(position_timestamp(nav.position, nav.speed_over_ground is not None, now), 6)
        bits.uint(0, 4)  # regional reserved
        bits.text(record.broadcast_name, 20)
        bits.uint(ship_type_code(record.design), 8)
        _add_dimensions(bits, record)
        bits.uint(epfd_from_source(nav.position.source), 4)
        bits.uint(0, 1)  # RAIM
        bits.uint(0, 1)  # DTE
        bits.uint(0, 1)  # assigned mode
        bits.uint(0, 4)  # spare

        if len(bits) != EXTENDED_CLASS_B_BITS:
            logger.warning(
                f"AIS type 19 bit length is {len(bits)}, not {EXTENDED_CLASS_B_BITS} "
                f"(MMSI {record.mmsi})"
            )
            return BuildResult.failure("19", f"bit length {len(bits)} != {EXTENDED_CLASS_B_BITS}")
        return BuildResult.from_bits("19", bits.bits)

    return _guarded("19", record, build)


def build_static_voyage(
    record: VesselRecord,
    now: Optional[datetime] = None,
) -> BuildResult:
    """Type 5 - static and voyage related data (424 bits)."""
    now = now or datetime.now(timezone.utc)

    def build() -> BuildResult:
        mmsi = _mmsi(record)
        nav = record.navigation
        position_source = nav.position.source if nav.position else None
        destination = nav.destination.value if nav.destination else ""
        eta = nav.eta.value if nav.eta else None
        month, day, hour, minute = eta_fields(eta, now)

        bits = _header(5, mmsi)
        bits.uint(0, 2)  # AIS version
        bits.uint(parse_imo(record.imo), 30)
        bits.callsign(record.callsign)
        bits.text(record.broadcast_name, 20)
        bits.uint(ship_type_code(record.design), 8)
        _add_dimensions(bits, record)
        bits.uint(epfd_from_source(position_source, default=1, gnss_as_gps=True), 4)
        bits.uint(month, 4).uint(day, 5).uint(hour, 5).uint(minute, 6)
        bits.uint(draught_decimeters(record.design), 8)
        bits.text(str(destination or ""), 20)
        bits.uint(0, 1)  # DTE
        bits.uint(0, 1)  # spare

        if len(bits) != STATIC_VOYAGE_BITS:
            return BuildResult.failure("5", f"bit length {len(bits)} != {STATIC_VOYAGE_BITS}")
        return BuildResult.from_bits("5", bits.bits)

    return _guarded("5", record, build)


def build_static_class_b(record: VesselRecord) -> tuple[BuildResult, BuildResult]:
    """Type 24 parts A (name) and B (type, callsign, dimensions)."""

    def part_a() -> BuildResult:
        bits = _header(24, _mmsi(record))
        bits.uint(0, 2)  # part A
        bits.text(record.broadcast_name, 20)
        bits.pad_to(STATIC_CLASS_B_BITS)
        return BuildResult.from_bits("24A", bits.bits)

    def part_b() -> BuildResult:
        bits = _header(24, _mmsi(record))
        bits.uint(1, 2)  # part B
        bits.uint(ship_type_code(record.design), 8)
        bits.text("", 3, fill="@")  # vendor id
        bits.uint(0, 4)  # unit model code
        bits.uint(0, 20)  # serial number
        bits.callsign(record.callsign)
        _add_dimensions(bits, record)
        bits.uint(0, 6)  # spare
        if len(bits) != STATIC_CLASS_B_BITS:
            return BuildResult.failure("24B", f"bit length {len(bits)} != {STATIC_CLASS_B_BITS}")
        return BuildResult.from_bits("24B", bits.bits)

    return _guarded("24A", record, part_a), _guarded("24B", record, part_b)


def build_messages(
    record: VesselRecord,
    options: EncoderOptions = EncoderOptions(),
    now: Optional[datetime] = None,
) -> list[BuildResult]:
    """All messages for one vessel, position report first.

    Class B vessels get types 19 and 24A/24B, everyone else types 1 and 5.
    """
    now = now or datetime.now(timezone.utc)
    if record.is_class_b:
        part_a, part_b = build_static_class_b(record)
        return [build_extended_class_b_report(record, options, now), part_a, part_b]
    return [build_position_report(record, options, now), build_static_voyage(record, now)]
