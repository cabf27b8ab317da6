"""Physical-to-AIS field conversions shared by every message type.

All functions return integer field values ready for the bit writer and
substitute the AIS "not available" codes when the input is missing or
out of range.
"""

import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from ais_relay.ais.models import (
    NAVIGATION_STATE_MAP,
    AISSensor,
    Design,
    Measurement,
    NavigationStatus,
    PositionFix,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

MS_TO_KNOTS = 1.94384

SOG_UNAVAILABLE = 1023
SOG_MAX = 1022
COG_UNAVAILABLE = 3600
COG_MAX = 3599
HEADING_UNAVAILABLE = 511
ROT_UNAVAILABLE = -128
ROT_MAX = 126
ROT_MAX_DEG_PER_MIN = 708.0
TIMESTAMP_UNAVAILABLE = 60

# 181 and 91 degrees in 1/10000 minute
LON_UNAVAILABLE = 0x6791AC0
LAT_UNAVAILABLE = 0x3412140
LON_LIMIT = 180 * 600000
LAT_LIMIT = 90 * 600000

# Rate of turn the primary source publishes when the value is unknown
SOURCE_ROT_UNAVAILABLE = -2.23402144306284

ETA_UNAVAILABLE = (0, 0, 24, 60)

_SHORT_ETA = re.compile(r"^(\d{2})-(\d{2})T(\d{2}):(\d{2})Z$")
_FULL_ETA = re.compile(r"^\d{4}-\d{2}-\d{2}T")


class AnglePolicy(str, Enum):
    """How angles without unit metadata are interpreted."""

    MAGNITUDE = "magnitude"  # |value| <= 2*pi means radians
    RADIANS = "radians"
    DEGREES = "degrees"


@dataclass(frozen=True)
class MotionFields:
    sog: int
    cog: int
    heading: int


@dataclass(frozen=True)
class Dimensions:
    to_bow: int
    to_stern: int
    to_port: int
    to_starboard: int


def round_half_up(value: float) -> int:
    """Round .5 away from negative infinity, as chart plotters expect."""
    return int(math.floor(value + 0.5))


def _finite(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _units(measurement: Optional[Measurement]) -> str:
    if measurement is None or not measurement.units:
        return ""
    return measurement.units.lower()


def angle_to_degrees(value: float, units: str, policy: AnglePolicy) -> float:
    if "rad" in units:
        return math.degrees(value)
    if "deg" in units:
        return value
    if policy is AnglePolicy.RADIANS:
        return math.degrees(value)
    if policy is AnglePolicy.DEGREES:
        return value
    return math.degrees(value) if abs(value) <= 2 * math.pi else value


def speed_in_knots(measurement: Optional[Measurement]) -> Optional[float]:
    """Speed over ground in knots; values without a knot unit are m/s."""
    if measurement is None:
        return None
    value = _finite(measurement.value)
    if value is None:
        return None
    if "kn" in _units(measurement):
        return value
    return value * MS_TO_KNOTS


def compute_motion(
    sog: Optional[Measurement],
    cog: Optional[Measurement],
    heading: Optional[Measurement],
    min_alarm_sog: float = 0.2,
    policy: AnglePolicy = AnglePolicy.MAGNITUDE,
) -> MotionFields:
    """Encode SOG, COG and true heading.

    Speeds under ``min_alarm_sog`` knots are treated as stationary, which
    also marks course and heading as not available.
    """
    knots = speed_in_knots(sog)
    if knots is not None and knots < min_alarm_sog:
        knots = 0.0

    if knots is None:
        sog10 = SOG_UNAVAILABLE
    else:
        sog10 = min(max(round_half_up(knots * 10), 0), SOG_MAX)

    speed_valid = knots is not None and knots >= min_alarm_sog

    cog10 = COG_UNAVAILABLE
    cog_value = _finite(cog.value) if cog is not None else None
    if speed_valid and cog_value is not None:
        degrees = angle_to_degrees(cog_value, _units(cog), policy) % 360
        cog10 = min(round_half_up(degrees * 10), COG_MAX)

    heading_code = HEADING_UNAVAILABLE
    heading_value = _finite(heading.value) if heading is not None else None
    if speed_valid and cog10 != COG_UNAVAILABLE and heading_value is not None:
        units = _units(heading)
        if "rad" in units and heading_value > 2 * math.pi:
            heading_code = HEADING_UNAVAILABLE
        else:
            degrees = angle_to_degrees(heading_value, units, policy)
            if 360 <= degrees <= HEADING_UNAVAILABLE:
                heading_code = HEADING_UNAVAILABLE
            else:
                heading_code = min(round_half_up(degrees % 360), 359)

    return MotionFields(sog=sog10, cog=cog10, heading=heading_code)


def compute_rot(rate: Optional[Measurement]) -> int:
    """Encode rate of turn with the ITU-R M.1371 square-root law."""
    value = _finite(rate.value) if rate is not None else None
    if value is None:
        return ROT_UNAVAILABLE

    units = _units(rate)
    if "rad/s" in units:
        if abs(value - SOURCE_ROT_UNAVAILABLE) < 1e-6:
            return ROT_UNAVAILABLE
        per_minute = math.degrees(value) * 60
    elif "deg/s" in units:
        per_minute = value * 60
    elif "deg/min" in units:
        per_minute = value
    elif abs(value) < 10:
        # no usable unit: small magnitudes are rad/s
        per_minute = math.degrees(value) * 60
    else:
        per_minute = value

    per_minute = max(-ROT_MAX_DEG_PER_MIN, min(ROT_MAX_DEG_PER_MIN, per_minute))
    if per_minute == 0:
        return ROT_UNAVAILABLE

    sign = -1 if per_minute < 0 else 1
    rot = round_half_up(sign * 4.733 * math.sqrt(abs(per_minute)))
    return max(-ROT_MAX, min(ROT_MAX, rot))


def encode_position(position: Optional[PositionFix]) -> tuple[int, int]:
    """Longitude and latitude in 1/10000 minute, or the unavailable codes."""
    lon = _finite(position.longitude) if position else None
    lat = _finite(position.latitude) if position else None

    lon_code = LON_UNAVAILABLE
    if lon is not None:
        lon_code = round_half_up(lon * 600000)
        if not -LON_LIMIT <= lon_code <= LON_LIMIT:
            lon_code = LON_UNAVAILABLE

    lat_code = LAT_UNAVAILABLE
    if lat is not None:
        lat_code = round_half_up(lat * 600000)
        if not -LAT_LIMIT <= lat_code <= LAT_LIMIT:
            lat_code = LAT_UNAVAILABLE

    return lon_code, lat_code


def position_timestamp(
    position: Optional[PositionFix],
    has_speed: bool,
    now: datetime,
) -> int:
    """UTC second of the fix if it is at most a minute old, else 60."""
    if position is None or position.timestamp is None or not has_speed:
        return TIMESTAMP_UNAVAILABLE
    age = position.age_seconds(now)
    if age is None or age > 60:
        return TIMESTAMP_UNAVAILABLE
    return position.timestamp.second


def navigation_status_code(state: Optional[Measurement], mmsi: str = "") -> int:
    """Map a textual or numeric navigation state to its AIS code."""
    if state is None or state.value is None:
        return NavigationStatus.NOT_DEFINED
    raw = state.value

    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        code = _finite(raw)
        if code is not None and 0 <= code <= 15 and code == int(code):
            return int(code)
        logger.warning(f"Invalid navigation state {raw!r} for MMSI {mmsi}")
        return NavigationStatus.NOT_DEFINED

    if isinstance(raw, str):
        key = raw.strip().lower()
        if key in NAVIGATION_STATE_MAP:
            return NAVIGATION_STATE_MAP[key]
        if key:
            logger.warning(f"Unknown navigation status {raw!r} for MMSI {mmsi}")
        return NavigationStatus.NOT_DEFINED

    logger.warning(f"Invalid navigation state type {raw!r} for MMSI {mmsi}")
    return NavigationStatus.NOT_DEFINED


def compute_dimensions(design: Design, ais: AISSensor) -> Dimensions:
    """Reference point offsets, clamped to what the fields can carry."""
    length = _finite(design.length) or 0.0
    beam = _finite(design.beam) or 0.0
    from_bow = _finite(ais.from_bow) or 0.0
    from_center = _finite(ais.from_center) or 0.0

    def clamp(value: float, limit: int) -> int:
        return min(max(round_half_up(max(0.0, value)), 0), limit)

    return Dimensions(
        to_bow=clamp(from_bow, 511),
        to_stern=clamp(length - from_bow, 511),
        to_port=clamp(beam / 2 - from_center, 63),
        to_starboard=clamp(beam / 2 + from_center, 63),
    )


def draught_decimeters(design: Design) -> int:
    draft = _finite(design.draft) or 0.0
    return min(max(round_half_up(draft * 10), 0), 255)


def ship_type_code(design: Design) -> int:
    code = _finite(design.ais_ship_type)
    if code is None or not 0 <= code <= 255:
        return 0
    return int(code)


def epfd_from_source(
    source: Optional[str], default: int = 0, gnss_as_gps: bool = False
) -> int:
    """Electronic position fixing device type from a source label."""
    label = (source or "").lower()
    if "gps" in label or (gnss_as_gps and "gnss" in label):
        return 1
    if "glonass" in label:
        return 2
    if "galileo" in label:
        return 3
    return default


def parse_imo(raw: Any) -> int:
    """Digits-only parse of an IMO field; 0 when absent or oversized."""
    if raw is None:
        return 0
    digits = re.sub(r"\D", "", str(raw))
    if not digits:
        return 0
    value = int(digits)
    return value if value < 1 << 30 else 0


def parse_eta(text: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """Parse an ETA in full ISO-8601 or the AIS short form ``MM-DDTHH:mmZ``.

    Short forms are projected onto their next occurrence.
    """
    if not text:
        return None
    text = str(text).strip()
    if text.startswith("00-00") or text.startswith("0000-00-00"):
        return None

    if _FULL_ETA.match(text):
        return parse_timestamp(text)

    match = _SHORT_ETA.match(text)
    if not match:
        return None

    month, day, hour, minute = (int(part) for part in match.groups())
    now = now or datetime.now(timezone.utc)
    # 02-29 needs a leap year; eight years covers a skipped century leap year
    for year in range(now.year, now.year + 9):
        try:
            candidate = datetime(year, month, day, hour, minute, tzinfo=timezone.utc)
        except ValueError:
            continue
        if candidate >= now:
            return candidate
    return None


def eta_fields(text: Optional[str], now: Optional[datetime] = None) -> tuple[int, int, int, int]:
    """ETA as (month, day, hour, minute) or the unavailable tuple."""
    eta = parse_eta(text, now)
    if eta is None:
        return ETA_UNAVAILABLE
    return eta.month, eta.day, eta.hour, eta.minute
