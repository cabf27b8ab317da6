"""Internal vessel data representation models.

Canonical, source-agnostic structures for one vessel as seen in a single
poll cycle. Every collaborator normalises its payload into these shapes
before anything downstream touches it.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Optional

# Placeholders used when a source does not know the value
UNKNOWN_NAME = "Unknown"


class NavigationStatus(IntEnum):
    """AIS Navigation Status codes (0-15)."""

    UNDERWAY_ENGINE = 0
    AT_ANCHOR = 1
    NOT_UNDER_COMMAND = 2
    RESTRICTED_MANEUVERABILITY = 3
    CONSTRAINED_BY_DRAFT = 4
    MOORED = 5
    AGROUND = 6
    ENGAGED_IN_FISHING = 7
    UNDERWAY_SAILING = 8
    RESERVED_HSC = 9
    RESERVED_WIG = 10
    TOWING_ASTERN = 11
    PUSHING_AHEAD = 12
    RESERVED = 13
    AIS_SART_ACTIVE = 14
    NOT_DEFINED = 15


# Textual navigation states as published by the primary source
NAVIGATION_STATE_MAP: dict[str, NavigationStatus] = {
    "motoring": NavigationStatus.UNDERWAY_ENGINE,
    "anchored": NavigationStatus.AT_ANCHOR,
    "not under command": NavigationStatus.NOT_UNDER_COMMAND,
    "restricted manouverability": NavigationStatus.RESTRICTED_MANEUVERABILITY,
    "restricted maneuverability": NavigationStatus.RESTRICTED_MANEUVERABILITY,
    "constrained by draft": NavigationStatus.CONSTRAINED_BY_DRAFT,
    "moored": NavigationStatus.MOORED,
    "aground": NavigationStatus.AGROUND,
    "fishing": NavigationStatus.ENGAGED_IN_FISHING,
    "sailing": NavigationStatus.UNDERWAY_SAILING,
    "hazardous material high speed": NavigationStatus.RESERVED_HSC,
    "hazardous material wing in ground": NavigationStatus.RESERVED_WIG,
    "power-driven vessel towing astern": NavigationStatus.TOWING_ASTERN,
    "power-driven vessel pushing ahead": NavigationStatus.PUSHING_AHEAD,
    "reserved": NavigationStatus.RESERVED,
    "ais-sart": NavigationStatus.AIS_SART_ACTIVE,
    "undefined": NavigationStatus.NOT_DEFINED,
    "default": NavigationStatus.NOT_DEFINED,
}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Returns None for missing or unparseable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass
class Measurement:
    """A single timestamped value with optional unit metadata."""

    value: Any
    units: Optional[str] = None
    timestamp: Optional[datetime] = None
    source: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "value": self.value,
            "units": self.units,
            "timestamp": _iso(self.timestamp),
            "source": self.source,
        }


@dataclass
class PositionFix:
    """Geographic position as reported by a source."""

    latitude: Optional[float]
    longitude: Optional[float]
    timestamp: Optional[datetime] = None
    source: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        """Check that both coordinates are finite and within range."""
        try:
            lat = float(self.latitude)
            lon = float(self.longitude)
        except (TypeError, ValueError):
            return False
        return -90 <= lat <= 90 and -180 <= lon <= 180

    def age_seconds(self, now: datetime) -> Optional[float]:
        """Seconds elapsed since the fix, or None without a timestamp."""
        if self.timestamp is None:
            return None
        return (now - self.timestamp).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "timestamp": _iso(self.timestamp),
            "source": self.source,
        }


@dataclass
class Navigation:
    """Dynamic and voyage-related vessel data."""

    position: Optional[PositionFix] = None
    speed_over_ground: Optional[Measurement] = None
    course_over_ground: Optional[Measurement] = None
    heading: Optional[Measurement] = None
    rate_of_turn: Optional[Measurement] = None
    state: Optional[Measurement] = None
    destination: Optional[Measurement] = None
    eta: Optional[Measurement] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            name: (item.to_dict() if item is not None else None)
            for name, item in (
                ("position", self.position),
                ("speedOverGround", self.speed_over_ground),
                ("courseOverGroundTrue", self.course_over_ground),
                ("headingTrue", self.heading),
                ("rateOfTurn", self.rate_of_turn),
                ("state", self.state),
                ("destination", self.destination),
                ("eta", self.eta),
            )
        }


@dataclass
class Design:
    """Hull particulars in meters, plus the AIS ship type code."""

    length: Optional[float] = None
    beam: Optional[float] = None
    draft: Optional[float] = None
    ais_ship_type: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "length": self.length,
            "beam": self.beam,
            "draft": self.draft,
            "aisShipType": self.ais_ship_type,
        }


@dataclass
class AISSensor:
    """Antenna placement and transponder class."""

    from_bow: Optional[float] = None
    from_center: Optional[float] = None
    ais_class: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "fromBow": self.from_bow,
            "fromCenter": self.from_center,
            "class": self.ais_class,
        }


@dataclass
class VesselRecord:
    """One logical vessel, rebuilt every poll cycle and keyed by MMSI."""

    mmsi: str
    name: str = UNKNOWN_NAME
    callsign: str = ""
    imo: Optional[str] = None
    navigation: Navigation = field(default_factory=Navigation)
    design: Design = field(default_factory=Design)
    ais: AISSensor = field(default_factory=AISSensor)

    # Name with stale-data suffix, only used for the six-bit name fields
    display_name: Optional[str] = None

    @property
    def has_valid_name(self) -> bool:
        return is_real_name(self.name)

    @property
    def has_callsign(self) -> bool:
        return bool(self.callsign and self.callsign.strip())

    @property
    def broadcast_name(self) -> str:
        """Name as it should appear in encoded messages."""
        return self.display_name or self.name

    @property
    def is_class_b(self) -> bool:
        """Class B transponder; absent, empty and 'A' mean Class A."""
        return (self.ais.ais_class or "").strip().upper() == "B"

    @property
    def is_base_station(self) -> bool:
        return (self.ais.ais_class or "").strip().upper() == "BASE"

    def position_age_seconds(self, now: datetime) -> Optional[float]:
        position = self.navigation.position
        if position is None:
            return None
        return position.age_seconds(now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "mmsi": self.mmsi,
            "name": self.name,
            "callsign": self.callsign,
            "imo": self.imo,
            "navigation": self.navigation.to_dict(),
            "design": self.design.to_dict(),
            "sensors": {"ais": self.ais.to_dict()},
        }


def is_real_name(name: Optional[str]) -> bool:
    """A name is real when it is neither empty nor the placeholder."""
    if not name or not name.strip():
        return False
    return name.strip().lower() != UNKNOWN_NAME.lower()
