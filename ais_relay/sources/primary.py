"""Primary vessel source: the local vessel data server.

Fetches ``GET <api-root>/vessels`` and normalises every entry into a
:class:`VesselRecord`. Also answers the own-identity lookups.
"""

import logging
import re
import time
from typing import Any, Optional

from ais_relay.ais.models import (
    UNKNOWN_NAME,
    AISSensor,
    Design,
    Measurement,
    Navigation,
    PositionFix,
    VesselRecord,
    parse_timestamp,
)
from ais_relay.sources.base import VesselFetchError, VesselSourceAdapter

logger = logging.getLogger(__name__)

_MMSI_IN_URN = re.compile(r"mmsi:(\d+)")


def _node(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _mapping(node: Any) -> dict[str, Any]:
    return node if isinstance(node, dict) else {}


def _value(node: Any) -> Any:
    """Unwrap ``{"value": ...}`` nodes; bare values pass through."""
    if isinstance(node, dict):
        return node.get("value")
    return node


def _measurement(node: Any) -> Optional[Measurement]:
    if node is None:
        return None
    if not isinstance(node, dict):
        return Measurement(value=node)
    if node.get("value") is None:
        return None
    return Measurement(
        value=node["value"],
        units=_node(node, "meta", "units"),
        timestamp=parse_timestamp(node.get("timestamp")),
        source=node.get("$source"),
    )


def _position(node: Any) -> Optional[PositionFix]:
    if not isinstance(node, dict):
        return None
    value = node.get("value") if isinstance(node.get("value"), dict) else node
    if value.get("latitude") is None or value.get("longitude") is None:
        return None
    return PositionFix(
        latitude=value.get("latitude"),
        longitude=value.get("longitude"),
        timestamp=parse_timestamp(node.get("timestamp") or value.get("timestamp")),
        source=node.get("$source"),
    )


def _number(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _integer(value: Any) -> Optional[int]:
    number = _number(value)
    return int(number) if number is not None else None


def mmsi_from_key(key: str) -> Optional[str]:
    match = _MMSI_IN_URN.search(key)
    return match.group(1) if match else None


def normalize_vessel(mmsi: str, vessel: dict[str, Any]) -> VesselRecord:
    """Turn one primary-source vessel document into a VesselRecord."""
    nav = _mapping(vessel.get("navigation"))
    design = _mapping(vessel.get("design"))
    ais = _mapping(_node(vessel, "sensors", "ais"))

    callsign = (
        _value(vessel.get("callsign"))
        or _value(vessel.get("callSign"))
        or _value(_node(vessel, "communication", "callsignVhf"))
        or ""
    )
    imo = _value(_node(vessel, "registrations", "imo")) or _value(vessel.get("imo"))
    eta = _measurement(
        _node(nav, "courseGreatCircle", "activeRoute", "estimatedTimeOfArrival")
    ) or _measurement(_node(nav, "destination", "eta"))

    ship_type = _value(design.get("aisShipType"))
    if isinstance(ship_type, dict):
        ship_type = ship_type.get("id")

    length = _value(design.get("length"))
    if isinstance(length, dict):
        length = length.get("overall")
    draft = _value(design.get("draft"))
    if isinstance(draft, dict):
        draft = draft.get("maximum")

    return VesselRecord(
        mmsi=mmsi,
        name=str(_value(vessel.get("name")) or UNKNOWN_NAME),
        callsign=str(callsign).strip(),
        imo=str(imo) if imo else None,
        navigation=Navigation(
            position=_position(nav.get("position")),
            speed_over_ground=_measurement(nav.get("speedOverGround")),
            course_over_ground=_measurement(nav.get("courseOverGroundTrue")),
            heading=_measurement(nav.get("headingTrue")),
            rate_of_turn=_measurement(nav.get("rateOfTurn")),
            state=_measurement(nav.get("state")),
            destination=_measurement(_node(nav, "destination", "commonName")),
            eta=eta,
        ),
        design=Design(
            length=_number(length),
            beam=_number(_value(design.get("beam"))),
            draft=_number(draft),
            ais_ship_type=_integer(ship_type),
        ),
        ais=AISSensor(
            from_bow=_number(_value(ais.get("fromBow"))),
            from_center=_number(_value(ais.get("fromCenter"))),
            ais_class=_value(ais.get("class")),
        ),
    )


def normalize_vessels(
    data: dict[str, Any], own_mmsi: Optional[str] = None
) -> dict[str, VesselRecord]:
    """Normalise a ``/vessels`` document, dropping self and unkeyed entries."""
    vessels: dict[str, VesselRecord] = {}
    for key, vessel in (data or {}).items():
        if key == "self" or not isinstance(vessel, dict):
            continue
        mmsi = mmsi_from_key(key)
        if mmsi is None or (own_mmsi and mmsi == own_mmsi):
            continue
        try:
            vessels[mmsi] = normalize_vessel(mmsi, vessel)
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed vessel {mmsi}: {e}")
    return vessels


class PrimaryVesselSource(VesselSourceAdapter):
    """Vessel data from the local server's REST API."""

    source_type = "primary"

    def __init__(self, api_root: str, name: str = "Primary", timeout: float = 15.0):
        super().__init__(name=name, timeout=timeout)
        self.api_root = api_root.rstrip("/")
        self.own_mmsi: Optional[str] = None

    async def fetch_vessels(self) -> dict[str, VesselRecord]:
        start = time.monotonic()
        try:
            data = await self._get_json(f"{self.api_root}/vessels")
        except VesselFetchError:
            self._record_error()
            raise
        if not isinstance(data, dict):
            self._record_error()
            raise VesselFetchError("Unexpected /vessels document", source=self.name)

        vessels = normalize_vessels(data, self.own_mmsi)
        self._record_success(len(vessels), time.monotonic() - start)
        return vessels

    async def fetch_own_mmsi(self) -> Optional[str]:
        """Look up and remember the local vessel's MMSI."""
        if self.own_mmsi:
            return self.own_mmsi
        try:
            value = _value(await self._get_json(f"{self.api_root}/vessels/self/mmsi"))
        except VesselFetchError as e:
            logger.warning(f"Own MMSI lookup failed: {e}")
            return None
        if value:
            self.own_mmsi = str(value)
            logger.info(f"Own MMSI detected: {self.own_mmsi}")
        return self.own_mmsi

    async def fetch_own_position(self) -> Optional[PositionFix]:
        """Current position of the local vessel, if known."""
        try:
            node = await self._get_json(f"{self.api_root}/vessels/self/navigation/position")
        except VesselFetchError as e:
            logger.debug(f"Own position lookup failed: {e}")
            return None
        position = _position(node)
        return position if position and position.is_valid else None
