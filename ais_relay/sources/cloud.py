"""Cloud vessel source (AISFleet nearby-vessels API).

Results are cached: the API is queried at most once per refresh interval
and a failed or slow request falls back to the last good snapshot.
"""

import logging
import math
import time
from typing import Any, Optional

from ais_relay.ais.models import (
    UNKNOWN_NAME,
    Design,
    Measurement,
    Navigation,
    PositionFix,
    VesselRecord,
    parse_timestamp,
)
from ais_relay.sources.base import VesselFetchError, VesselSourceAdapter

logger = logging.getLogger(__name__)

KNOTS_TO_MS = 0.514444
CLOUD_SOURCE_LABEL = "aisfleet"


def _number(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _integer(value: Any) -> Optional[int]:
    number = _number(value)
    return int(number) if number is not None else None


def _angle(degrees: Any) -> Optional[float]:
    """Degrees to radians; values of 360 or more are invalid and become 0."""
    value = _number(degrees)
    if value is None:
        return None
    if value >= 360:
        value = 0.0
    return math.radians(value)


def _measured(value: Optional[float], units: str, timestamp: Any) -> Optional[Measurement]:
    if value is None:
        return None
    return Measurement(
        value=value,
        units=units,
        timestamp=parse_timestamp(timestamp),
        source=CLOUD_SOURCE_LABEL,
    )


def normalize_cloud_vessel(vessel: dict[str, Any]) -> Optional[VesselRecord]:
    """Turn one cloud API vessel into a VesselRecord (SI units, radians)."""
    mmsi = str(vessel.get("mmsi") or "").strip()
    if not mmsi:
        return None

    last_position = vessel.get("last_position")
    if not isinstance(last_position, dict):
        last_position = {}
    latest = vessel.get("latest_navigation")
    if not isinstance(latest, dict):
        latest = {}
    nav_time = latest.get("timestamp")

    position = None
    if last_position.get("latitude") is not None and last_position.get("longitude") is not None:
        position = PositionFix(
            latitude=_number(last_position.get("latitude")),
            longitude=_number(last_position.get("longitude")),
            timestamp=parse_timestamp(last_position.get("timestamp")),
            source=CLOUD_SOURCE_LABEL,
        )

    speed = _number(latest.get("speed_over_ground"))
    rate = _number(latest.get("rate_of_turn"))
    state = latest.get("navigation_status")

    return VesselRecord(
        mmsi=mmsi,
        name=str(vessel.get("name") or UNKNOWN_NAME).strip(),
        callsign=str(vessel.get("call_sign") or "").strip(),
        imo=str(vessel["imo_number"]) if vessel.get("imo_number") else None,
        navigation=Navigation(
            position=position,
            speed_over_ground=_measured(
                speed * KNOTS_TO_MS if speed is not None else None, "m/s", nav_time
            ),
            course_over_ground=_measured(
                _angle(latest.get("course_over_ground")), "rad", nav_time
            ),
            heading=_measured(_angle(latest.get("heading")), "rad", nav_time),
            rate_of_turn=_measured(
                math.radians(rate) if rate is not None else None, "rad/s", nav_time
            ),
            state=(
                Measurement(value=state, timestamp=parse_timestamp(nav_time))
                if state is not None
                else None
            ),
        ),
        design=Design(
            length=_number(vessel.get("design_length")),
            beam=_number(vessel.get("design_beam")),
            draft=_number(vessel.get("design_draft")),
            ais_ship_type=_integer(vessel.get("ais_ship_type")),
        ),
    )


class CloudVesselSource(VesselSourceAdapter):
    """Nearby vessels from the cloud API around the own position."""

    source_type = "cloud"

    def __init__(
        self,
        api_url: str,
        radius_nm: float = 10.0,
        update_interval: float = 60.0,
        timeout: float = 15.0,
        name: str = "Cloud",
    ):
        super().__init__(name=name, timeout=timeout)
        self.api_url = api_url
        self.radius_nm = radius_nm
        self.update_interval = update_interval
        self.own_mmsi: Optional[str] = None
        self.own_position: Optional[PositionFix] = None
        self._snapshot: dict[str, VesselRecord] = {}
        self._last_refresh: Optional[float] = None

    @property
    def snapshot(self) -> dict[str, VesselRecord]:
        return dict(self._snapshot)

    def refresh_due(self, now: Optional[float] = None) -> bool:
        if self._last_refresh is None:
            return True
        now = time.monotonic() if now is None else now
        return now - self._last_refresh >= self.update_interval

    async def fetch_vessels(self) -> dict[str, VesselRecord]:
        """Return fresh data when a refresh is due, else the cached snapshot.

        Never raises; failures are logged and the cached snapshot is served.
        """
        if not self.refresh_due():
            return self.snapshot
        if self.own_position is None:
            logger.debug("Cloud refresh skipped: own position unknown")
            return self.snapshot

        params = {
            "lat": self.own_position.latitude,
            "lng": self.own_position.longitude,
            "radius": self.radius_nm,
        }
        if self.own_mmsi:
            params["mmsi"] = self.own_mmsi

        start = time.monotonic()
        try:
            data = await self._get_json(self.api_url, params=params)
        except VesselFetchError as e:
            self._record_error()
            logger.warning(f"Cloud vessels unavailable, using cached snapshot: {e}")
            return self.snapshot
        finally:
            self._last_refresh = time.monotonic()

        vessels: dict[str, VesselRecord] = {}
        items = data.get("vessels") if isinstance(data, dict) else None
        for item in items or []:
            if not isinstance(item, dict):
                continue
            try:
                record = normalize_cloud_vessel(item)
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed cloud vessel {item.get('mmsi')}: {e}")
                continue
            if record is None or (self.own_mmsi and record.mmsi == self.own_mmsi):
                continue
            vessels[record.mmsi] = record

        self._snapshot = vessels
        self._record_success(len(vessels), time.monotonic() - start)
        logger.debug(f"Cloud refresh: {len(vessels)} vessels")
        return self.snapshot
