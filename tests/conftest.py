"""Shared fixtures for relay tests."""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import pytest

from ais_relay.ais.models import (
    AISSensor,
    Design,
    Measurement,
    Navigation,
    PositionFix,
    VesselRecord,
)

NOW = datetime(2024, 6, 15, 12, 0, 30, tzinfo=timezone.utc)


def make_vessel(
    mmsi: str = "123456789",
    name: str = "NORDIC STAR",
    callsign: str = "PD1234",
    latitude: Optional[float] = 51.73784,
    longitude: Optional[float] = 3.85013,
    age_seconds: float = 5,
    sog: Optional[float] = 0.0,
    cog: Optional[float] = None,
    heading: Optional[float] = None,
    state: Any = "moored",
    ais_class: Optional[str] = None,
    now: datetime = NOW,
    **design: Any,
) -> VesselRecord:
    """Build a vessel record with sensible defaults."""
    timestamp = now - timedelta(seconds=age_seconds)
    position = None
    if latitude is not None and longitude is not None:
        position = PositionFix(latitude, longitude, timestamp=timestamp, source="gps.GP")
    return VesselRecord(
        mmsi=mmsi,
        name=name,
        callsign=callsign,
        navigation=Navigation(
            position=position,
            speed_over_ground=(
                Measurement(sog, "m/s", timestamp) if sog is not None else None
            ),
            course_over_ground=(
                Measurement(cog, "rad", timestamp) if cog is not None else None
            ),
            heading=Measurement(heading, "rad", timestamp) if heading is not None else None,
            state=Measurement(state, timestamp=timestamp) if state is not None else None,
        ),
        design=Design(**design),
        ais=AISSensor(ais_class=ais_class),
    )


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def vessel_factory() -> Callable[..., VesselRecord]:
    return make_vessel
