"""Vessel data sources (primary server and cloud API)."""

from ais_relay.sources.base import (
    SourceInfo,
    VesselFetchError,
    VesselSourceAdapter,
)
from ais_relay.sources.cloud import CloudVesselSource
from ais_relay.sources.primary import PrimaryVesselSource

__all__ = [
    "SourceInfo",
    "VesselFetchError",
    "VesselSourceAdapter",
    "CloudVesselSource",
    "PrimaryVesselSource",
]
