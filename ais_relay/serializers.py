"""Serializers for WebSocket vessel documents."""

from datetime import datetime, timezone
from typing import Any, Optional

from ais_relay.ais.models import VesselRecord


def vessel_context(mmsi: str) -> str:
    return f"vessels.urn:mrn:imo:mmsi:{mmsi}"


def serialize_vessel_record(
    record: VesselRecord,
    timestamp: Optional[datetime] = None,
) -> dict[str, Any]:
    """Serialize a merged vessel record for WebSocket emission.

    Args:
        record: Merged and filtered vessel
        timestamp: Cycle time, defaults to now

    Returns:
        Vessel dictionary in the camelCase shape of the primary source
    """
    timestamp = timestamp or datetime.now(timezone.utc)
    data = record.to_dict()
    data["context"] = vessel_context(record.mmsi)
    data["displayName"] = record.broadcast_name
    data["sentAt"] = timestamp.isoformat()
    return data
