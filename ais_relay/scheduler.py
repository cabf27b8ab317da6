"""Per-vessel change detection and resend bookkeeping."""

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional

from ais_relay.ais.models import VesselRecord

logger = logging.getLogger(__name__)

# Positions older than this are never forwarded over UDP
FORWARD_MAX_POSITION_AGE = 300


def _plain(item: Any) -> Any:
    return item.to_dict() if item is not None else None


def fingerprint(record: VesselRecord) -> str:
    """Hash of the fields whose change warrants a new broadcast."""
    nav = record.navigation
    state = {
        "position": _plain(nav.position),
        "speedOverGround": _plain(nav.speed_over_ground),
        "courseOverGroundTrue": _plain(nav.course_over_ground),
        "headingTrue": _plain(nav.heading),
        "state": _plain(nav.state),
        "name": record.name,
        "callsign": record.callsign,
    }
    canonical = json.dumps(state, sort_keys=True, default=str)
    return hashlib.sha1(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class ScheduleDecision:
    """What to do with one vessel in the current cycle."""

    broadcast: bool
    forward: bool
    reason: Optional[str] = None
    fingerprint: str = ""

    @property
    def due(self) -> bool:
        return self.broadcast or self.forward


class ChangeScheduler:
    """Decides per cycle which vessels need sending.

    General traffic is sent when a vessel's fingerprint changed, a client
    attached since the previous cycle, or the resend interval elapsed. The
    UDP forwarder runs on its own interval.
    """

    def __init__(
        self,
        resend_interval: float = 60,
        forward_interval: Optional[float] = None,
        forward_max_age: float = FORWARD_MAX_POSITION_AGE,
    ):
        """Initialize scheduler.

        Args:
            resend_interval: Seconds before an unchanged vessel is resent, 0 disables
            forward_interval: Seconds between UDP forwarding rounds, None disables
            forward_max_age: Maximum position age in seconds for forwarding
        """
        self.resend_interval = resend_interval
        self.forward_interval = forward_interval
        self.forward_max_age = forward_max_age

        self._fingerprints: dict[str, str] = {}
        self._last_broadcast: dict[str, datetime] = {}
        self._forward_last_sent: Optional[datetime] = None

        self._has_new_clients = False
        self._forward_due = False
        self._forwarded_this_cycle = False

    @property
    def forward_due(self) -> bool:
        return self._forward_due

    @property
    def tracked_mmsis(self) -> set[str]:
        return set(self._fingerprints) | set(self._last_broadcast)

    def last_broadcast(self, mmsi: str) -> Optional[datetime]:
        return self._last_broadcast.get(mmsi)

    def begin_cycle(self, now: datetime, has_new_clients: bool = False) -> None:
        self._has_new_clients = has_new_clients
        self._forwarded_this_cycle = False
        self._forward_due = self.forward_interval is not None and (
            self._forward_last_sent is None
            or (now - self._forward_last_sent).total_seconds() >= self.forward_interval
        )

    def _resend_due(self, mmsi: str, now: datetime) -> bool:
        if self.resend_interval <= 0:
            return False
        last = self._last_broadcast.get(mmsi)
        if last is None:
            return True
        return (now - last).total_seconds() >= self.resend_interval

    def decide(self, record: VesselRecord, now: datetime) -> ScheduleDecision:
        current = fingerprint(record)

        reason = None
        if self._fingerprints.get(record.mmsi) != current:
            reason = "changed"
        elif self._has_new_clients:
            reason = "new client"
        elif self._resend_due(record.mmsi, now):
            reason = "resend interval"

        forward = False
        if self._forward_due:
            age = record.position_age_seconds(now)
            forward = age is not None and age <= self.forward_max_age

        return ScheduleDecision(
            broadcast=reason is not None,
            forward=forward,
            reason=reason,
            fingerprint=current,
        )

    def mark_sent(self, mmsi: str, decision: ScheduleDecision, now: datetime) -> None:
        """Record what was actually sent for ``mmsi``."""
        if decision.broadcast:
            self._fingerprints[mmsi] = decision.fingerprint
            self._last_broadcast[mmsi] = now
        if decision.forward:
            self._forwarded_this_cycle = True

    def end_cycle(self, present_mmsis: Iterable[str], now: datetime) -> int:
        """Purge vessels that dropped out and close the forwarding round.

        Returns:
            Number of purged MMSIs
        """
        present = set(present_mmsis)
        gone = self.tracked_mmsis - present
        for mmsi in gone:
            self._fingerprints.pop(mmsi, None)
            self._last_broadcast.pop(mmsi, None)

        if self._forward_due:
            self._forward_last_sent = now

        self._has_new_clients = False
        self._forward_due = False
        if gone:
            logger.debug(f"Purged {len(gone)} vessels from scheduler bookkeeping")
        return len(gone)

    def clear(self) -> None:
        self._fingerprints.clear()
        self._last_broadcast.clear()
        self._forward_last_sent = None
        self._has_new_clients = False
        self._forward_due = False
