"""Vessel aggregation across the primary and cloud sources.

Provides:
- Concurrent fetching from both collaborators
- Field-by-field merge preferring the most recently timestamped value
- Stale-name annotation for the six-bit name fields
- Post-merge filtering with per-reason skip counters
"""

import asyncio
import dataclasses
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from ais_relay.ais.models import Measurement, PositionFix, VesselRecord, is_real_name
from ais_relay.sources.base import VesselFetchError
from ais_relay.sources.cloud import CloudVesselSource
from ais_relay.sources.primary import PrimaryVesselSource

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 20

_TIMESTAMPED = (Measurement, PositionFix)


# ==================== Merge ====================

def _is_newer(candidate: Any, current: Any) -> bool:
    if candidate.timestamp is None:
        return False
    if current.timestamp is None:
        return True
    return candidate.timestamp > current.timestamp


def merge_values(target: Any, source: Any) -> Any:
    """Merge one field of two records, ``target`` winning ties."""
    if source is None:
        return target
    if target is None:
        return source
    if isinstance(target, _TIMESTAMPED) and isinstance(source, _TIMESTAMPED):
        return source if _is_newer(source, target) else target
    if dataclasses.is_dataclass(target) and type(target) is type(source):
        return dataclasses.replace(
            target,
            **{
                f.name: merge_values(getattr(target, f.name), getattr(source, f.name))
                for f in dataclasses.fields(target)
            },
        )
    return target


def merge_records(target: VesselRecord, source: VesselRecord) -> VesselRecord:
    """Merge ``source`` into ``target``.

    Name and callsign prefer a real value over a placeholder regardless of
    timestamps; a real target value is never overwritten.
    """
    merged = merge_values(target, source)
    name = target.name if is_real_name(target.name) or not is_real_name(source.name) else source.name
    callsign = target.callsign if target.callsign.strip() else source.callsign
    return dataclasses.replace(merged, mmsi=target.mmsi, name=name, callsign=callsign)


def merge_sources(
    primary: dict[str, VesselRecord],
    cloud: dict[str, VesselRecord],
) -> dict[str, VesselRecord]:
    """One logical record per MMSI present in either source."""
    merged = dict(primary)
    for mmsi, record in cloud.items():
        merged[mmsi] = merge_records(merged[mmsi], record) if mmsi in merged else record
    return merged


# ==================== Stale name annotation ====================

def stale_suffix(age_seconds: float) -> str:
    """Age suffix such as ' MIN5', ' HOUR2' or ' DAY3' (ceiling-rounded)."""
    minutes = age_seconds / 60
    if minutes < 60:
        return f" MIN{math.ceil(minutes)}"
    hours = minutes / 60
    if hours < 24:
        return f" HOUR{math.ceil(hours)}"
    return f" DAY{math.ceil(hours / 24)}"


def annotate_stale_name(
    record: VesselRecord,
    threshold_minutes: float,
    now: datetime,
) -> VesselRecord:
    """Attach a display name carrying the position age past the threshold."""
    if threshold_minutes <= 0:
        return record
    age = record.position_age_seconds(now)
    if age is None or age <= threshold_minutes * 60:
        return record

    suffix = stale_suffix(age)
    base = record.name[: max(0, MAX_NAME_LENGTH - len(suffix))].rstrip()
    return dataclasses.replace(record, display_name=(base + suffix)[:MAX_NAME_LENGTH])


# ==================== Filtering ====================

@dataclass
class FilterStats:
    """Skip counters for one filtering pass."""

    total: int = 0
    accepted: int = 0
    base_station: int = 0
    invalid_mmsi: int = 0
    stale: int = 0
    sog_zeroed: int = 0
    no_name_or_callsign: int = 0
    no_callsign: int = 0
    malformed: int = 0

    def to_dict(self) -> dict[str, int]:
        return dataclasses.asdict(self)


@dataclass
class FilterOptions:
    skip_stale_data: bool = True
    stale_data_threshold_minutes: float = 60
    max_minutes_sog_to_zero: float = 0
    skip_without_callsign: bool = False
    log_mmsi: str = ""
    log_debug_stale: bool = False
    log_debug_sog: bool = False


def is_valid_mmsi(mmsi: str) -> bool:
    return len(mmsi) == 9 and mmsi.isdigit() and int(mmsi) != 0


def _zero_speed(record: VesselRecord) -> VesselRecord:
    sog = record.navigation.speed_over_ground
    zeroed = dataclasses.replace(sog, value=0.0) if sog else Measurement(value=0.0, units="m/s")
    navigation = dataclasses.replace(record.navigation, speed_over_ground=zeroed)
    return dataclasses.replace(record, navigation=navigation)


@dataclass
class VesselFilter:
    """Applies the post-merge filters in a fixed order."""

    options: FilterOptions = field(default_factory=FilterOptions)
    last_stats: FilterStats = field(default_factory=FilterStats)

    def _debug(self, flag: bool, mmsi: str, message: str) -> None:
        if flag and (not self.options.log_mmsi or self.options.log_mmsi == mmsi):
            logger.debug(message)

    def _accept(
        self,
        mmsi: str,
        record: VesselRecord,
        now: datetime,
        stats: FilterStats,
    ) -> Optional[VesselRecord]:
        opts = self.options

        if record.is_base_station:
            stats.base_station += 1
            return None

        if not is_valid_mmsi(mmsi):
            stats.invalid_mmsi += 1
            return None

        age = record.position_age_seconds(now)

        if opts.skip_stale_data and age is not None and age > opts.stale_data_threshold_minutes * 60:
            stats.stale += 1
            self._debug(
                opts.log_debug_stale, mmsi,
                f"Skipped (stale): {mmsi} {record.name} - {age / 60:.0f} min old",
            )
            return None

        if opts.max_minutes_sog_to_zero > 0 and age is not None and age > opts.max_minutes_sog_to_zero * 60:
            record = _zero_speed(record)
            stats.sog_zeroed += 1
            self._debug(
                opts.log_debug_sog, mmsi,
                f"SOG forced to 0: {mmsi} {record.name} - {age / 60:.0f} min old",
            )

        if not record.has_valid_name and not record.has_callsign:
            stats.no_name_or_callsign += 1
            return None

        if opts.skip_without_callsign and not record.has_callsign:
            stats.no_callsign += 1
            return None

        return record

    def apply(
        self,
        vessels: dict[str, VesselRecord],
        now: Optional[datetime] = None,
    ) -> dict[str, VesselRecord]:
        now = now or datetime.now(timezone.utc)
        stats = FilterStats(total=len(vessels))
        accepted: dict[str, VesselRecord] = {}

        for mmsi, record in vessels.items():
            try:
                result = self._accept(mmsi, record, now, stats)
            except (AttributeError, TypeError, ValueError) as e:
                stats.malformed += 1
                logger.warning(f"Skipping malformed vessel {mmsi}: {e}")
                continue
            if result is not None:
                accepted[mmsi] = result

        stats.accepted = len(accepted)
        self.last_stats = stats
        return accepted


# ==================== Aggregator ====================

class VesselAggregator:
    """Fetches both sources concurrently and merges them per MMSI."""

    def __init__(
        self,
        primary: PrimaryVesselSource,
        cloud: Optional[CloudVesselSource] = None,
        stale_name_minutes: float = 0,
    ):
        self.primary = primary
        self.cloud = cloud
        self.stale_name_minutes = stale_name_minutes
        self.own_mmsi: Optional[str] = None

    async def start(self) -> None:
        await self.primary.start()
        if self.cloud:
            await self.cloud.start()

        await self._resolve_own_mmsi()

    async def _resolve_own_mmsi(self) -> None:
        # Retried every cycle until the primary source answers
        self.own_mmsi = await self.primary.fetch_own_mmsi()
        if self.cloud:
            self.cloud.own_mmsi = self.own_mmsi

    async def stop(self) -> None:
        await self.primary.stop()
        if self.cloud:
            await self.cloud.stop()

    async def _fetch_primary(self) -> dict[str, VesselRecord]:
        try:
            return await self.primary.fetch_vessels()
        except VesselFetchError as e:
            logger.warning(f"Primary vessel source failed: {e}")
            return {}

    async def _fetch_cloud(self) -> dict[str, VesselRecord]:
        if self.cloud is None:
            return {}
        if self.cloud.refresh_due():
            self.cloud.own_position = (
                await self.primary.fetch_own_position() or self.cloud.own_position
            )
        return await self.cloud.fetch_vessels()

    async def fetch_all(self, now: Optional[datetime] = None) -> dict[str, VesselRecord]:
        """Fetch, merge and annotate every vessel known to either source."""
        now = now or datetime.now(timezone.utc)
        if self.own_mmsi is None:
            await self._resolve_own_mmsi()
        primary, cloud = await asyncio.gather(self._fetch_primary(), self._fetch_cloud())

        merged = merge_sources(primary, cloud)
        if self.own_mmsi:
            merged.pop(self.own_mmsi, None)

        return {
            mmsi: annotate_stale_name(record, self.stale_name_minutes, now)
            for mmsi, record in merged.items()
        }

    def get_source_info(self) -> list[dict[str, Any]]:
        sources = [self.primary] + ([self.cloud] if self.cloud else [])
        return [source.get_source_info().to_dict() for source in sources]
