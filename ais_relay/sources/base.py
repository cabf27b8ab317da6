"""Abstract base class for vessel data sources.

Defines the interface that the primary and cloud collaborators implement.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import aiohttp

from ais_relay.ais.models import VesselRecord

logger = logging.getLogger(__name__)


class VesselFetchError(Exception):
    """Exception raised when fetching vessel data fails."""

    def __init__(self, message: str, source: Optional[str] = None):
        self.source = source
        super().__init__(f"[{source}] {message}" if source else message)


@dataclass
class SourceInfo:
    """Metadata about a vessel data source."""

    name: str
    source_type: str
    is_active: bool
    last_successful_fetch: Optional[datetime] = None
    error_count: int = 0
    total_vessels_received: int = 0
    average_latency_seconds: float = 0.0
    extra_info: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "type": self.source_type,
            "is_active": self.is_active,
            "last_successful_fetch": (
                self.last_successful_fetch.isoformat()
                if self.last_successful_fetch
                else None
            ),
            "error_count": self.error_count,
            "total_vessels_received": self.total_vessels_received,
            "average_latency_seconds": self.average_latency_seconds,
            "extra_info": self.extra_info,
        }


class VesselSourceAdapter(ABC):
    """Abstract base class for all vessel data sources.

    Implementations must provide:
    - fetch_vessels(): Retrieve normalised vessel records keyed by MMSI
    - get_source_info(): Return metadata about the source
    """

    source_type = "unknown"

    def __init__(self, name: str, timeout: float = 15.0):
        """Initialize adapter.

        Args:
            name: Adapter name used in logs and status output
            timeout: Total per-request timeout in seconds
        """
        self.name = name
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None
        self._error_count = 0
        self._total_vessels = 0
        self._last_fetch_time: Optional[datetime] = None
        self._latency_samples: list[float] = []

    @abstractmethod
    async def fetch_vessels(self) -> dict[str, VesselRecord]:
        """Fetch vessel records from the source.

        Returns:
            Mapping of MMSI to normalised VesselRecord

        Raises:
            VesselFetchError: If fetch fails
        """
        pass

    def get_source_info(self) -> SourceInfo:
        """Get metadata about this data source."""
        return SourceInfo(
            name=self.name,
            source_type=self.source_type,
            is_active=self.is_started,
            last_successful_fetch=self._last_fetch_time,
            error_count=self._error_count,
            total_vessels_received=self._total_vessels,
            average_latency_seconds=self._get_average_latency(),
        )

    async def start(self) -> None:
        """Open the HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        logger.info(f"Source '{self.name}' started")

    async def stop(self) -> None:
        """Close the HTTP session."""
        if self._session is not None:
            await self._session.close()
            self._session = None
        logger.info(f"Source '{self.name}' stopped")

    async def _get_json(self, url: str, params: Optional[dict[str, Any]] = None) -> Any:
        """GET a JSON document.

        Raises:
            VesselFetchError: On transport errors, timeouts or non-200 replies
        """
        if self._session is None:
            raise VesselFetchError("Source is not started", source=self.name)

        try:
            async with self._session.get(url, params=params) as response:
                if response.status != 200:
                    raise VesselFetchError(
                        f"HTTP error {response.status} for {url}", source=self.name
                    )
                return await response.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            raise VesselFetchError(f"Request to {url} failed: {e!r}", source=self.name)

    def _record_success(self, vessel_count: int, latency_seconds: float = 0.0) -> None:
        """Record a successful fetch operation."""
        self._last_fetch_time = datetime.now(timezone.utc)
        self._error_count = 0
        self._total_vessels += vessel_count

        # Track latency (keep last 100 samples)
        self._latency_samples.append(latency_seconds)
        if len(self._latency_samples) > 100:
            self._latency_samples.pop(0)

    def _record_error(self) -> None:
        """Record a failed fetch operation."""
        self._error_count += 1

    def _get_average_latency(self) -> float:
        """Calculate average latency from samples."""
        if not self._latency_samples:
            return 0.0
        return sum(self._latency_samples) / len(self._latency_samples)

    @property
    def is_started(self) -> bool:
        return self._session is not None

    @property
    def error_count(self) -> int:
        """Get current consecutive error count."""
        return self._error_count

    @property
    def last_fetch_time(self) -> Optional[datetime]:
        return self._last_fetch_time

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name})>"
