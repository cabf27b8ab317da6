"""Relay service: owns the update loop and every piece of shared state.

Each tick runs Aggregate -> Filter -> Schedule -> Build -> Frame -> Broadcast.
"""

import asyncio
import contextlib
import json
import logging
import socket
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import uvicorn

from ais_relay.aggregator import FilterOptions, VesselAggregator, VesselFilter
from ais_relay.ais.messages import BuildResult, build_messages
from ais_relay.ais.models import VesselRecord
from ais_relay.ais.nmea import FramingError, frame_message
from ais_relay.api import create_app
from ais_relay.broadcast import Broadcaster
from ais_relay.config import Settings
from ais_relay.scheduler import ChangeScheduler, ScheduleDecision
from ais_relay.serializers import serialize_vessel_record
from ais_relay.sources.cloud import CloudVesselSource
from ais_relay.sources.primary import PrimaryVesselSource

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT = 5.0


@dataclass
class CycleStats:
    """Counters of one update cycle."""

    reason: str = ""
    vessels: int = 0
    sent: int = 0
    unchanged: int = 0
    forwarded: int = 0
    build_errors: int = 0
    purged: int = 0
    clients: int = 0
    message_id: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the relay."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class RelayService:
    """Runs the relay: sources, scheduler, broadcaster and the HTTP/WS server."""

    def __init__(
        self,
        settings: Settings,
        aggregator: Optional[VesselAggregator] = None,
        broadcaster: Optional[Broadcaster] = None,
    ):
        """Initialize service.

        Args:
            settings: Relay settings
            aggregator: Vessel aggregator, built from settings when omitted
            broadcaster: Client fan-out, built from settings when omitted
        """
        self.settings = settings
        self.options = settings.encoder_options

        if aggregator is None:
            cloud = None
            if settings.cloud_vessels_enabled:
                cloud = CloudVesselSource(
                    api_url=settings.cloud_api_url,
                    radius_nm=settings.cloud_vessels_radius,
                    update_interval=settings.cloud_vessels_update_interval,
                    timeout=settings.cloud_vessels_timeout,
                )
            aggregator = VesselAggregator(
                PrimaryVesselSource(settings.api_root, timeout=settings.request_timeout),
                cloud,
                stale_name_minutes=settings.stale_data_shipname_add_time,
            )
        self.aggregator = aggregator

        if broadcaster is None:
            broadcaster = Broadcaster(
                tcp_host=settings.tcp_host,
                tcp_port=settings.tcp_port,
                forward_host=settings.vessel_finder_host if settings.vessel_finder_enabled else None,
                forward_port=settings.vessel_finder_port if settings.vessel_finder_enabled else None,
            )
        self.broadcaster = broadcaster

        self.log_mmsi = settings.log_mmsi.strip()
        self.vessel_filter = VesselFilter(
            FilterOptions(
                skip_stale_data=settings.skip_stale_data,
                stale_data_threshold_minutes=settings.stale_data_threshold_minutes,
                max_minutes_sog_to_zero=settings.max_minutes_sog_to_zero,
                skip_without_callsign=settings.skip_without_callsign,
                log_mmsi=self.log_mmsi,
                log_debug_stale=settings.log_debug_stale,
                log_debug_sog=settings.log_debug_sog,
            )
        )
        self.scheduler = ChangeScheduler(
            resend_interval=settings.tcp_resend_interval,
            forward_interval=(
                settings.vessel_finder_update_rate if settings.vessel_finder_enabled else None
            ),
        )

        self.message_id = 0
        self.is_running = False
        self.websocket_running = False
        self.last_cycle: Optional[CycleStats] = None
        self.cycle_count = 0
        self.skipped_ticks = 0

        self._lock = asyncio.Lock()
        self._update_task: Optional[asyncio.Task] = None
        self._ws_server: Optional[uvicorn.Server] = None
        self._ws_task: Optional[asyncio.Task] = None

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        """Start sources, listeners and the update loop."""
        if self.is_running:
            logger.warning("Relay already running")
            return

        await self.aggregator.start()
        self._check_log_mmsi()

        await self.broadcaster.start_tcp()
        if self.settings.vessel_finder_enabled:
            await self.broadcaster.start_udp()
        if self.settings.websocket_port:
            await self._start_websocket_server()

        self.is_running = True
        self._update_task = asyncio.create_task(self._update_loop())
        logger.info(
            f"Relay started (update every {self.settings.update_interval}s, "
            f"status: {self.status()['status']})"
        )

    def _check_log_mmsi(self) -> None:
        own_mmsi = self.aggregator.own_mmsi
        if self.log_mmsi and own_mmsi and self.log_mmsi == own_mmsi:
            logger.warning(f"Debug MMSI {self.log_mmsi} is the own vessel, ignoring it")
            self.log_mmsi = ""
            self.vessel_filter.options.log_mmsi = ""

    async def _start_websocket_server(self) -> None:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.settings.websocket_host, self.settings.websocket_port))
        except OSError as e:
            sock.close()
            logger.error(
                f"Could not start WebSocket server on port {self.settings.websocket_port}: {e}"
            )
            return

        config = uvicorn.Config(create_app(self), log_level="warning", lifespan="off")
        self._ws_server = _EmbeddedServer(config)
        self._ws_task = asyncio.create_task(self._ws_server.serve(sockets=[sock]))
        self.websocket_running = True
        logger.info(
            f"WebSocket server listening on "
            f"{self.settings.websocket_host}:{self.settings.websocket_port}"
        )

    async def stop(self) -> None:
        """Cancel the loop, close every listener and client, clear bookkeeping."""
        self.is_running = False

        if self._update_task:
            self._update_task.cancel()
            try:
                await self._update_task
            except asyncio.CancelledError:
                pass
            self._update_task = None

        await self.broadcaster.stop()

        if self._ws_server is not None:
            self._ws_server.should_exit = True
        if self._ws_task is not None:
            try:
                await asyncio.wait_for(self._ws_task, timeout=SHUTDOWN_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning("WebSocket server did not stop in time")
            self._ws_task = None
            self._ws_server = None
        self.websocket_running = False

        await self.aggregator.stop()
        self.scheduler.clear()
        logger.info("Relay stopped")

    # ==================== Update loop ====================

    async def _update_loop(self) -> None:
        logger.debug("Update loop started")
        reason = "Startup"

        while self.is_running:
            try:
                await self.run_cycle(reason=reason)
                reason = "Update"
                await asyncio.sleep(self.settings.update_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error processing vessels: {e}")
                await asyncio.sleep(1)

        logger.debug("Update loop ended")

    async def run_cycle(
        self, now: Optional[datetime] = None, reason: str = "Update"
    ) -> Optional[CycleStats]:
        """Run one tick; returns None when a tick is already in progress."""
        if self._lock.locked():
            self.skipped_ticks += 1
            logger.warning("Previous update still running, skipping tick")
            return None

        async with self._lock:
            now = now or datetime.now(timezone.utc)
            vessels = await self.aggregator.fetch_all(now)
            self._check_log_mmsi()
            filtered = self.vessel_filter.apply(vessels, now)

            self.message_id = (self.message_id + 1) % 10
            new_clients = self.broadcaster.pending_new_clients()
            self.scheduler.begin_cycle(now, has_new_clients=bool(new_clients))

            stats = CycleStats(reason=reason, vessels=len(filtered), message_id=self.message_id)
            for mmsi, record in filtered.items():
                decision = self.scheduler.decide(record, now)
                if not decision.due:
                    stats.unchanged += 1
                    continue
                await self._send_vessel(record, decision, now, stats)
                self.scheduler.mark_sent(mmsi, decision, now)

            stats.purged = self.scheduler.end_cycle(filtered.keys(), now)
            self.broadcaster.clear_new_clients(new_clients)
            stats.clients = self.broadcaster.client_count

            self.last_cycle = stats
            self.cycle_count += 1
            if self.scheduler.forward_interval is not None and stats.forwarded:
                logger.debug(f"VesselFinder: sent {stats.forwarded} vessels")
            logger.debug(
                f"{reason}: sent {stats.sent}, unchanged {stats.unchanged}, "
                f"clients {stats.clients}, filter {self.vessel_filter.last_stats.to_dict()}"
            )
            return stats

    def _debug_enabled(self, flag: bool, mmsi: str) -> bool:
        return flag and (not self.log_mmsi or self.log_mmsi == mmsi)

    async def _send_vessel(
        self,
        record: VesselRecord,
        decision: ScheduleDecision,
        now: datetime,
        stats: CycleStats,
    ) -> None:
        mmsi = record.mmsi
        if self._debug_enabled(self.settings.log_debug_details, mmsi):
            logger.debug(
                f"MMSI {mmsi} {record.broadcast_name}: broadcast={decision.broadcast} "
                f"({decision.reason}), forward={decision.forward}"
            )
        if self._debug_enabled(self.settings.log_debug_json, mmsi):
            logger.debug(f"MMSI {mmsi} record: {json.dumps(record.to_dict())}")

        forwarded = False
        for result in build_messages(record, self.options, now):
            if not result.ok:
                stats.build_errors += 1
                continue
            sentences = self._frame(result, mmsi)

            if decision.broadcast:
                for sentence in sentences:
                    await self.broadcaster.broadcast_tcp(sentence)
                    await self.broadcaster.broadcast_websocket(sentence)

            # Only position reports go to the forwarder
            if decision.forward and result.message_type == "1":
                for sentence in sentences:
                    forwarded = self.broadcaster.send_udp(sentence) or forwarded

        if decision.broadcast:
            stats.sent += 1
            if self.broadcaster.ws_clients:
                await self.broadcaster.broadcast_websocket_json(
                    serialize_vessel_record(record, now)
                )
        if forwarded:
            stats.forwarded += 1

    def _frame(self, result: BuildResult, mmsi: str) -> list[str]:
        try:
            sentences = frame_message(result, self.message_id)
        except FramingError as e:
            logger.error(f"Error framing type {result.message_type} for MMSI {mmsi}: {e}")
            return []
        if self._debug_enabled(self.settings.log_debug_ais, mmsi):
            for sentence in sentences:
                logger.debug(f"MMSI {mmsi} type {result.message_type}: {sentence}")
        return sentences

    # ==================== Status ====================

    def status(self) -> dict[str, Any]:
        """Health summary; degraded when an enabled listener is not running."""
        tcp = self.broadcaster.tcp_running
        websocket = self.websocket_running
        udp = self.broadcaster.udp_running

        healthy = (
            self.is_running
            and tcp
            and (websocket or not self.settings.websocket_port)
            and (udp or not self.settings.vessel_finder_enabled)
        )
        return {
            "status": "healthy" if healthy else "degraded",
            "service": "ais-relay",
            "tcp": tcp,
            "websocket": websocket,
            "udp": udp,
        }

    def get_statistics(self) -> dict[str, Any]:
        return {
            **self.status(),
            "cycle_count": self.cycle_count,
            "skipped_ticks": self.skipped_ticks,
            "message_id": self.message_id,
            "last_cycle": self.last_cycle.to_dict() if self.last_cycle else None,
            "filter": self.vessel_filter.last_stats.to_dict(),
            "tracked_vessels": len(self.scheduler.tracked_mmsis),
            "clients": self.broadcaster.get_statistics(),
            "sources": self.aggregator.get_source_info(),
            "own_mmsi": self.aggregator.own_mmsi,
        }
