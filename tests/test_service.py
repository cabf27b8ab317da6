"""Tests for the relay service update cycle and lifecycle."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import NOW, make_vessel

from ais_relay.config import Settings
from ais_relay.service import RelayService


def _aggregator(vessels: dict) -> MagicMock:
    aggregator = MagicMock()
    aggregator.fetch_all = AsyncMock(return_value=vessels)
    aggregator.start = AsyncMock()
    aggregator.stop = AsyncMock()
    aggregator.own_mmsi = None
    aggregator.get_source_info.return_value = []
    return aggregator


def _broadcaster() -> MagicMock:
    broadcaster = MagicMock()
    broadcaster.broadcast_tcp = AsyncMock(return_value=1)
    broadcaster.broadcast_websocket = AsyncMock(return_value=0)
    broadcaster.broadcast_websocket_json = AsyncMock(return_value=0)
    broadcaster.start_tcp = AsyncMock(return_value=True)
    broadcaster.start_udp = AsyncMock(return_value=True)
    broadcaster.stop = AsyncMock()
    broadcaster.pending_new_clients.return_value = frozenset()
    broadcaster.send_udp.return_value = True
    broadcaster.ws_clients = set()
    broadcaster.client_count = 1
    broadcaster.tcp_running = True
    broadcaster.udp_running = False
    broadcaster.get_statistics.return_value = {}
    return broadcaster


def _service(vessels: dict, **settings) -> RelayService:
    settings.setdefault("websocket_port", 0)
    return RelayService(
        Settings(**settings),
        aggregator=_aggregator(vessels),
        broadcaster=_broadcaster(),
    )


def _sentences(mock: AsyncMock) -> list[str]:
    return [call.args[0] for call in mock.await_args_list]


class TestRunCycle:
    """Tests for one update tick."""

    @pytest.mark.asyncio
    async def test_class_a_vessel_is_broadcast(self) -> None:
        service = _service({"123456789": make_vessel()})

        stats = await service.run_cycle(NOW)

        sentences = _sentences(service.broadcaster.broadcast_tcp)
        assert stats.sent == 1
        assert service.message_id == 1
        assert len(sentences) == 3  # type 1, then type 5 in two fragments
        assert sentences[0].startswith("!AIVDM,1,1,1,B,")
        assert sentences[1].startswith("!AIVDM,2,1,1,B,")
        assert sentences[2].startswith("!AIVDM,2,2,1,B,")
        assert _sentences(service.broadcaster.broadcast_websocket) == sentences

    @pytest.mark.asyncio
    async def test_class_b_vessel(self) -> None:
        service = _service({"123456789": make_vessel(ais_class="B")})

        await service.run_cycle(NOW)

        sentences = _sentences(service.broadcaster.broadcast_tcp)
        assert len(sentences) == 3  # types 19, 24A, 24B
        assert all(s.startswith("!AIVDM,1,1,1,B,") for s in sentences)

    @pytest.mark.asyncio
    async def test_output_is_identical_for_identical_input(self) -> None:
        first = _service({"123456789": make_vessel()})
        second = _service({"123456789": make_vessel()})

        await first.run_cycle(NOW)
        await second.run_cycle(NOW)

        assert _sentences(first.broadcaster.broadcast_tcp) == _sentences(
            second.broadcaster.broadcast_tcp
        )

    @pytest.mark.asyncio
    async def test_unchanged_vessel_waits_for_resend(self) -> None:
        service = _service({"123456789": make_vessel()}, tcp_resend_interval=60)
        await service.run_cycle(NOW)
        service.broadcaster.broadcast_tcp.reset_mock()

        stats = await service.run_cycle(NOW + timedelta(seconds=15))

        assert stats.unchanged == 1
        assert stats.sent == 0
        service.broadcaster.broadcast_tcp.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_new_client_gets_full_set(self) -> None:
        service = _service({"123456789": make_vessel()})
        await service.run_cycle(NOW)

        client = object()
        service.broadcaster.pending_new_clients.return_value = frozenset({client})
        stats = await service.run_cycle(NOW + timedelta(seconds=15))

        assert stats.sent == 1
        service.broadcaster.clear_new_clients.assert_called_with(frozenset({client}))

    @pytest.mark.asyncio
    async def test_vessel_json_goes_to_websocket_clients(self) -> None:
        service = _service({"123456789": make_vessel()})
        service.broadcaster.ws_clients = {object()}

        await service.run_cycle(NOW)

        document = service.broadcaster.broadcast_websocket_json.await_args.args[0]
        assert document["mmsi"] == "123456789"
        assert document["displayName"] == "NORDIC STAR"

    @pytest.mark.asyncio
    async def test_only_position_reports_are_forwarded(self) -> None:
        service = _service({"123456789": make_vessel()}, vessel_finder_enabled=True)

        stats = await service.run_cycle(NOW)

        service.broadcaster.send_udp.assert_called_once()
        assert service.broadcaster.send_udp.call_args.args[0].startswith("!AIVDM,1,1,1,B,1")
        assert stats.forwarded == 1

    @pytest.mark.asyncio
    async def test_failed_build_does_not_abort_cycle(self) -> None:
        vessels = {
            "123456789": make_vessel(latitude=None),
            "244000001": make_vessel(mmsi="244000001"),
        }
        service = _service(vessels)

        stats = await service.run_cycle(NOW)

        assert stats.build_errors == 1
        assert stats.sent == 2
        # type 5 only for the first vessel, types 1 and 5 for the second
        assert len(_sentences(service.broadcaster.broadcast_tcp)) == 5

    @pytest.mark.asyncio
    async def test_message_id_wraps(self) -> None:
        service = _service({})
        service.message_id = 9
        await service.run_cycle(NOW)
        assert service.message_id == 0

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self) -> None:
        service = _service({})
        async with service._lock:
            assert await service.run_cycle(NOW) is None
        assert service.skipped_ticks == 1

    @pytest.mark.asyncio
    async def test_vanished_vessels_are_purged(self) -> None:
        service = _service({"123456789": make_vessel()})
        await service.run_cycle(NOW)
        service.aggregator.fetch_all.return_value = {}

        stats = await service.run_cycle(NOW + timedelta(seconds=15))

        assert stats.purged == 1
        assert service.scheduler.tracked_mmsis == set()


class TestLifecycle:
    """Tests for start, stop and status."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self) -> None:
        service = _service({"123456789": make_vessel()}, update_interval=3600)

        await service.start()
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert service.is_running
        assert service.status()["status"] == "healthy"

        await service.stop()

        assert not service.is_running
        service.broadcaster.stop.assert_awaited_once()
        service.aggregator.stop.assert_awaited_once()
        assert service.scheduler.tracked_mmsis == set()

    @pytest.mark.asyncio
    async def test_debug_mmsi_equal_to_own_is_cleared(self) -> None:
        service = _service({}, log_mmsi="111111111", update_interval=3600)
        service.aggregator.own_mmsi = "111111111"

        await service.start()
        await service.stop()

        assert service.log_mmsi == ""
        assert service.vessel_filter.options.log_mmsi == ""

    @pytest.mark.asyncio
    async def test_debug_mmsi_cleared_when_own_mmsi_learned_later(self) -> None:
        service = _service({}, log_mmsi="111111111")

        await service.run_cycle(NOW)
        assert service.log_mmsi == "111111111"

        service.aggregator.own_mmsi = "111111111"
        await service.run_cycle(NOW + timedelta(seconds=15))
        assert service.log_mmsi == ""

    def test_degraded_when_not_running(self) -> None:
        service = _service({})
        status = service.status()
        assert status["status"] == "degraded"
        assert status["service"] == "ais-relay"

    @pytest.mark.asyncio
    async def test_degraded_when_tcp_bind_fails(self) -> None:
        service = _service({}, update_interval=3600)
        service.broadcaster.start_tcp.return_value = False
        service.broadcaster.tcp_running = False

        await service.start()
        try:
            assert service.status()["status"] == "degraded"
        finally:
            await service.stop()
