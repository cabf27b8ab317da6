"""Tests for change detection and resend bookkeeping."""

from datetime import timedelta

from conftest import NOW, make_vessel

from ais_relay.scheduler import ChangeScheduler, fingerprint


def _cycle(scheduler: ChangeScheduler, record, now, new_clients: bool = False):
    scheduler.begin_cycle(now, has_new_clients=new_clients)
    decision = scheduler.decide(record, now)
    if decision.due:
        scheduler.mark_sent(record.mmsi, decision, now)
    scheduler.end_cycle([record.mmsi], now)
    return decision


class TestFingerprint:
    """Tests for the broadcast-relevant fingerprint."""

    def test_stable_for_identical_records(self) -> None:
        assert fingerprint(make_vessel()) == fingerprint(make_vessel())

    def test_changes_with_relevant_fields(self) -> None:
        base = fingerprint(make_vessel())
        assert fingerprint(make_vessel(latitude=52.0)) != base
        assert fingerprint(make_vessel(name="OTHER")) != base
        assert fingerprint(make_vessel(callsign="X1")) != base
        assert fingerprint(make_vessel(state="anchored")) != base

    def test_fresh_fix_counts_as_change(self) -> None:
        assert fingerprint(make_vessel(age_seconds=1)) != fingerprint(make_vessel())

    def test_ignores_static_particulars(self) -> None:
        assert fingerprint(make_vessel(length=30)) == fingerprint(make_vessel())


class TestChangeScheduler:
    """Tests for per-cycle send decisions."""

    def test_first_sight_is_sent(self) -> None:
        decision = _cycle(ChangeScheduler(), make_vessel(), NOW)
        assert decision.broadcast
        assert decision.reason == "changed"

    def test_unchanged_vessel_is_not_resent(self) -> None:
        scheduler = ChangeScheduler(resend_interval=60)
        _cycle(scheduler, make_vessel(), NOW)

        later = NOW + timedelta(seconds=15)
        decision = _cycle(scheduler, make_vessel(), later)
        assert not decision.due

    def test_change_triggers_send(self) -> None:
        scheduler = ChangeScheduler(resend_interval=60)
        _cycle(scheduler, make_vessel(), NOW)

        later = NOW + timedelta(seconds=15)
        decision = _cycle(scheduler, make_vessel(latitude=51.8), later)
        assert decision.broadcast
        assert decision.reason == "changed"

    def test_new_client_triggers_send(self) -> None:
        scheduler = ChangeScheduler(resend_interval=60)
        _cycle(scheduler, make_vessel(), NOW)

        later = NOW + timedelta(seconds=15)
        decision = _cycle(scheduler, make_vessel(), later, new_clients=True)
        assert decision.broadcast
        assert decision.reason == "new client"

    def test_resend_interval_triggers_send(self) -> None:
        scheduler = ChangeScheduler(resend_interval=60)
        _cycle(scheduler, make_vessel(), NOW)

        later = NOW + timedelta(seconds=60)
        decision = _cycle(scheduler, make_vessel(), later)
        assert decision.broadcast
        assert decision.reason == "resend interval"
        assert scheduler.last_broadcast("123456789") == later

    def test_resend_disabled(self) -> None:
        scheduler = ChangeScheduler(resend_interval=0)
        _cycle(scheduler, make_vessel(), NOW)

        later = NOW + timedelta(hours=1)
        assert not _cycle(scheduler, make_vessel(), later).due

    def test_absent_vessels_are_purged(self) -> None:
        scheduler = ChangeScheduler()
        _cycle(scheduler, make_vessel(), NOW)
        assert scheduler.tracked_mmsis == {"123456789"}

        scheduler.begin_cycle(NOW)
        assert scheduler.end_cycle([], NOW) == 1
        assert scheduler.tracked_mmsis == set()


class TestForwarding:
    """Tests for the UDP forwarder interval."""

    def test_forwarder_interval(self) -> None:
        scheduler = ChangeScheduler(resend_interval=0, forward_interval=60)
        assert _cycle(scheduler, make_vessel(), NOW).forward

        later = NOW + timedelta(seconds=30)
        decision = _cycle(scheduler, make_vessel(), later)
        assert not decision.forward
        assert not decision.due

        later = NOW + timedelta(seconds=60)
        decision = _cycle(scheduler, make_vessel(), later)
        assert decision.forward
        assert not decision.broadcast

    def test_old_positions_are_not_forwarded(self) -> None:
        scheduler = ChangeScheduler(forward_interval=60)
        decision = _cycle(scheduler, make_vessel(age_seconds=400), NOW)
        assert decision.broadcast
        assert not decision.forward

    def test_forwarding_disabled(self) -> None:
        scheduler = ChangeScheduler()
        scheduler.begin_cycle(NOW)
        assert not scheduler.forward_due
