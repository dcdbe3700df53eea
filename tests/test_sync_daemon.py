"""
Tests for the scheduled sync daemon.

Time is simulated: a fake monotonic clock and a stop event whose wait()
advances that clock instead of sleeping.
"""
import logging
import os
import signal
import sqlite3
import threading
from datetime import timedelta

import pytest

from crmsync.services.sync_daemon import (
    DaemonConfigError,
    SyncDaemon,
    format_duration,
    parse_interval,
    parse_services,
)

pytestmark = pytest.mark.unit

HOUR = timedelta(hours=1)


class FakeMonotonic:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class SimulatedStopEvent(threading.Event):
    """wait() advances the fake clock; sets itself after `max_waits` waits."""

    def __init__(self, monotonic: FakeMonotonic, max_waits: int = 10):
        super().__init__()
        self.monotonic = monotonic
        self.max_waits = max_waits
        self.timeouts = []

    def wait(self, timeout=None):
        if self.is_set():
            return True
        self.timeouts.append(timeout)
        self.monotonic.now += timeout
        if len(self.timeouts) >= self.max_waits:
            self.set()
        return self.is_set()


class TestParseInterval:
    @pytest.mark.parametrize("text,expected", [
        ("5m", timedelta(minutes=5)),
        ("1h", timedelta(hours=1)),
        ("1h30m", timedelta(minutes=90)),
        ("300s", timedelta(minutes=5)),
        (" 2H ", timedelta(hours=2)),
    ])
    def test_valid(self, text, expected):
        assert parse_interval(text) == expected

    @pytest.mark.parametrize("text", ["4m", "90s", "4m59s"])
    def test_below_minimum(self, text):
        with pytest.raises(DaemonConfigError, match="at least 5m"):
            parse_interval(text)

    @pytest.mark.parametrize("text", ["", "soon", "5", "5 minutes", "m5", "1h-30m"])
    def test_unparseable(self, text):
        with pytest.raises(DaemonConfigError, match="invalid interval"):
            parse_interval(text)


class TestParseServices:
    def test_all(self):
        assert parse_services("all") == ["contacts", "calendar", "gmail"]

    def test_list_keeps_order(self):
        assert parse_services("gmail, calendar,gmail") == ["gmail", "calendar"]

    def test_unknown_dropped_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert parse_services("gmail,slack") == ["gmail"]
        assert "slack" in caplog.text

    def test_nothing_valid(self):
        with pytest.raises(DaemonConfigError):
            parse_services("slack,teams")


class TestFormatDuration:
    def test_format(self):
        assert format_duration(4.5) == "4.5s"
        assert format_duration(3600) == "60m00s"
        assert format_duration(95) == "1m35s"


class TestSyncDaemonConfig:
    def test_rejects_short_interval(self):
        with pytest.raises(DaemonConfigError):
            SyncDaemon(lambda s: None, ["gmail"], timedelta(minutes=4))

    def test_rejects_empty_services(self):
        with pytest.raises(DaemonConfigError):
            SyncDaemon(lambda s: None, [], HOUR)

    def test_rejects_unknown_services(self):
        with pytest.raises(DaemonConfigError):
            SyncDaemon(lambda s: None, ["slack"], HOUR)

    def test_accepts_minimum_interval(self):
        daemon = SyncDaemon(lambda s: None, ["gmail"], timedelta(minutes=5))
        assert daemon.interval == timedelta(minutes=5)


class TestRunCycle:
    """Tests for one pass over the selected services."""

    def test_runs_services_in_order(self):
        ran = []
        daemon = SyncDaemon(ran.append, ["contacts", "calendar", "gmail"], HOUR)
        summary = daemon.run_cycle()
        assert ran == ["contacts", "calendar", "gmail"]
        assert summary.succeeded == 3

    def test_failure_does_not_stop_cycle(self, caplog):
        ran = []

        def run_service(service):
            ran.append(service)
            if service == "calendar":
                raise RuntimeError("calendar exploded")

        daemon = SyncDaemon(run_service, ["contacts", "calendar", "gmail"], HOUR)
        with caplog.at_level(logging.INFO):
            summary = daemon.run_cycle()

        assert ran == ["contacts", "calendar", "gmail"]
        assert (summary.succeeded, summary.failed) == (2, 1)
        assert summary.runs[1].error == "calendar exploded"
        assert "Sync cycle complete (2 succeeded, 1 failed)" in caplog.text

    def test_stop_between_services(self):
        ran = []
        daemon = SyncDaemon(lambda s: None, ["contacts", "calendar", "gmail"], HOUR)

        def run_service(service):
            ran.append(service)
            daemon.request_stop()

        daemon.run_service = run_service
        summary = daemon.run_cycle()

        assert ran == ["contacts"]
        assert summary.interrupted

    def test_after_cycle_hook(self):
        seen = []
        daemon = SyncDaemon(lambda s: None, ["gmail"], HOUR, after_cycle=seen.append)
        summary = daemon.run_cycle()
        assert seen == [summary]

    def test_hook_failure_is_logged(self, caplog):
        def refresh(summary):
            raise sqlite3.OperationalError("database is locked")

        daemon = SyncDaemon(lambda s: None, ["gmail"], HOUR, after_cycle=refresh)
        with caplog.at_level(logging.ERROR):
            summary = daemon.run_cycle()

        assert summary.succeeded == 1
        assert "After-cycle hook failed: database is locked" in caplog.text

    def test_keeps_only_last_cycle(self):
        daemon = SyncDaemon(lambda s: None, ["gmail"], HOUR)
        daemon.run_cycle()
        second = daemon.run_cycle()
        assert daemon.last_cycle is second


class TestRunLoop:
    """Tests for fixed-interval scheduling."""

    def test_first_cycle_is_immediate(self):
        monotonic = FakeMonotonic()
        stop = SimulatedStopEvent(monotonic)
        ran = []
        daemon = SyncDaemon(ran.append, ["gmail"], HOUR, stop_event=stop, monotonic=monotonic)

        assert daemon.run(max_cycles=1) == 1
        assert ran == ["gmail"]
        assert stop.timeouts == []

    def test_ticks_anchored_to_start(self):
        monotonic = FakeMonotonic()
        stop = SimulatedStopEvent(monotonic, max_waits=3)

        def run_service(service):
            monotonic.now += 100

        daemon = SyncDaemon(run_service, ["gmail"], HOUR, stop_event=stop, monotonic=monotonic)
        count = daemon.run()

        assert count == 3
        assert stop.timeouts == [3500, 3500, 3500]

    def test_missed_ticks_are_skipped(self):
        monotonic = FakeMonotonic()
        stop = SimulatedStopEvent(monotonic, max_waits=2)
        durations = iter([100, 4000, 100])

        def run_service(service):
            monotonic.now += next(durations)

        daemon = SyncDaemon(run_service, ["gmail"], HOUR, stop_event=stop, monotonic=monotonic)
        daemon.run()

        # Second cycle starts at 3600 and ends at 7600, so the 7200 tick is skipped
        assert stop.timeouts == [3500, 3200]

    def test_no_cycle_after_stop(self):
        monotonic = FakeMonotonic()
        stop = SimulatedStopEvent(monotonic)
        ran = []
        daemon = SyncDaemon(ran.append, ["contacts", "gmail"], HOUR, stop_event=stop, monotonic=monotonic)

        def run_service(service):
            ran.append(service)
            if service == "contacts":
                daemon.request_stop()

        daemon.run_service = run_service
        count = daemon.run()

        assert count == 1
        assert ran == ["contacts"]
        assert stop.timeouts == []

    def test_stop_before_start(self):
        stop = threading.Event()
        stop.set()
        ran = []
        daemon = SyncDaemon(ran.append, ["gmail"], HOUR, stop_event=stop)
        assert daemon.run() == 0
        assert ran == []

    def test_hook_failure_does_not_stop_daemon(self):
        monotonic = FakeMonotonic()
        stop = SimulatedStopEvent(monotonic)
        ran = []

        def refresh(summary):
            raise sqlite3.OperationalError("database is locked")

        daemon = SyncDaemon(
            ran.append, ["gmail"], HOUR, stop_event=stop, monotonic=monotonic, after_cycle=refresh,
        )

        assert daemon.run(max_cycles=2) == 2
        assert ran == ["gmail", "gmail"]


class TestSignalHandling:
    """SIGTERM during a cycle lets the running service finish."""

    def test_sigterm_stops_after_current_service(self):
        original_term = signal.getsignal(signal.SIGTERM)
        original_int = signal.getsignal(signal.SIGINT)
        ran = []

        def run_service(service):
            ran.append(service)
            if service == "contacts":
                os.kill(os.getpid(), signal.SIGTERM)
                ran.append(f"{service} finished")

        daemon = SyncDaemon(run_service, ["contacts", "calendar", "gmail"], HOUR)
        try:
            daemon.install_signal_handlers()
            count = daemon.run()
            assert signal.getsignal(signal.SIGTERM) == original_term
        finally:
            signal.signal(signal.SIGTERM, original_term)
            signal.signal(signal.SIGINT, original_int)

        assert count == 1
        assert ran == ["contacts", "contacts finished"]
        assert daemon.stop_event.is_set()
        assert daemon.last_cycle.interrupted
        assert daemon.last_cycle.succeeded == 1

    def test_handlers_restored_after_run(self):
        original_term = signal.getsignal(signal.SIGTERM)
        original_int = signal.getsignal(signal.SIGINT)
        stop = threading.Event()
        stop.set()
        daemon = SyncDaemon(lambda s: None, ["gmail"], HOUR, stop_event=stop)

        try:
            daemon.install_signal_handlers()
            assert signal.getsignal(signal.SIGTERM) != original_term
            daemon.run()
            assert signal.getsignal(signal.SIGTERM) == original_term
            assert signal.getsignal(signal.SIGINT) == original_int
        finally:
            signal.signal(signal.SIGTERM, original_term)
            signal.signal(signal.SIGINT, original_int)
