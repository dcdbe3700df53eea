"""
Scheduled sync daemon.

Runs one cycle immediately, then one per fixed-interval tick. Services in a
cycle run one after another; a failure is logged and the next service still
runs. A stop request (SIGINT/SIGTERM or request_stop()) lets the service in
progress finish, then no further service or cycle starts.
"""
import logging
import re
import signal
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from crmsync.services.sync_state import SERVICES
from crmsync.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

MIN_INTERVAL = timedelta(minutes=5)

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(h|m|s)")
_UNIT_SECONDS = {"h": 3600, "m": 60, "s": 1}


class DaemonConfigError(ValueError):
    """Invalid daemon interval or service selection."""


def parse_interval(text: str) -> timedelta:
    """
    Parse a duration like "90s", "5m", "1h" or "1h30m".

    Raises:
        DaemonConfigError: Unparseable or below MIN_INTERVAL
    """
    raw = (text or "").strip().lower()
    pos = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(raw):
        if match.start() != pos:
            break
        seconds += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if not raw or pos != len(raw):
        raise DaemonConfigError(f"invalid interval '{text}' (examples: 5m, 1h, 1h30m)")

    interval = timedelta(seconds=seconds)
    if interval < MIN_INTERVAL:
        raise DaemonConfigError(f"interval must be at least 5m, got '{text}'")
    return interval


def parse_services(text: str) -> list[str]:
    """
    Parse "all" or a comma-separated service list.

    Unknown names are dropped with a warning; an empty result is an error.

    Raises:
        DaemonConfigError: No valid services selected
    """
    raw = (text or "").strip().lower()
    if raw == "all":
        return list(SERVICES)

    services = []
    for name in raw.split(","):
        name = name.strip()
        if not name:
            continue
        if name not in SERVICES:
            logger.warning(f"Ignoring unknown service '{name}' (valid: {', '.join(SERVICES)})")
            continue
        if name not in services:
            services.append(name)

    if not services:
        raise DaemonConfigError("no valid services specified")
    return services


def format_duration(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m{secs:02d}s"


@dataclass
class ServiceRun:
    service: str
    succeeded: bool
    duration_seconds: float
    error: Optional[str] = None


@dataclass
class CycleSummary:
    started_at: datetime
    runs: list[ServiceRun] = field(default_factory=list)
    interrupted: bool = False

    @property
    def succeeded(self) -> int:
        return sum(1 for run in self.runs if run.succeeded)

    @property
    def failed(self) -> int:
        return sum(1 for run in self.runs if not run.succeeded)


class SyncDaemon:
    """
    Fixed-interval scheduler for sync cycles.

    Usage:
        daemon = SyncDaemon(run_service, ["calendar", "gmail"], timedelta(hours=1))
        daemon.install_signal_handlers()
        daemon.run()
    """

    def __init__(
        self,
        run_service: Callable[[str], object],
        services: list[str],
        interval: timedelta,
        stop_event: Optional[threading.Event] = None,
        monotonic: Callable[[], float] = time.monotonic,
        after_cycle: Optional[Callable[[CycleSummary], None]] = None,
    ):
        """
        Args:
            run_service: Runs one service; raises on failure
            services: Services to run each cycle, in order
            interval: Time between cycle starts (>= MIN_INTERVAL)
            stop_event: Shared stop flag (created if not given)
            monotonic: Clock for tick scheduling (injected in tests)
            after_cycle: Hook run after each completed cycle

        Raises:
            DaemonConfigError: Bad interval or empty/unknown services
        """
        if interval < MIN_INTERVAL:
            raise DaemonConfigError(f"interval must be at least 5m, got {interval}")
        if not services:
            raise DaemonConfigError("no valid services specified")
        unknown = [s for s in services if s not in SERVICES]
        if unknown:
            raise DaemonConfigError(f"unknown services: {', '.join(unknown)}")

        self.run_service = run_service
        self.services = list(services)
        self.interval = interval
        self.stop_event = stop_event or threading.Event()
        self.monotonic = monotonic
        self.after_cycle = after_cycle
        self.last_cycle: Optional[CycleSummary] = None
        self._previous_handlers: dict = {}

    def request_stop(self):
        self.stop_event.set()

    def install_signal_handlers(self):
        """
        Stop gracefully on SIGINT/SIGTERM. Must be called from the main thread.

        The previous handlers are put back when run() returns.
        """
        def handler(signum, frame):
            logger.info(f"Received {signal.Signals(signum).name}, stopping after current service...")
            self.request_stop()

        for signum in (signal.SIGINT, signal.SIGTERM):
            self._previous_handlers[signum] = signal.signal(signum, handler)

    def restore_signal_handlers(self):
        for signum, previous in self._previous_handlers.items():
            signal.signal(signum, previous)
        self._previous_handlers.clear()

    def run_cycle(self) -> CycleSummary:
        """Run each selected service once, stopping early if a stop was requested."""
        summary = CycleSummary(started_at=utc_now())
        logger.info(f"Starting sync cycle ({', '.join(self.services)})")

        for service in self.services:
            if self.stop_event.is_set():
                summary.interrupted = True
                logger.info("Stop requested, skipping remaining services")
                break

            started = self.monotonic()
            try:
                self.run_service(service)
                run = ServiceRun(service, True, self.monotonic() - started)
                logger.info(f"  {service}: ok ({format_duration(run.duration_seconds)})")
            except Exception as e:
                run = ServiceRun(service, False, self.monotonic() - started, error=str(e))
                logger.error(f"  {service}: failed after {format_duration(run.duration_seconds)}: {e}")
            summary.runs.append(run)

        logger.info(f"Sync cycle complete ({summary.succeeded} succeeded, {summary.failed} failed)")
        self.last_cycle = summary
        if self.after_cycle:
            try:
                self.after_cycle(summary)
            except Exception as e:
                logger.error(f"After-cycle hook failed: {e}")
        return summary

    def run(self, max_cycles: Optional[int] = None) -> int:
        """
        Run cycles until stopped.

        The first cycle starts immediately. Later cycles start on ticks
        anchored at the first start; ticks missed by a long cycle are
        skipped, not queued.

        Returns:
            Number of cycles run
        """
        interval = self.interval.total_seconds()
        logger.info(
            f"Sync daemon started: every {format_duration(interval)} "
            f"for {', '.join(self.services)}"
        )

        count = 0
        next_tick = self.monotonic()
        try:
            while not self.stop_event.is_set():
                self.run_cycle()
                count += 1
                if max_cycles is not None and count >= max_cycles:
                    break

                now = self.monotonic()
                next_tick += interval
                while next_tick <= now:
                    next_tick += interval
                if self.stop_event.wait(timeout=next_tick - now):
                    break
        finally:
            self.restore_signal_handlers()

        logger.info(f"Sync daemon stopped after {count} cycle(s)")
        return count
