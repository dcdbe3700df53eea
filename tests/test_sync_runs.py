"""
Tests for sync run history.
"""
from collections import Counter

import pytest

from crmsync.services.importer_base import ImportResult
from crmsync.services.sync_runs import RunStatus, SyncRunStore

pytestmark = pytest.mark.unit


@pytest.fixture
def runs(db, clock):
    return SyncRunStore(db, clock=clock)


class TestSyncRunStore:
    def test_successful_run(self, runs, clock):
        run_id = runs.record_start("calendar", "daemon")
        clock.advance(seconds=12)
        result = ImportResult(
            service="calendar", fetched=10, imported=4, contacts_created=2,
            skipped=Counter({"solo event": 3, "cancelled": 3}),
        )
        runs.record_complete(run_id, result)

        run = runs.last_run("calendar")
        assert run.status == RunStatus.SUCCESS
        assert run.trigger == "daemon"
        assert run.duration_seconds == 12.0
        assert (run.fetched, run.imported, run.skipped, run.contacts_created) == (10, 4, 6, 2)
        assert run.error_message is None

    def test_failed_run(self, runs, clock):
        run_id = runs.record_start("gmail")
        clock.advance(seconds=3)
        runs.record_complete(run_id, error_message="HTTP 500")

        run = runs.last_run("gmail")
        assert run.status == RunStatus.FAILED
        assert run.error_message == "HTTP 500"
        assert run.imported == 0

    def test_last_run_ignores_running(self, runs):
        runs.record_start("contacts")
        assert runs.last_run("contacts") is None
        assert runs.recent("contacts")[0].status == RunStatus.RUNNING

    def test_recent_newest_first(self, runs, clock):
        for service in ("contacts", "calendar", "gmail"):
            runs.record_complete(runs.record_start(service), ImportResult(service=service))
            clock.advance(minutes=1)

        assert [r.service for r in runs.recent()] == ["gmail", "calendar", "contacts"]
        assert [r.service for r in runs.recent("calendar")] == ["calendar"]
        assert len(runs.recent(limit=2)) == 2

    def test_is_stale(self, runs, clock):
        assert runs.is_stale("calendar")

        runs.record_complete(runs.record_start("calendar"), ImportResult(service="calendar"))
        assert not runs.is_stale("calendar")

        clock.advance(hours=25)
        assert runs.is_stale("calendar")

    def test_failed_run_does_not_refresh_staleness(self, runs):
        runs.record_complete(runs.record_start("gmail"), error_message="boom")
        assert runs.is_stale("gmail")

    def test_to_dict(self, runs):
        runs.record_complete(runs.record_start("gmail"), ImportResult(service="gmail"))
        data = runs.last_run("gmail").to_dict()
        assert data["status"] == "success"
        assert data["completed_at"] is not None
