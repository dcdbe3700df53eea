"""
Tests for the crmsync command line.

open_database and build_sync_runner are patched so commands run against
the temp database and fake provider clients.
"""
from unittest.mock import MagicMock, patch

import pytest

from crmsync import cli
from crmsync.services.crm_store import ContactStore
from crmsync.services.google_auth import AuthenticationError
from crmsync.services.provider_fetch import FetchFailure, Page
from crmsync.services.sync_runner import GoogleClients, SyncRunner
from crmsync.services.sync_state import SyncStateStore, SyncStatus
from tests.fixtures.provider_fakes import (
    FakeCalendarClient,
    FakeGmailClient,
    FakePeopleClient,
    make_event,
    make_person,
)

pytestmark = pytest.mark.unit


@pytest.fixture
def runner(context):
    clients = GoogleClients(
        people=FakePeopleClient(Page(items=[make_person("people/c1", "Alice", "alice@acme.com")])),
        calendar=FakeCalendarClient().queue(Page(items=[make_event("e1")], next_cursor="tok")),
        gmail=FakeGmailClient(),
    )
    return SyncRunner(context, clients)


@pytest.fixture
def run_cli(db, runner, test_settings):
    """Invoke main() with the temp database and fake runner."""
    def invoke(*argv):
        with patch("crmsync.cli.open_database", return_value=db), \
             patch("crmsync.cli.build_sync_runner", return_value=runner):
            return cli.main(list(argv), cfg=test_settings)
    return invoke


class TestSyncCommands:
    def test_sync_all(self, run_cli, capsys):
        assert run_cli("sync") == 0
        out = capsys.readouterr().out
        assert "✓ contacts" in out
        assert "✓ calendar" in out
        assert "3 succeeded, 0 failed" in out

    def test_sync_all_with_failure(self, run_cli, runner, capsys):
        runner.clients.calendar.responses = [FetchFailure("calendar events.list failed: HTTP 500", 500)]
        assert run_cli("sync") == 1
        out = capsys.readouterr().out
        assert "✗ calendar" in out
        assert "2 succeeded, 1 failed" in out

    def test_sync_one_service_initial(self, run_cli, runner, capsys):
        assert run_cli("sync", "calendar", "--initial") == 0
        assert "✓ calendar: 1 imported" in capsys.readouterr().out
        assert runner.clients.calendar.calls[0]["time_min"] is not None

    def test_sync_one_service_failure(self, run_cli, runner, capsys):
        runner.clients.people.pages = [FetchFailure("people connections.list failed: HTTP 403", 403)]
        assert run_cli("sync", "contacts") == 1
        assert "✗ contacts sync failed" in capsys.readouterr().out

    def test_auth_error_exits_nonzero(self, db, test_settings, capsys):
        with patch("crmsync.cli.open_database", return_value=db), \
             patch("crmsync.cli.build_sync_runner",
                   side_effect=AuthenticationError("no authentication token found. Run 'crmsync sync init' first")):
            assert cli.main(["sync", "gmail"], cfg=test_settings) == 1
        assert "crmsync sync init" in capsys.readouterr().out

    def test_token_revoked_during_run(self, run_cli, runner, db, capsys):
        runner.clients.calendar.list_events = MagicMock(side_effect=AuthenticationError(
            "token refresh failed (may be revoked): invalid_grant. Run 'crmsync sync init' first"
        ))

        assert run_cli("sync", "calendar") == 1

        out = capsys.readouterr().out
        assert "Error: token refresh failed" in out
        assert "crmsync sync init" in out
        assert SyncStateStore(db).get("calendar") is None

    def test_init_runs_consent_flow(self, test_settings, capsys):
        auth = MagicMock()
        with patch("crmsync.cli.get_google_auth", return_value=auth):
            assert cli.main(["sync", "init"], cfg=test_settings) == 0
        auth.run_consent_flow.assert_called_once_with(port=test_settings.oauth_port)


class TestStatusAndReset:
    def test_status(self, run_cli, db, capsys):
        state = SyncStateStore(db)
        state.set_cursor("calendar", "tok")
        state.set_status("gmail", SyncStatus.ERROR, "HTTP 500")

        assert run_cli("sync", "status") == 0
        out = capsys.readouterr().out
        assert "- contacts: never synced" in out
        assert "✓ calendar: idle" in out
        assert "incremental sync enabled" in out
        assert "✗ gmail: error" in out
        assert "error: HTTP 500" in out

    def test_reset(self, run_cli, db, capsys):
        SyncStateStore(db).set_status("calendar", SyncStatus.SYNCING)
        assert run_cli("sync", "reset", "calendar") == 0
        assert SyncStateStore(db).get("calendar").status == SyncStatus.IDLE

    def test_reset_all(self, run_cli, db, capsys):
        SyncStateStore(db).set_status("calendar", SyncStatus.ERROR, "x")
        SyncStateStore(db).set_status("gmail", SyncStatus.SYNCING)
        assert run_cli("sync", "reset", "all") == 0
        assert "Reset 2 service(s)" in capsys.readouterr().out

    def test_reset_unknown(self, run_cli):
        assert run_cli("sync", "reset", "slack") == 1


class TestDaemonCommand:
    def test_invalid_interval_rejected_before_auth(self, db, test_settings, capsys):
        with patch("crmsync.cli.build_sync_runner") as mock_build:
            assert cli.main(["sync", "daemon", "--interval", "4m"], cfg=test_settings) == 1
        mock_build.assert_not_called()
        assert "at least 5m" in capsys.readouterr().out

    def test_no_valid_services(self, test_settings):
        with patch("crmsync.cli.build_sync_runner") as mock_build:
            assert cli.main(["sync", "daemon", "--services", "slack"], cfg=test_settings) == 1
        mock_build.assert_not_called()

    def test_daemon_runs(self, run_cli):
        with patch("crmsync.cli.SyncDaemon") as mock_daemon:
            assert run_cli("sync", "daemon", "--interval", "15m", "--services", "gmail,calendar") == 0

        kwargs = mock_daemon.call_args.kwargs
        assert kwargs["services"] == ["gmail", "calendar"]
        assert kwargs["interval"].total_seconds() == 900
        mock_daemon.return_value.install_signal_handlers.assert_called_once()
        mock_daemon.return_value.run.assert_called_once()


class TestFollowupCommands:
    def test_followups_empty(self, run_cli, capsys):
        assert run_cli("followups") == 0
        assert "No one is overdue" in capsys.readouterr().out

    def test_set_cadence(self, run_cli, db, capsys):
        contact = ContactStore(db).create("Alice", "alice@acme.com")
        assert run_cli("cadence", contact.id, "--days", "14", "--strength", "strong") == 0
        assert "every 14 days (strong)" in capsys.readouterr().out

    def test_set_cadence_invalid_days(self, run_cli, db, capsys):
        contact = ContactStore(db).create("Alice", "alice@acme.com")
        assert run_cli("cadence", contact.id, "--days", "0") == 1
        assert "positive integer" in capsys.readouterr().out

    def test_set_cadence_unknown_contact(self, run_cli):
        assert run_cli("cadence", "missing", "--days", "14") == 1
