"""
Tests for the sync status API.
"""
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from crmsync.main import app
from crmsync.services.crm_db import get_crm_database
from crmsync.services.crm_store import ContactStore
from crmsync.services.importer_base import ImportResult
from crmsync.services.interaction_store import InteractionLog, InteractionStore, InteractionType
from crmsync.services.sync_runs import SyncRunStore
from crmsync.services.sync_state import SyncStateStore, SyncStatus

pytestmark = pytest.mark.unit


@pytest.fixture
def client(db):
    app.dependency_overrides[get_crm_database] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestSyncStatus:
    def test_never_synced_services_are_idle(self, client):
        response = client.get("/api/sync/status")
        assert response.status_code == 200
        services = response.json()["services"]
        assert [s["service"] for s in services] == ["contacts", "calendar", "gmail"]
        assert all(s["status"] == "idle" for s in services)
        assert all(s["last_sync_time"] is None for s in services)

    def test_reports_state_and_last_run(self, client, db):
        state = SyncStateStore(db)
        state.set_cursor("calendar", "tok")
        state.set_status("gmail", SyncStatus.ERROR, "HTTP 500")
        runs = SyncRunStore(db)
        runs.record_complete(runs.record_start("calendar"), ImportResult(service="calendar"))

        services = {s["service"]: s for s in client.get("/api/sync/status").json()["services"]}

        assert services["calendar"]["incremental_enabled"] is True
        assert services["calendar"]["last_sync_time"] is not None
        assert services["calendar"]["last_run_duration_seconds"] is not None
        assert services["calendar"]["stale"] is False
        assert services["gmail"]["status"] == "error"
        assert services["gmail"]["error_message"] == "HTTP 500"


class TestSyncRuns:
    def test_runs_listed(self, client, db):
        runs = SyncRunStore(db)
        runs.record_complete(runs.record_start("gmail", "daemon"), error_message="boom")

        body = client.get("/api/sync/runs?service=gmail").json()
        assert len(body) == 1
        assert body[0]["status"] == "failed"
        assert body[0]["trigger"] == "daemon"

    def test_unknown_service(self, client):
        assert client.get("/api/sync/runs?service=slack").status_code == 404


class TestReset:
    def test_reset_stuck_service(self, client, db):
        state = SyncStateStore(db)
        state.set_cursor("gmail", "4000")
        state.set_status("gmail", SyncStatus.SYNCING)

        response = client.post("/api/sync/reset/gmail")

        assert response.status_code == 200
        assert response.json()["status"] == "idle"
        assert state.get("gmail").status == SyncStatus.IDLE
        assert state.get("gmail").last_sync_token == "4000"

    def test_reset_never_synced(self, client):
        response = client.post("/api/sync/reset/calendar")
        assert response.status_code == 200
        assert "never synced" in response.json()["message"]

    def test_reset_unknown_service(self, client):
        assert client.post("/api/sync/reset/slack").status_code == 404


class TestFollowups:
    def test_followups(self, client, db):
        contact = ContactStore(db).create("Alice", "alice@acme.com")
        store = InteractionStore(db)
        store.log_interaction(InteractionLog(
            contact_id=contact.id,
            interaction_type=InteractionType.EMAIL,
            timestamp=store.clock() - timedelta(days=50),
        ))

        body = client.get("/api/sync/followups").json()
        assert body[0]["name"] == "Alice"
        assert body[0]["priority_score"] == 60.0
        assert body[0]["relationship_strength"] == "medium"


class TestHealth:
    def test_health_reports_checks(self, client):
        body = client.get("/health").json()
        assert body["service"] == "crmsync"
        assert set(body["checks"]) == {"google_oauth_configured", "token_present"}
