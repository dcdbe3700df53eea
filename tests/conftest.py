"""
Pytest configuration and shared fixtures for crmsync tests.

Test Categories:
- unit: Fast tests with no external dependencies (< 100ms each)
- integration: Tests that wire several stores and importers together

Run categories:
- pytest -m unit              # Fast unit tests only
- pytest -m "not integration" # Skip integration tests
- pytest                      # All tests
"""
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import Settings
from crmsync.services.crm_db import CRMDatabase
from crmsync.services.importer_base import SyncContext


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "integration: Multi-component tests against a temp database")


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    """Clock fixed at 2024-06-01 15:00 UTC."""
    return FixedClock(datetime(2024, 6, 1, 15, 0, tzinfo=timezone.utc))


@pytest.fixture
def db(tmp_path):
    """A fresh CRM database in a temp directory."""
    database = CRMDatabase(str(tmp_path / "crm.db"))
    yield database
    database.close()


@pytest.fixture
def test_settings(tmp_path):
    """Settings pointing at the temp directory, independent of any local .env."""
    return Settings(
        _env_file=None,
        CRMSYNC_DATA_DIR=str(tmp_path),
        GOOGLE_CLIENT_ID="test-client.apps.googleusercontent.com",
        GOOGLE_CLIENT_SECRET="test-secret",
    )


@pytest.fixture
def context(db, clock, test_settings):
    """SyncContext with a fixed clock and no-op sleep."""
    return SyncContext.create(db, settings=test_settings, clock=clock, sleep=lambda seconds: None)
