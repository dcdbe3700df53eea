"""
Sync run history.

One row per importer run (manual, daemon or API triggered) with counts,
duration and the failure message, so `sync status` and the status API can
show how long the last run took and whether services are going stale.
"""
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from crmsync.services.crm_db import CRMDatabase
from crmsync.services.importer_base import ImportResult
from crmsync.utils.datetime_utils import from_storage, to_storage, utc_now

logger = logging.getLogger(__name__)

# Maximum age before a service is considered stale (24 hours)
SYNC_STALE_HOURS = 24


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class SyncRun:
    """Result of one sync run."""
    id: int
    service: str
    trigger: str
    status: RunStatus
    started_at: datetime
    completed_at: Optional[datetime]
    duration_seconds: Optional[float]
    fetched: int = 0
    imported: int = 0
    skipped: int = 0
    contacts_created: int = 0
    record_errors: int = 0
    error_message: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "SyncRun":
        return cls(
            id=row["id"],
            service=row["service"],
            trigger=row["trigger"],
            status=RunStatus(row["status"]),
            started_at=from_storage(row["started_at"]),
            completed_at=from_storage(row["completed_at"]),
            duration_seconds=row["duration_seconds"],
            fetched=row["fetched"] or 0,
            imported=row["imported"] or 0,
            skipped=row["skipped"] or 0,
            contacts_created=row["contacts_created"] or 0,
            record_errors=row["record_errors"] or 0,
            error_message=row["error_message"],
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "service": self.service,
            "trigger": self.trigger,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "fetched": self.fetched,
            "imported": self.imported,
            "skipped": self.skipped,
            "contacts_created": self.contacts_created,
            "record_errors": self.record_errors,
            "error_message": self.error_message,
        }


class SyncRunStore:
    """Records the start and completion of importer runs."""

    def __init__(self, db: CRMDatabase, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    def record_start(self, service: str, trigger: str = "manual") -> int:
        """
        Record the start of a sync run.

        Returns:
            Run ID for updating completion status
        """
        cursor = self.db.execute(
            """
            INSERT INTO sync_runs (service, trigger, status, started_at)
            VALUES (?, ?, ?, ?)
            """,
            (service, trigger, RunStatus.RUNNING.value, to_storage(self.clock())),
        )
        run_id = cursor.lastrowid
        logger.debug(f"Started sync for {service} (run_id={run_id})")
        return run_id

    def record_complete(
        self,
        run_id: int,
        result: Optional[ImportResult] = None,
        error_message: Optional[str] = None,
    ):
        """Record completion of a run: success with a result, or failure with a message."""
        row = self.db.query_one("SELECT started_at FROM sync_runs WHERE id = ?", (run_id,))
        now = self.clock()
        duration = None
        if row:
            duration = (now - from_storage(row["started_at"])).total_seconds()

        status = RunStatus.FAILED if error_message else RunStatus.SUCCESS
        result = result or ImportResult(service="")
        self.db.execute(
            """
            UPDATE sync_runs SET
                status = ?,
                completed_at = ?,
                duration_seconds = ?,
                fetched = ?,
                imported = ?,
                skipped = ?,
                contacts_created = ?,
                record_errors = ?,
                error_message = ?
            WHERE id = ?
            """,
            (
                status.value,
                to_storage(now),
                duration,
                result.fetched,
                result.imported,
                result.total_skipped,
                result.contacts_created,
                result.record_errors,
                error_message,
                run_id,
            ),
        )

    def recent(self, service: Optional[str] = None, limit: int = 20) -> list[SyncRun]:
        if service:
            rows = self.db.query(
                """
                SELECT * FROM sync_runs WHERE service = ?
                ORDER BY started_at DESC, id DESC LIMIT ?
                """,
                (service, limit),
            )
        else:
            rows = self.db.query(
                "SELECT * FROM sync_runs ORDER BY started_at DESC, id DESC LIMIT ?",
                (limit,),
            )
        return [SyncRun.from_row(row) for row in rows]

    def last_run(self, service: str) -> Optional[SyncRun]:
        """Most recent finished run for a service."""
        row = self.db.query_one(
            """
            SELECT * FROM sync_runs WHERE service = ? AND status != 'running'
            ORDER BY started_at DESC, id DESC LIMIT 1
            """,
            (service,),
        )
        return SyncRun.from_row(row) if row else None

    def is_stale(self, service: str) -> bool:
        """True if the service has no successful run in the last SYNC_STALE_HOURS."""
        cutoff = to_storage(self.clock() - timedelta(hours=SYNC_STALE_HOURS))
        row = self.db.query_one(
            """
            SELECT 1 FROM sync_runs
            WHERE service = ? AND status = 'success' AND completed_at > ?
            LIMIT 1
            """,
            (service, cutoff),
        )
        return row is None
