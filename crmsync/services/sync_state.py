"""
Sync state and dedup ledger stores.

SyncStateStore keeps one row per provider: the last cursor, when it was
stored, and whether an import is running or failed. SyncLogStore is the
append-only ledger of provider records already imported.
"""
import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from crmsync.services.crm_db import CRMDatabase
from crmsync.services.sync_metadata import SyncMetadata, decode_metadata, encode_metadata
from crmsync.utils.datetime_utils import from_storage, to_storage, utc_now

logger = logging.getLogger(__name__)

# Provider services known to the engine, in default run order
SERVICES = ("contacts", "calendar", "gmail")


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


class AlreadyLoggedError(Exception):
    """A sync log entry for this (service, source_id) already exists. Benign."""

    def __init__(self, service: str, source_id: str):
        self.service = service
        self.source_id = source_id
        super().__init__(f"{service}:{source_id} already logged")


@dataclass
class SyncState:
    """Cursor and status for one provider service."""
    service: str
    status: SyncStatus = SyncStatus.IDLE
    last_sync_time: Optional[datetime] = None
    last_sync_token: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def incremental_enabled(self) -> bool:
        """True when a provider cursor is stored and the next run can be incremental."""
        return bool(self.last_sync_token)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "SyncState":
        return cls(
            service=row["service"],
            status=SyncStatus(row["status"]),
            last_sync_time=from_storage(row["last_sync_time"]),
            last_sync_token=row["last_sync_token"],
            error_message=row["error_message"],
            created_at=from_storage(row["created_at"]),
            updated_at=from_storage(row["updated_at"]),
        )

    def to_dict(self) -> dict:
        return {
            "service": self.service,
            "status": self.status.value,
            "last_sync_time": self.last_sync_time.isoformat() if self.last_sync_time else None,
            "incremental_enabled": self.incremental_enabled,
            "error_message": self.error_message,
        }


@dataclass
class SyncLogEntry:
    """One imported provider record."""
    id: str
    source_service: str
    source_id: str
    entity_type: str
    entity_id: str
    imported_at: datetime
    metadata: Optional[SyncMetadata] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "SyncLogEntry":
        return cls(
            id=row["id"],
            source_service=row["source_service"],
            source_id=row["source_id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            imported_at=from_storage(row["imported_at"]),
            metadata=decode_metadata(row["metadata"]),
        )


class SyncStateStore:
    """
    Per-service sync state.

    Mutated by the importer that owns a service at the start and end of
    each run, and by manual resets.
    """

    def __init__(self, db: CRMDatabase, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    def get(self, service: str) -> Optional[SyncState]:
        row = self.db.query_one("SELECT * FROM sync_state WHERE service = ?", (service,))
        return SyncState.from_row(row) if row else None

    def set_status(
        self,
        service: str,
        status: SyncStatus,
        error_message: Optional[str] = None,
    ) -> None:
        """Upsert a service's status. The error message is replaced, not merged."""
        now = to_storage(self.clock())
        self.db.execute(
            """
            INSERT INTO sync_state (service, status, error_message, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(service) DO UPDATE SET
                status = excluded.status,
                error_message = excluded.error_message,
                updated_at = excluded.updated_at
            """,
            (service, SyncStatus(status).value, error_message, now, now),
        )

    def set_cursor(self, service: str, token: Optional[str]) -> None:
        """
        Store a new cursor after a successful run.

        Also stamps last_sync_time, resets status to idle and clears the error.
        """
        now = to_storage(self.clock())
        self.db.execute(
            """
            INSERT INTO sync_state
                (service, last_sync_time, last_sync_token, status, error_message, created_at, updated_at)
            VALUES (?, ?, ?, 'idle', NULL, ?, ?)
            ON CONFLICT(service) DO UPDATE SET
                last_sync_time = excluded.last_sync_time,
                last_sync_token = excluded.last_sync_token,
                status = 'idle',
                error_message = NULL,
                updated_at = excluded.updated_at
            """,
            (service, now, token or "", now, now),
        )
        logger.debug(f"Stored {service} cursor")

    def clear_cursor(self, service: str) -> None:
        """Drop a rejected cursor without touching status."""
        self.db.execute(
            "UPDATE sync_state SET last_sync_token = NULL, updated_at = ? WHERE service = ?",
            (to_storage(self.clock()), service),
        )

    def restore(self, service: str, previous: Optional[SyncState]) -> None:
        """Put a service's row back as it was before a run (deleted if it had none)."""
        if previous is None:
            self.db.execute("DELETE FROM sync_state WHERE service = ?", (service,))
            return
        self.db.execute(
            """
            UPDATE sync_state SET
                status = ?, error_message = ?, last_sync_time = ?, last_sync_token = ?, updated_at = ?
            WHERE service = ?
            """,
            (
                previous.status.value,
                previous.error_message,
                to_storage(previous.last_sync_time),
                previous.last_sync_token,
                to_storage(previous.updated_at),
                service,
            ),
        )

    def reset(self, service: str) -> bool:
        """
        Force a service back to idle (manual unstick). Keeps the cursor.

        Returns:
            True if a state row existed
        """
        cursor = self.db.execute(
            """
            UPDATE sync_state SET status = 'idle', error_message = NULL, updated_at = ?
            WHERE service = ?
            """,
            (to_storage(self.clock()), service),
        )
        return cursor.rowcount > 0

    def reset_all(self) -> int:
        cursor = self.db.execute(
            "UPDATE sync_state SET status = 'idle', error_message = NULL, updated_at = ?",
            (to_storage(self.clock()),),
        )
        return cursor.rowcount

    def list_all(self) -> list[SyncState]:
        rows = self.db.query("SELECT * FROM sync_state ORDER BY service")
        return [SyncState.from_row(row) for row in rows]


class SyncLogStore:
    """Append-only ledger of imported provider records, keyed by (service, source_id)."""

    def __init__(self, db: CRMDatabase, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    def exists(self, service: str, source_id: str) -> bool:
        row = self.db.query_one(
            "SELECT 1 FROM sync_log WHERE source_service = ? AND source_id = ?",
            (service, source_id),
        )
        return row is not None

    def get(self, service: str, source_id: str) -> Optional[SyncLogEntry]:
        row = self.db.query_one(
            "SELECT * FROM sync_log WHERE source_service = ? AND source_id = ?",
            (service, source_id),
        )
        return SyncLogEntry.from_row(row) if row else None

    def log(
        self,
        service: str,
        source_id: str,
        entity_type: str,
        entity_id: str,
        metadata: Optional[SyncMetadata] = None,
    ) -> SyncLogEntry:
        """
        Record that a provider record was imported.

        Raises:
            AlreadyLoggedError: If (service, source_id) was logged before
        """
        entry = SyncLogEntry(
            id=str(uuid.uuid4()),
            source_service=service,
            source_id=source_id,
            entity_type=entity_type,
            entity_id=entity_id,
            imported_at=self.clock(),
            metadata=metadata,
        )
        try:
            self.db.execute(
                """
                INSERT INTO sync_log
                    (id, source_service, source_id, entity_type, entity_id, imported_at, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.id,
                    service,
                    source_id,
                    entity_type,
                    entity_id,
                    to_storage(entry.imported_at),
                    encode_metadata(metadata),
                ),
            )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" not in str(e):
                raise
            raise AlreadyLoggedError(service, source_id) from e
        return entry

    def log_if_absent(
        self,
        service: str,
        source_id: str,
        entity_type: str,
        entity_id: str,
        metadata: Optional[SyncMetadata] = None,
    ) -> bool:
        """Like log(), but a duplicate is a no-op. Returns True if a new entry was written."""
        try:
            self.log(service, source_id, entity_type, entity_id, metadata)
        except AlreadyLoggedError:
            return False
        return True

    def count(self, service: Optional[str] = None) -> int:
        if service:
            row = self.db.query_one(
                "SELECT COUNT(*) FROM sync_log WHERE source_service = ?", (service,)
            )
        else:
            row = self.db.query_one("SELECT COUNT(*) FROM sync_log")
        return row[0]
