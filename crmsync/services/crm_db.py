"""
CRM database connection and schema.

All sync stores share one writable SQLite connection. Writes are serialized
through a re-entrant lock, and transactions nest so that an importer can wrap
several store calls for one provider record in a single commit.
"""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from crmsync.utils.db_paths import get_crm_db_path

logger = logging.getLogger(__name__)

SCHEMA = """
    CREATE TABLE IF NOT EXISTS companies (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        domain TEXT,
        created_at TIMESTAMP NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_companies_name ON companies(name COLLATE NOCASE);

    CREATE TABLE IF NOT EXISTS contacts (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT,
        phone TEXT,
        company_id TEXT REFERENCES companies(id) ON DELETE SET NULL,
        notes TEXT,
        last_contacted_at TIMESTAMP,
        created_at TIMESTAMP NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_contacts_name ON contacts(name COLLATE NOCASE);
    CREATE INDEX IF NOT EXISTS idx_contacts_email ON contacts(email COLLATE NOCASE);

    CREATE TABLE IF NOT EXISTS sync_state (
        service TEXT PRIMARY KEY,
        last_sync_time TIMESTAMP,
        last_sync_token TEXT,
        status TEXT NOT NULL DEFAULT 'idle'
            CHECK (status IN ('idle', 'syncing', 'error')),
        error_message TEXT,
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL
    );

    CREATE TABLE IF NOT EXISTS sync_log (
        id TEXT PRIMARY KEY,
        source_service TEXT NOT NULL,
        source_id TEXT NOT NULL,
        entity_type TEXT NOT NULL,
        entity_id TEXT NOT NULL,
        imported_at TIMESTAMP NOT NULL,
        metadata TEXT,
        UNIQUE (source_service, source_id)
    );

    CREATE INDEX IF NOT EXISTS idx_sync_log_entity ON sync_log(entity_type, entity_id);

    CREATE TABLE IF NOT EXISTS contact_cadence (
        contact_id TEXT PRIMARY KEY REFERENCES contacts(id) ON DELETE CASCADE,
        cadence_days INTEGER NOT NULL DEFAULT 30,
        relationship_strength TEXT NOT NULL DEFAULT 'medium'
            CHECK (relationship_strength IN ('weak', 'medium', 'strong')),
        priority_score REAL NOT NULL DEFAULT 0,
        last_interaction_date TIMESTAMP,
        next_followup_date TIMESTAMP
    );

    CREATE INDEX IF NOT EXISTS idx_cadence_priority ON contact_cadence(priority_score DESC);

    CREATE TABLE IF NOT EXISTS interaction_log (
        id TEXT PRIMARY KEY,
        contact_id TEXT NOT NULL REFERENCES contacts(id) ON DELETE CASCADE,
        interaction_type TEXT NOT NULL
            CHECK (interaction_type IN ('meeting', 'call', 'email', 'message', 'event')),
        timestamp TIMESTAMP NOT NULL,
        notes TEXT,
        sentiment TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_interaction_contact_timestamp
        ON interaction_log(contact_id, timestamp DESC);
    CREATE INDEX IF NOT EXISTS idx_interaction_timestamp ON interaction_log(timestamp DESC);

    CREATE TABLE IF NOT EXISTS sync_runs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        service TEXT NOT NULL,
        trigger TEXT NOT NULL DEFAULT 'manual',
        status TEXT NOT NULL,
        started_at TIMESTAMP NOT NULL,
        completed_at TIMESTAMP,
        duration_seconds REAL,
        fetched INTEGER DEFAULT 0,
        imported INTEGER DEFAULT 0,
        skipped INTEGER DEFAULT 0,
        contacts_created INTEGER DEFAULT 0,
        record_errors INTEGER DEFAULT 0,
        error_message TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_sync_runs_service ON sync_runs(service, started_at DESC);
"""


class CRMDatabase:
    """
    Single-connection SQLite access for the sync engine.

    Usage:
        db = CRMDatabase()
        with db.transaction() as conn:
            conn.execute(...)
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize the database.

        Args:
            db_path: Path to SQLite database (default from settings).
                     ":memory:" is accepted for tests.
        """
        self.db_path = db_path or get_crm_db_path()
        self._lock = threading.RLock()
        self._depth = 0
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        if self.db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode = WAL")
        self._init_db()

    def _init_db(self):
        """Create tables if they don't exist and apply column migrations."""
        with self._lock:
            self._conn.executescript(SCHEMA)

            # Migration: interaction metadata (calendar/gmail provenance)
            cursor = self._conn.execute("PRAGMA table_info(interaction_log)")
            columns = {row[1] for row in cursor.fetchall()}
            if "metadata" not in columns:
                self._conn.execute("ALTER TABLE interaction_log ADD COLUMN metadata TEXT")
                logger.info("Added metadata column to interaction_log table")

            self._conn.commit()
        logger.debug(f"Initialized CRM database at {self.db_path}")

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block of statements atomically.

        Nested calls join the outermost transaction; only the outermost
        level commits or rolls back.
        """
        with self._lock:
            self._depth += 1
            try:
                yield self._conn
            except BaseException:
                self._depth -= 1
                if self._depth == 0:
                    self._conn.rollback()
                raise
            else:
                self._depth -= 1
                if self._depth == 0:
                    self._conn.commit()

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Execute one write statement in its own (or the enclosing) transaction."""
        with self.transaction() as conn:
            return conn.execute(sql, params)

    def query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        """Run a read query and return all rows."""
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def query_one(self, sql: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        """Run a read query and return the first row, if any."""
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def close(self):
        with self._lock:
            self._conn.close()


# Shared instance for the API process
_database: Optional[CRMDatabase] = None


def get_crm_database() -> CRMDatabase:
    """Get or create the API process's database handle."""
    global _database
    if _database is None:
        _database = CRMDatabase()
    return _database
