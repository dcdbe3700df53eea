"""
Shared importer plumbing.

SyncContext bundles everything an importer needs (stores, settings, clock)
so tests can inject fakes. BaseImporter owns the status lifecycle: a
service is `syncing` only while its run is in progress and always ends
`idle` (cursor stored) or `error`. An authentication failure leaves the
state as it was before the run.
"""
import logging
import sqlite3
import time
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Iterator, Optional

from config.settings import Settings, settings as default_settings
from crmsync.services.crm_db import CRMDatabase
from crmsync.services.entity_resolver import EntityResolver
from crmsync.services.google_auth import AuthenticationError
from crmsync.services.interaction_store import InteractionStore
from crmsync.services.resilience import RetryConfig
from crmsync.services.sync_state import AlreadyLoggedError, SyncLogStore, SyncStateStore, SyncStatus
from crmsync.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

# Local failures that abandon one record but not the run
RECORD_ERRORS = (sqlite3.Error, ValueError, KeyError)

SKIP_ALREADY_IMPORTED = "already imported"


class FetchMode(str, Enum):
    INITIAL_WINDOW = "initial_window"
    INCREMENTAL = "incremental"
    RECENT_WINDOW = "recent_window"
    FULL_SCAN = "full_scan"


class SyncFailedError(Exception):
    """A provider call failed after retries. Status is already set to error."""

    def __init__(self, service: str, message: str):
        self.service = service
        self.message = message
        super().__init__(f"{service} sync failed: {message}")


@dataclass
class SyncContext:
    """Dependencies shared by all importers."""
    db: CRMDatabase
    state: SyncStateStore
    log: SyncLogStore
    resolver: EntityResolver
    interactions: InteractionStore
    settings: Settings = field(default_factory=lambda: default_settings)
    clock: Callable[[], datetime] = utc_now
    sleep: Callable[[float], None] = time.sleep

    @classmethod
    def create(
        cls,
        db: CRMDatabase,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "SyncContext":
        return cls(
            db=db,
            state=SyncStateStore(db, clock=clock),
            log=SyncLogStore(db, clock=clock),
            resolver=EntityResolver.for_database(db, clock=clock),
            interactions=InteractionStore(db, clock=clock),
            settings=settings or default_settings,
            clock=clock,
            sleep=sleep,
        )

    @property
    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.settings.api_max_attempts,
            base_delay=self.settings.api_base_delay,
            max_delay=self.settings.api_max_delay,
        )


@dataclass
class ImportResult:
    """Counts for one importer run."""
    service: str
    mode: Optional[FetchMode] = None
    fetched: int = 0
    imported: int = 0
    contacts_created: int = 0
    record_errors: int = 0
    skipped: Counter = field(default_factory=Counter)
    fell_back: bool = False
    cursor: Optional[str] = None

    @property
    def total_skipped(self) -> int:
        return sum(self.skipped.values())

    def skip(self, reason: str):
        self.skipped[reason] += 1

    def summary(self) -> str:
        parts = [f"{self.imported} imported", f"{self.fetched} fetched"]
        if self.contacts_created:
            parts.append(f"{self.contacts_created} new contacts")
        if self.skipped:
            reasons = ", ".join(f"{reason}: {n}" for reason, n in sorted(self.skipped.items()))
            parts.append(f"skipped ({reasons})")
        if self.record_errors:
            parts.append(f"{self.record_errors} record errors")
        if self.fell_back:
            parts.append("cursor expired, used recent window")
        return ", ".join(parts)

    def to_dict(self) -> dict:
        return {
            "service": self.service,
            "mode": self.mode.value if self.mode else None,
            "fetched": self.fetched,
            "imported": self.imported,
            "contacts_created": self.contacts_created,
            "record_errors": self.record_errors,
            "skipped": dict(self.skipped),
            "fell_back": self.fell_back,
        }


class BaseImporter:
    """
    Template for provider importers.

    Subclasses set `service` and implement `_import(result, initial)`, which
    fills in `result.cursor` on success and raises SyncFailedError on
    provider failure.
    """

    service: str = ""

    def __init__(self, context: SyncContext):
        self.context = context
        self.state = context.state
        self.log = context.log
        self.resolver = context.resolver
        self.interactions = context.interactions
        self.settings = context.settings

    def run(self, initial: bool = False) -> ImportResult:
        """
        Run one import for this service.

        Raises:
            SyncFailedError: Provider failure after retries (status set to error)
            AuthenticationError: Credentials expired or revoked mid-run
                (sync state left as it was before the run)
        """
        result = ImportResult(service=self.service)
        previous = self.state.get(self.service)
        self.state.set_status(self.service, SyncStatus.SYNCING)
        logger.info(f"Starting {self.service} sync{' (initial)' if initial else ''}")

        try:
            self._import(result, initial)
        except SyncFailedError as e:
            self.state.set_status(self.service, SyncStatus.ERROR, e.message)
            logger.error(f"{self.service} sync failed: {e.message}")
            raise
        except AuthenticationError as e:
            self.state.restore(self.service, previous)
            logger.error(f"{self.service} sync stopped: {e}")
            raise
        except BaseException as e:
            # Includes KeyboardInterrupt: never leave a service stuck in `syncing`
            message = str(e) or type(e).__name__
            self.state.set_status(self.service, SyncStatus.ERROR, message)
            raise

        if result.cursor is not None:
            self.state.set_cursor(self.service, result.cursor)
        else:
            self.state.set_status(self.service, SyncStatus.IDLE)

        logger.info(f"{self.service} sync complete: {result.summary()}")
        return result

    def _import(self, result: ImportResult, initial: bool):
        raise NotImplementedError

    def _fail(self, message: str):
        raise SyncFailedError(self.service, message)

    @contextmanager
    def _record(self, result: ImportResult, source_id: str) -> Iterator[None]:
        """
        Scope one provider record's writes in a transaction.

        A local store failure rolls back that record only and is counted;
        processing continues with the next record. A record another run
        logged in the meantime is rolled back and counted as already imported.
        """
        try:
            with self.context.db.transaction():
                yield
        except AlreadyLoggedError:
            result.skip(SKIP_ALREADY_IMPORTED)
            logger.debug(f"{self.service} record {source_id} was imported by another run")
        except RECORD_ERRORS as e:
            result.record_errors += 1
            logger.warning(f"Failed to import {self.service} record {source_id}: {e}")
