"""
One-shot sync orchestration.

Builds the importer for a service, runs it, and records the run in the
sync history. Shared by the CLI, the daemon and the API.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from config.settings import Settings, settings as default_settings
from crmsync.services.calendar import CalendarClient
from crmsync.services.calendar_importer import CalendarImporter
from crmsync.services.contacts_importer import ContactsImporter
from crmsync.services.crm_db import CRMDatabase
from crmsync.services.gmail import GmailClient
from crmsync.services.gmail_importer import GmailImporter
from crmsync.services.google_auth import build_google_service, get_google_auth
from crmsync.services.importer_base import BaseImporter, ImportResult, SyncContext
from crmsync.services.people import PeopleClient
from crmsync.services.sync_runs import SyncRunStore
from crmsync.services.sync_state import SERVICES
from crmsync.utils.db_paths import get_crm_db_path

logger = logging.getLogger(__name__)


@dataclass
class GoogleClients:
    """Typed provider clients, one per service."""
    people: PeopleClient
    calendar: CalendarClient
    gmail: GmailClient


@dataclass
class ServiceOutcome:
    service: str
    result: Optional[ImportResult] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class SyncRunner:
    """
    Runs importers by service name.

    Usage:
        runner = build_sync_runner()
        runner.run_service("calendar")
        runner.run_all()
    """

    def __init__(
        self,
        context: SyncContext,
        clients: GoogleClients,
        runs: Optional[SyncRunStore] = None,
    ):
        self.context = context
        self.clients = clients
        self.runs = runs or SyncRunStore(context.db, clock=context.clock)

    def importer_for(self, service: str) -> BaseImporter:
        if service == "contacts":
            return ContactsImporter(self.context, self.clients.people)
        if service == "calendar":
            return CalendarImporter(self.context, self.clients.calendar)
        if service == "gmail":
            return GmailImporter(self.context, self.clients.gmail)
        raise ValueError(f"Unknown service '{service}' (expected one of {', '.join(SERVICES)})")

    def run_service(
        self,
        service: str,
        initial: bool = False,
        trigger: str = "manual",
    ) -> ImportResult:
        """
        Run one importer and record it in the sync history.

        Raises:
            SyncFailedError: Provider failure after retries
        """
        importer = self.importer_for(service)
        run_id = self.runs.record_start(service, trigger)
        try:
            result = importer.run(initial=initial)
        except BaseException as e:
            self.runs.record_complete(run_id, error_message=str(e) or type(e).__name__)
            raise
        self.runs.record_complete(run_id, result)
        return result

    def run_all(self, initial: bool = False, trigger: str = "manual") -> dict[str, ServiceOutcome]:
        """Run every service in order; one failure doesn't stop the rest."""
        outcomes = {}
        for service in SERVICES:
            try:
                result = self.run_service(service, initial=initial, trigger=trigger)
                outcomes[service] = ServiceOutcome(service, result=result)
            except Exception as e:
                logger.error(f"{service} sync failed: {e}")
                outcomes[service] = ServiceOutcome(service, error=str(e))
        return outcomes


def build_google_clients(credentials, context: SyncContext) -> GoogleClients:
    timeout = context.settings.api_timeout
    retry = context.retry_config
    return GoogleClients(
        people=PeopleClient(
            build_google_service("people", "v1", credentials, timeout),
            retry_config=retry, sleep=context.sleep,
        ),
        calendar=CalendarClient(
            build_google_service("calendar", "v3", credentials, timeout),
            retry_config=retry, sleep=context.sleep,
        ),
        gmail=GmailClient(
            build_google_service("gmail", "v1", credentials, timeout),
            retry_config=retry, sleep=context.sleep,
        ),
    )


def build_sync_runner(
    cfg: Optional[Settings] = None,
    db: Optional[CRMDatabase] = None,
) -> SyncRunner:
    """
    Wire up a runner from settings and the stored OAuth token.

    Raises:
        AuthenticationError: No usable token (run `crmsync sync init`)
    """
    cfg = cfg or default_settings
    db = db or CRMDatabase(get_crm_db_path(cfg))
    credentials = get_google_auth(cfg).load_credentials()
    context = SyncContext.create(db, settings=cfg)
    return SyncRunner(context, build_google_clients(credentials, context))
