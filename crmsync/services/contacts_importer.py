"""
Contacts importer: seeds the CRM from Google Contacts.

A full scan every run (no provider cursor). Each connection is imported at
most once, keyed by its People API resourceName; contacts already in the
CRM are matched, never modified.
"""
import logging

from crmsync.services.importer_base import (
    SKIP_ALREADY_IMPORTED,
    BaseImporter,
    FetchMode,
    ImportResult,
    SyncContext,
)
from crmsync.services.people import GoogleContact, PeopleClient
from crmsync.services.provider_fetch import Page
from crmsync.services.sync_metadata import ContactImportMetadata

logger = logging.getLogger(__name__)

SKIP_INCOMPLETE = "missing name or email"

# Stored as the cursor to mark a completed full scan
FULL_SCAN_CURSOR = ""


class ContactsImporter(BaseImporter):
    service = "contacts"

    def __init__(self, context: SyncContext, client: PeopleClient):
        super().__init__(context)
        self.client = client

    def _import(self, result: ImportResult, initial: bool):
        result.mode = FetchMode.FULL_SCAN
        page_token = None
        while True:
            page = self.client.list_connections(page_token=page_token)
            if not isinstance(page, Page):
                self._fail(page.message)

            for person in page.items:
                result.fetched += 1
                self._import_person(result, person)

            if page.is_last:
                break
            page_token = page.next_page_token

        result.cursor = FULL_SCAN_CURSOR

    def _import_person(self, result: ImportResult, person: GoogleContact):
        if not person.name or not person.email:
            result.skip(SKIP_INCOMPLETE)
            return
        if self.log.exists(self.service, person.resource_name):
            result.skip(SKIP_ALREADY_IMPORTED)
            return

        with self._record(result, person.resource_name):
            resolution = self.resolver.resolve_contact(
                person.name,
                person.email,
                company_name=person.organization or None,
                phone=person.phone or None,
            )
            self.log.log(
                self.service,
                person.resource_name,
                "contact",
                resolution.entity.id,
                ContactImportMetadata(resource_name=person.resource_name),
            )
            result.imported += 1
            if resolution.created:
                result.contacts_created += 1
