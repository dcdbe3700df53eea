"""
Google People (Contacts) client for CRM sync.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from crmsync.services.provider_fetch import FetchResult, Page, fetch
from crmsync.services.resilience import RetryConfig

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000
PERSON_FIELDS = "names,emailAddresses,phoneNumbers,organizations"


@dataclass
class GoogleContact:
    """One connection from the user's Google Contacts."""
    resource_name: str
    name: str = ""
    email: str = ""
    phone: str = ""
    organization: str = ""


def _primary_value(entries: Optional[list], key: str = "value") -> str:
    """Value of the entry flagged primary, else the first entry."""
    entries = entries or []
    for entry in entries:
        if entry.get("metadata", {}).get("primary"):
            return (entry.get(key) or "").strip()
    if entries:
        return (entries[0].get(key) or "").strip()
    return ""


def parse_person(person: dict) -> GoogleContact:
    return GoogleContact(
        resource_name=person.get("resourceName", ""),
        name=_primary_value(person.get("names"), key="displayName"),
        email=_primary_value(person.get("emailAddresses")).lower(),
        phone=_primary_value(person.get("phoneNumbers")),
        organization=_primary_value(person.get("organizations"), key="name"),
    )


class PeopleClient:
    """Thin wrapper over people.connections.list."""

    def __init__(
        self,
        service: Any,
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.service = service
        self.retry_config = retry_config
        self.sleep = sleep

    def list_connections(self, page_token: Optional[str] = None) -> FetchResult:
        params = {
            "resourceName": "people/me",
            "pageSize": PAGE_SIZE,
            "personFields": PERSON_FIELDS,
        }
        if page_token:
            params["pageToken"] = page_token

        return fetch(
            lambda: self.service.people().connections().list(**params).execute(),
            lambda resp: Page(
                items=[parse_person(p) for p in resp.get("connections", [])],
                next_page_token=resp.get("nextPageToken"),
            ),
            description="people connections.list",
            retry_config=self.retry_config,
            sleep=self.sleep,
        )
