"""
Gmail client for CRM sync.

Reads message metadata only (headers and labels). Bodies are never
requested: every messages.get / threads.get call uses format="metadata"
with an explicit header allow-list.
"""
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import getaddresses
from typing import Any, Callable, Optional

from crmsync.services.provider_fetch import FetchResult, Page, fetch
from crmsync.services.resilience import RetryConfig
from crmsync.utils.datetime_utils import parse_email_date

logger = logging.getLogger(__name__)

# Message ids per list page
PAGE_SIZE = 500

# Headers read for each message; nothing else is fetched
METADATA_HEADERS = ["From", "To", "Cc", "Subject", "Date", "Content-Type"]

# Gmail answers 404 when startHistoryId is older than its retention window
HISTORY_CURSOR_INVALID_STATUSES = (404,)

STARRED_LABEL = "STARRED"


@dataclass
class EmailMessage:
    """Represents an email message (metadata only)."""
    message_id: str
    thread_id: str
    subject: str
    sender: str
    sender_name: str
    date: datetime
    to: str = ""
    cc: str = ""
    content_type: str = ""
    labels: list[str] = field(default_factory=list)
    internal_date: int = 0  # epoch millis, used for ordering within a thread

    @property
    def is_starred(self) -> bool:
        return STARRED_LABEL in self.labels

    def recipients(self) -> list[tuple[str, str, str]]:
        """All To + Cc recipients as (name, email, domain)."""
        return parse_address_list(self.to) + parse_address_list(self.cc)


@dataclass
class ThreadMessage:
    """A message within a thread: who sent it and when."""
    message_id: str
    sender: str
    internal_date: int


@dataclass
class GmailProfile:
    email: str
    history_id: str


def extract_email_address(header: str) -> tuple[str, str, str]:
    """
    Parse an address header into (name, email, domain).

    Handles "Name <email>", "\"Quoted, Name\" <email>" and bare addresses.
    The domain is lowercased; malformed addresses (no or multiple @) give
    an empty domain.
    """
    header = (header or "").strip()
    if not header:
        return "", "", ""

    # Pattern: "Name <email@example.com>" or just "email@example.com"
    match = re.match(r'^"?([^"<]*)"?\s*<\s*([^>]+?)\s*>$', header)
    if match:
        name, email = match.group(1).strip(), match.group(2).strip()
    else:
        name, email = "", header

    domain = ""
    if email.count("@") == 1:
        domain = email.split("@", 1)[1].lower()
    return name, email, domain


def parse_address_list(header: str) -> list[tuple[str, str, str]]:
    """Parse a To/Cc header into (name, email, domain) tuples, skipping blanks."""
    if not header or not header.strip():
        return []
    results = []
    for name, email in getaddresses([header]):
        email = email.strip()
        if not email:
            continue
        domain = email.split("@", 1)[1].lower() if email.count("@") == 1 else ""
        results.append((name.strip(), email, domain))
    return results


def count_recipients(to: str, cc: str) -> int:
    return len(parse_address_list(to)) + len(parse_address_list(cc))


def parse_headers(payload: dict) -> dict[str, str]:
    """Header list -> dict keyed by header name (as sent; first value wins)."""
    headers = {}
    for header in (payload or {}).get("headers", []):
        name = header.get("name", "")
        if name and name not in headers:
            headers[name] = header.get("value", "")
    return headers


def _header(headers: dict, name: str) -> str:
    for key, value in headers.items():
        if key.lower() == name.lower():
            return value
    return ""


def parse_message(msg: dict) -> EmailMessage:
    """
    Build an EmailMessage from a metadata-format API response.

    Falls back to internalDate when the Date header is missing or garbled.
    """
    headers = parse_headers(msg.get("payload", {}))
    sender_name, sender_email, _ = extract_email_address(_header(headers, "From"))
    internal_date = int(msg.get("internalDate", 0) or 0)

    date = parse_email_date(_header(headers, "Date"))
    if date is None:
        date = datetime.fromtimestamp(internal_date / 1000, tz=timezone.utc)

    return EmailMessage(
        message_id=msg.get("id", ""),
        thread_id=msg.get("threadId", ""),
        subject=_header(headers, "Subject"),
        sender=sender_email.lower(),
        sender_name=sender_name,
        date=date,
        to=_header(headers, "To"),
        cc=_header(headers, "Cc"),
        content_type=_header(headers, "Content-Type"),
        labels=list(msg.get("labelIds", [])),
        internal_date=internal_date,
    )


class GmailClient:
    """
    Gmail API wrapper for incremental metadata sync.

    Includes light rate limiting between calls to stay under quota.
    """

    def __init__(
        self,
        service: Any,
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
        rate_limit_delay: float = 0.05,
    ):
        self.service = service
        self.retry_config = retry_config
        self.sleep = sleep
        self.rate_limit_delay = rate_limit_delay
        self._last_call_time = 0.0

    def _rate_limit(self):
        """Apply rate limiting between API calls."""
        now = time.monotonic()
        elapsed = now - self._last_call_time
        if elapsed < self.rate_limit_delay:
            self.sleep(self.rate_limit_delay - elapsed)
        self._last_call_time = time.monotonic()

    def _fetch(self, request, to_page, description, **kwargs) -> FetchResult:
        def call():
            self._rate_limit()
            return request().execute()

        return fetch(
            call,
            to_page,
            description=description,
            retry_config=self.retry_config,
            sleep=self.sleep,
            **kwargs,
        )

    def get_profile(self) -> FetchResult:
        """Caller's address and current historyId as Page.data (GmailProfile)."""
        return self._fetch(
            lambda: self.service.users().getProfile(userId="me"),
            lambda resp: Page(data=GmailProfile(
                email=(resp.get("emailAddress") or "").lower(),
                history_id=str(resp.get("historyId", "")),
            )),
            description="gmail getProfile",
        )

    def list_messages(self, query: str, page_token: Optional[str] = None) -> FetchResult:
        """One page of message ids matching a search query."""
        params = {"userId": "me", "q": query, "maxResults": PAGE_SIZE}
        if page_token:
            params["pageToken"] = page_token

        return self._fetch(
            lambda: self.service.users().messages().list(**params),
            lambda resp: Page(
                items=[m["id"] for m in resp.get("messages", [])],
                next_page_token=resp.get("nextPageToken"),
            ),
            description="gmail messages.list",
        )

    def list_history(self, start_history_id: str, page_token: Optional[str] = None) -> FetchResult:
        """
        One page of message ids added or relabeled since start_history_id.

        labelAdded is included so a message starred after arrival is seen.
        """
        params = {
            "userId": "me",
            "startHistoryId": start_history_id,
            "historyTypes": ["messageAdded", "labelAdded"],
            "maxResults": PAGE_SIZE,
        }
        if page_token:
            params["pageToken"] = page_token

        def to_page(resp: dict) -> Page:
            ids = []
            for record in resp.get("history", []):
                for key in ("messagesAdded", "labelsAdded"):
                    for change in record.get(key, []):
                        message_id = change.get("message", {}).get("id")
                        if message_id and message_id not in ids:
                            ids.append(message_id)
            return Page(
                items=ids,
                next_page_token=resp.get("nextPageToken"),
                next_cursor=str(resp["historyId"]) if resp.get("historyId") else None,
            )

        return self._fetch(
            lambda: self.service.users().history().list(**params),
            to_page,
            description="gmail history.list",
            cursor_invalid_statuses=HISTORY_CURSOR_INVALID_STATUSES,
        )

    def get_message_metadata(self, message_id: str) -> FetchResult:
        """
        Headers and labels for one message as Page.data.

        A deleted message (404) yields a Page with data=None.
        """
        return self._fetch(
            lambda: self.service.users().messages().get(
                userId="me",
                id=message_id,
                format="metadata",
                metadataHeaders=METADATA_HEADERS,
            ),
            lambda resp: Page(data=parse_message(resp)),
            description=f"gmail messages.get {message_id}",
            empty_statuses=(404,),
        )

    def get_thread(self, thread_id: str) -> FetchResult:
        """Senders and times of every message in a thread, as Page.items."""
        def to_page(resp: dict) -> Page:
            items = []
            for msg in resp.get("messages", []):
                headers = parse_headers(msg.get("payload", {}))
                _, sender, _ = extract_email_address(_header(headers, "From"))
                items.append(ThreadMessage(
                    message_id=msg.get("id", ""),
                    sender=sender.lower(),
                    internal_date=int(msg.get("internalDate", 0) or 0),
                ))
            return Page(items=items)

        return self._fetch(
            lambda: self.service.users().threads().get(
                userId="me",
                id=thread_id,
                format="metadata",
                metadataHeaders=["From"],
            ),
            to_page,
            description=f"gmail threads.get {thread_id}",
            empty_statuses=(404,),
        )
