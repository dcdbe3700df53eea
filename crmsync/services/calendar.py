"""
Google Calendar client for CRM sync.

Lists events on the primary calendar either incrementally (sync token)
or for a time window, returning tagged FetchResults.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from crmsync.services.provider_fetch import FetchResult, Page, fetch
from crmsync.services.resilience import RetryConfig
from crmsync.utils.datetime_utils import parse_rfc3339

logger = logging.getLogger(__name__)

# Events per page (API maximum is 2500; 250 keeps responses small)
PAGE_SIZE = 250

# HTTP 410 Gone: sync token expired or invalidated
CURSOR_INVALID_STATUSES = (410,)


@dataclass
class Attendee:
    email: str
    display_name: str = ""
    is_self: bool = False
    response_status: str = "needsAction"


@dataclass
class CalendarEvent:
    """Represents a calendar event."""
    event_id: str
    summary: str
    status: str = "confirmed"
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    is_all_day: bool = False
    location: str = ""
    attendees: list[Attendee] = field(default_factory=list)

    @property
    def duration_minutes(self) -> int:
        if not self.start_time or not self.end_time:
            return 0
        return int((self.end_time - self.start_time).total_seconds() // 60)

    def self_attendee(self) -> Optional[Attendee]:
        for attendee in self.attendees:
            if attendee.is_self:
                return attendee
        return None


def parse_attendees(raw: Optional[list]) -> list[Attendee]:
    attendees = []
    for item in raw or []:
        attendees.append(Attendee(
            email=(item.get("email") or "").strip().lower(),
            display_name=(item.get("displayName") or "").strip(),
            is_self=bool(item.get("self", False)),
            response_status=item.get("responseStatus", "needsAction"),
        ))
    return attendees


def parse_event(item: dict) -> CalendarEvent:
    """
    Parse a raw API event into CalendarEvent.

    All-day events carry start.date instead of start.dateTime; their
    start_time is left unset since they never become interactions.
    """
    start = item.get("start") or {}
    end = item.get("end") or {}
    is_all_day = "date" in start and "dateTime" not in start

    return CalendarEvent(
        event_id=item.get("id", ""),
        summary=item.get("summary", "") or "",
        status=item.get("status", "confirmed"),
        start_time=None if is_all_day else parse_rfc3339(start.get("dateTime")),
        end_time=None if is_all_day else parse_rfc3339(end.get("dateTime")),
        is_all_day=is_all_day,
        location=item.get("location", "") or "",
        attendees=parse_attendees(item.get("attendees")),
    )


class CalendarClient:
    """
    Thin wrapper over the Calendar v3 API.

    Usage:
        client = CalendarClient(build("calendar", "v3", http=authed_http))
        result = client.list_events(sync_token=token)
    """

    def __init__(
        self,
        service: Any,
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.service = service
        self.retry_config = retry_config
        self.sleep = sleep

    def get_user_email(self) -> FetchResult:
        """The caller's address (the primary calendar's id) as Page.data."""
        return fetch(
            lambda: self.service.calendars().get(calendarId="primary").execute(),
            lambda resp: Page(data=(resp.get("id") or "").lower()),
            description="calendar get primary",
            retry_config=self.retry_config,
            sleep=self.sleep,
        )

    def list_events(
        self,
        sync_token: Optional[str] = None,
        time_min: Optional[datetime] = None,
        page_token: Optional[str] = None,
    ) -> FetchResult:
        """
        List one page of events.

        Exactly one of sync_token or time_min selects the mode. orderBy is
        never sent since the API rejects it together with syncToken.
        """
        params = {
            "calendarId": "primary",
            "singleEvents": True,
            "maxResults": PAGE_SIZE,
        }
        if sync_token:
            params["syncToken"] = sync_token
        elif time_min is not None:
            params["timeMin"] = time_min.isoformat()
        if page_token:
            params["pageToken"] = page_token

        def to_page(resp: dict) -> Page:
            return Page(
                items=[parse_event(item) for item in resp.get("items", [])],
                next_page_token=resp.get("nextPageToken"),
                next_cursor=resp.get("nextSyncToken"),
            )

        return fetch(
            lambda: self.service.events().list(**params).execute(),
            to_page,
            description="calendar events.list",
            cursor_invalid_statuses=CURSOR_INVALID_STATUSES if sync_token else (),
            retry_config=self.retry_config,
            sleep=self.sleep,
        )
