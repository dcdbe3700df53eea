"""
Calendar importer: turns multi-person meetings into interactions.

Mode selection:
- initial run: time window over the last N months
- stored sync token: incremental
- no token: recent time window

An expired sync token (HTTP 410) is not a failure: the token is cleared and
the fetch restarts over the recent window, and the run still ends with a
fresh token.
"""
import logging
from datetime import timedelta
from typing import Optional, Union

from crmsync.services.calendar import CalendarClient, CalendarEvent
from crmsync.services.importer_base import (
    SKIP_ALREADY_IMPORTED,
    BaseImporter,
    FetchMode,
    ImportResult,
    SyncContext,
)
from crmsync.services.interaction_store import InteractionLog, InteractionType
from crmsync.services.provider_fetch import CursorInvalid, FetchFailure, Page
from crmsync.services.sync_metadata import CalendarEventMetadata
from crmsync.utils.datetime_utils import months_before

logger = logging.getLogger(__name__)

# Skip reasons, in the order the filters are applied
SKIP_NO_START = "no start time"
SKIP_ALL_DAY = "all-day event"
SKIP_CANCELLED = "cancelled"
SKIP_DECLINED = "declined"
SKIP_SOLO = "solo event"
SKIP_NO_OTHER_ATTENDEES = "no other attendees"


def skip_reason(event: CalendarEvent) -> Optional[str]:
    """
    First filter an event fails, or None if it is a meeting.

    Order: all-day, cancelled, declined by the caller, solo (<= 1 attendee).
    """
    if event.is_all_day:
        return SKIP_ALL_DAY
    if event.start_time is None:
        return SKIP_NO_START
    if event.status == "cancelled":
        return SKIP_CANCELLED
    me = event.self_attendee()
    if me is not None and me.response_status == "declined":
        return SKIP_DECLINED
    if len(event.attendees) <= 1:
        return SKIP_SOLO
    return None


class CalendarImporter(BaseImporter):
    service = "calendar"

    def __init__(self, context: SyncContext, client: CalendarClient):
        super().__init__(context)
        self.client = client

    def _import(self, result: ImportResult, initial: bool):
        profile = self.client.get_user_email()
        if not isinstance(profile, Page):
            self._fail(getattr(profile, "message", "could not read primary calendar"))
        user_email = profile.data or ""

        now = self.context.clock()
        state = self.state.get(self.service)
        fallback_start = now - timedelta(days=self.settings.calendar_fallback_days)

        if initial:
            result.mode = FetchMode.INITIAL_WINDOW
            outcome = self._page_through(
                result, user_email,
                time_min=months_before(now, self.settings.calendar_initial_months),
            )
        elif state and state.last_sync_token:
            result.mode = FetchMode.INCREMENTAL
            outcome = self._page_through(result, user_email, sync_token=state.last_sync_token)
        else:
            result.mode = FetchMode.RECENT_WINDOW
            outcome = self._page_through(result, user_email, time_min=fallback_start)

        if isinstance(outcome, CursorInvalid):
            logger.warning(
                f"Calendar sync token expired ({outcome.reason}); "
                f"falling back to the last {self.settings.calendar_fallback_days} days"
            )
            self.state.clear_cursor(self.service)
            result.fell_back = True
            result.mode = FetchMode.RECENT_WINDOW
            outcome = self._page_through(result, user_email, time_min=fallback_start)

        if isinstance(outcome, CursorInvalid):
            self._fail(f"sync token rejected after fallback: {outcome.reason}")
        if isinstance(outcome, FetchFailure):
            self._fail(outcome.message)

        result.cursor = outcome

    def _page_through(
        self,
        result: ImportResult,
        user_email: str,
        sync_token: Optional[str] = None,
        time_min=None,
    ) -> Union[Optional[str], CursorInvalid, FetchFailure]:
        """Process every page. Returns the final sync token or the failing tag."""
        page_token = None
        next_cursor = None
        while True:
            page = self.client.list_events(
                sync_token=sync_token, time_min=time_min, page_token=page_token
            )
            if not isinstance(page, Page):
                return page

            for event in page.items:
                result.fetched += 1
                self._import_event(result, event, user_email)

            next_cursor = page.next_cursor or next_cursor
            if page.is_last:
                return next_cursor
            page_token = page.next_page_token

    def _import_event(self, result: ImportResult, event: CalendarEvent, user_email: str):
        reason = skip_reason(event)
        if reason:
            result.skip(reason)
            return

        if self.log.exists(self.service, event.event_id):
            result.skip(SKIP_ALREADY_IMPORTED)
            return

        others = [
            a for a in event.attendees
            if a.email and not a.is_self and a.email != user_email
        ]
        if not others:
            result.skip(SKIP_NO_OTHER_ATTENDEES)
            return

        metadata = CalendarEventMetadata(
            event_summary=event.summary,
            attendee_count=len(event.attendees),
            location=event.location,
            duration_minutes=event.duration_minutes,
        )

        with self._record(result, event.event_id):
            first_interaction = None
            created = 0
            for attendee in others:
                resolution = self.resolver.resolve_contact(attendee.display_name, attendee.email)
                if resolution.created:
                    created += 1
                interaction = self.interactions.log_interaction(InteractionLog(
                    contact_id=resolution.entity.id,
                    interaction_type=InteractionType.MEETING,
                    timestamp=event.start_time,
                    notes=event.summary,
                    metadata=metadata,
                ))
                first_interaction = first_interaction or interaction

            self.log.log(
                self.service,
                event.event_id,
                "interaction",
                first_interaction.id,
                metadata,
            )
            result.imported += 1
            result.contacts_created += created
