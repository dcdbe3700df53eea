"""
Gmail importer: turns high-signal email into interactions.

Mode selection mirrors the calendar importer, with Gmail's historyId as the
cursor. Only message metadata is read. The historyId captured at the start
of the run is stored at the end, so mail arriving mid-run is picked up next
time (the sync log makes the overlap harmless).

History runs see each message once. An inbound message that had no reply
yet when it arrived is judged again when the user's reply shows up in a
later history run.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional, Union

from crmsync.services.entity_resolver import company_name_from_domain, extract_domain
from crmsync.services.gmail import EmailMessage, GmailClient, GmailProfile, ThreadMessage
from crmsync.services.gmail_filters import SKIP_LOW_SIGNAL, has_two_way_engagement, noise_reason
from crmsync.services.importer_base import (
    SKIP_ALREADY_IMPORTED,
    BaseImporter,
    FetchMode,
    ImportResult,
    SyncContext,
)
from crmsync.services.interaction_store import InteractionLog, InteractionType
from crmsync.services.provider_fetch import CursorInvalid, FetchFailure, Page
from crmsync.services.sync_metadata import GmailMessageMetadata

logger = logging.getLogger(__name__)

SKIP_UNAVAILABLE = "message unavailable"
SKIP_SELF = "self email"


def window_query(since: datetime) -> str:
    """Gmail search for messages received after a point in time (epoch seconds)."""
    return f"after:{int(since.timestamp())}"


class GmailImporter(BaseImporter):
    service = "gmail"

    def __init__(self, context: SyncContext, client: GmailClient):
        super().__init__(context)
        self.client = client

    def _import(self, result: ImportResult, initial: bool):
        self._judged: set[str] = set()
        self._threads: dict[str, list[ThreadMessage]] = {}

        profile_page = self.client.get_profile()
        if not isinstance(profile_page, Page):
            self._fail(getattr(profile_page, "message", "could not read Gmail profile"))
        profile: GmailProfile = profile_page.data

        now = self.context.clock()
        state = self.state.get(self.service)
        fallback_since = now - timedelta(days=self.settings.gmail_fallback_days)

        if initial:
            result.mode = FetchMode.INITIAL_WINDOW
            outcome = self._run_window(
                result, profile, now - timedelta(days=self.settings.gmail_initial_days)
            )
        elif state and state.last_sync_token:
            result.mode = FetchMode.INCREMENTAL
            outcome = self._run_history(result, profile, state.last_sync_token)
            if isinstance(outcome, CursorInvalid):
                logger.warning(
                    f"Gmail historyId expired ({outcome.reason}); "
                    f"falling back to the last {self.settings.gmail_fallback_days} days"
                )
                self.state.clear_cursor(self.service)
                result.fell_back = True
                result.mode = FetchMode.RECENT_WINDOW
                outcome = self._run_window(result, profile, fallback_since)
        else:
            result.mode = FetchMode.RECENT_WINDOW
            outcome = self._run_window(result, profile, fallback_since)

        if isinstance(outcome, CursorInvalid):
            self._fail(f"history id rejected: {outcome.reason}")
        if isinstance(outcome, FetchFailure):
            self._fail(outcome.message)

        result.cursor = profile.history_id

    def _run_window(
        self, result: ImportResult, profile: GmailProfile, since: datetime
    ) -> Optional[Union[CursorInvalid, FetchFailure]]:
        query = window_query(since)
        page_token = None
        while True:
            page = self.client.list_messages(query, page_token=page_token)
            if not isinstance(page, Page):
                return page
            failure = self._process_ids(result, profile, page.items)
            if failure:
                return failure
            if page.is_last:
                return None
            page_token = page.next_page_token

    def _run_history(
        self, result: ImportResult, profile: GmailProfile, start_history_id: str
    ) -> Optional[Union[CursorInvalid, FetchFailure]]:
        page_token = None
        while True:
            page = self.client.list_history(start_history_id, page_token=page_token)
            if not isinstance(page, Page):
                return page
            failure = self._process_ids(result, profile, page.items, revisit_replied=True)
            if failure:
                return failure
            if page.is_last:
                return None
            page_token = page.next_page_token

    def _process_ids(
        self,
        result: ImportResult,
        profile: GmailProfile,
        message_ids: list[str],
        revisit_replied: bool = False,
    ) -> Optional[FetchFailure]:
        for message_id in message_ids:
            self._judged.add(message_id)
            result.fetched += 1
            if self.log.exists(self.service, message_id):
                result.skip(SKIP_ALREADY_IMPORTED)
                continue

            fetched = self.client.get_message_metadata(message_id)
            if isinstance(fetched, FetchFailure):
                return fetched
            if fetched.data is None:
                result.skip(SKIP_UNAVAILABLE)
                continue

            reason = self._classify(fetched.data, profile.email)
            if isinstance(reason, FetchFailure):
                return reason
            if reason:
                result.skip(reason)
            else:
                self._import_message(result, fetched.data, profile.email)

            if revisit_replied and fetched.data.sender == profile.email.lower():
                failure = self._revisit_replied(result, profile, fetched.data)
                if failure:
                    return failure
        return None

    def _revisit_replied(
        self, result: ImportResult, profile: GmailProfile, reply: EmailMessage
    ) -> Optional[FetchFailure]:
        """Judge earlier inbound messages in a thread the user has just replied in."""
        thread = self._thread(reply.thread_id)
        if isinstance(thread, FetchFailure):
            return thread
        user_email = profile.email.lower()
        earlier = [
            other.message_id
            for other in thread
            if other.internal_date < reply.internal_date
            and other.sender
            and other.sender != user_email
            and other.message_id not in self._judged
            and not self.log.exists(self.service, other.message_id)
        ]
        if not earlier:
            return None
        logger.debug(f"Revisiting {len(earlier)} message(s) answered in thread {reply.thread_id}")
        return self._process_ids(result, profile, earlier)

    def _thread(self, thread_id: str) -> Union[list[ThreadMessage], FetchFailure]:
        """Thread members, fetched once per run."""
        if thread_id not in self._threads:
            page = self.client.get_thread(thread_id)
            if isinstance(page, FetchFailure):
                return page
            self._threads[thread_id] = page.items
        return self._threads[thread_id]

    def _classify(
        self, message: EmailMessage, user_email: str
    ) -> Optional[Union[str, FetchFailure]]:
        """Skip reason, None for a high-signal message, or a thread fetch failure."""
        reason = noise_reason(message, self.settings.group_email_threshold)
        if reason:
            return reason
        if message.is_starred:
            return None

        thread = self._thread(message.thread_id)
        if isinstance(thread, FetchFailure):
            return thread
        if has_two_way_engagement(message, thread, user_email):
            return None
        return SKIP_LOW_SIGNAL

    def _counterpart(self, message: EmailMessage, user_email: str) -> tuple[str, str, str]:
        """(name, email, direction) of the other party."""
        if message.sender == user_email:
            recipients = message.recipients()
            if not recipients:
                return "", "", "sent"
            name, email, _ = recipients[0]
            return name, email.lower(), "sent"
        return message.sender_name, message.sender, "received"

    def _import_message(self, result: ImportResult, message: EmailMessage, user_email: str):
        name, email, direction = self._counterpart(message, user_email)
        if not email or email == user_email:
            result.skip(SKIP_SELF)
            return

        metadata = GmailMessageMetadata(
            subject=message.subject,
            thread_id=message.thread_id,
            direction=direction,
        )

        with self._record(result, message.message_id):
            domain = extract_domain(email)
            resolution = self.resolver.resolve_contact(
                name,
                email,
                company_name=company_name_from_domain(domain),
                company_domain=domain,
            )
            interaction = self.interactions.log_interaction(InteractionLog(
                contact_id=resolution.entity.id,
                interaction_type=InteractionType.EMAIL,
                timestamp=message.date,
                notes=message.subject,
                metadata=metadata,
            ))
            self.log.log(self.service, message.message_id, "interaction", interaction.id, metadata)
            result.imported += 1
            if resolution.created:
                result.contacts_created += 1
