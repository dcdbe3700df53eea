"""
In-memory stand-ins for the Google provider clients.

Each fake returns the same tagged FetchResults as the real clients, from
queues the test fills in, and records the calls it received.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from crmsync.services.calendar import Attendee, CalendarEvent
from crmsync.services.gmail import EmailMessage, GmailProfile, ThreadMessage
from crmsync.services.people import GoogleContact
from crmsync.services.provider_fetch import Page

USER_EMAIL = "me@example.com"
BASE_TIME = datetime(2024, 6, 1, 15, 0, tzinfo=timezone.utc)


def make_event(
    event_id: str,
    others: tuple = ("alice@acme.com",),
    summary: str = "Project sync",
    status: str = "confirmed",
    all_day: bool = False,
    my_response: str = "accepted",
    start: Optional[datetime] = None,
) -> CalendarEvent:
    """A calendar event with the user plus the given other attendees."""
    start = start or BASE_TIME - timedelta(days=1)
    attendees = [Attendee(email=USER_EMAIL, is_self=True, response_status=my_response)]
    for email in others:
        name = email.split("@")[0].title()
        attendees.append(Attendee(email=email, display_name=name, response_status="accepted"))
    return CalendarEvent(
        event_id=event_id,
        summary=summary,
        status=status,
        start_time=None if all_day else start,
        end_time=None if all_day else start + timedelta(minutes=30),
        is_all_day=all_day,
        location="Room 1",
        attendees=attendees,
    )


def make_message(
    message_id: str,
    sender: str = "alice@acme.com",
    sender_name: str = "Alice Smith",
    to: str = USER_EMAIL,
    cc: str = "",
    subject: str = "Quarterly plan",
    labels: tuple = (),
    thread_id: Optional[str] = None,
    internal_date: int = 1_000,
    content_type: str = "text/plain",
    date: Optional[datetime] = None,
) -> EmailMessage:
    return EmailMessage(
        message_id=message_id,
        thread_id=thread_id or f"thread-{message_id}",
        subject=subject,
        sender=sender,
        sender_name=sender_name,
        date=date or BASE_TIME - timedelta(days=2),
        to=to,
        cc=cc,
        content_type=content_type,
        labels=list(labels),
        internal_date=internal_date,
    )


class FakeCalendarClient:
    """Serves queued list_events responses."""

    def __init__(self, user_email: str = USER_EMAIL):
        self.user_email = user_email
        self.responses = []
        self.calls = []
        self.profile_result = None

    def queue(self, *results):
        self.responses.extend(results)
        return self

    def get_user_email(self):
        return self.profile_result or Page(data=self.user_email)

    def list_events(self, sync_token=None, time_min=None, page_token=None):
        self.calls.append({"sync_token": sync_token, "time_min": time_min, "page_token": page_token})
        if self.responses:
            return self.responses.pop(0)
        return Page(items=[], next_cursor="sync-token-empty")


class FakeGmailClient:
    """Serves messages and threads from dicts, list responses from queues."""

    def __init__(self, user_email: str = USER_EMAIL, history_id: str = "5000"):
        self.profile = GmailProfile(email=user_email, history_id=history_id)
        self.messages: dict[str, EmailMessage] = {}
        self.threads: dict[str, list[ThreadMessage]] = {}
        self.list_responses = []
        self.history_responses = []
        self.metadata_failures: dict = {}
        self.calls = []

    def add(self, message: EmailMessage, thread: Optional[list[ThreadMessage]] = None):
        self.messages[message.message_id] = message
        if thread is not None:
            self.threads[message.thread_id] = thread
        return message

    def get_profile(self):
        return Page(data=self.profile)

    def list_messages(self, query, page_token=None):
        self.calls.append(("list_messages", query, page_token))
        if self.list_responses:
            return self.list_responses.pop(0)
        return Page(items=list(self.messages))

    def list_history(self, start_history_id, page_token=None):
        self.calls.append(("list_history", start_history_id, page_token))
        if self.history_responses:
            return self.history_responses.pop(0)
        return Page(items=[], next_cursor=self.profile.history_id)

    def get_message_metadata(self, message_id):
        self.calls.append(("get_message_metadata", message_id))
        if message_id in self.metadata_failures:
            return self.metadata_failures[message_id]
        return Page(data=self.messages.get(message_id))

    def get_thread(self, thread_id):
        self.calls.append(("get_thread", thread_id))
        return Page(items=self.threads.get(thread_id, []))


class FakePeopleClient:
    """Serves queued connection pages."""

    def __init__(self, *pages):
        self.pages = list(pages)
        self.calls = []

    def list_connections(self, page_token=None):
        self.calls.append(page_token)
        if self.pages:
            return self.pages.pop(0)
        return Page(items=[])


def make_person(resource_name: str, name: str = "", email: str = "", organization: str = "") -> GoogleContact:
    return GoogleContact(
        resource_name=resource_name,
        name=name,
        email=email,
        organization=organization,
    )
