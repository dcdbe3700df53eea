"""
Gmail noise and signal filters.

Noise exclusions run first and always win, so a starred newsletter or a
starred 20-person thread is still skipped. Surviving messages must then
show two-way engagement (a reply in either direction) or be starred.
"""
from typing import Optional

from config.sync_patterns import (
    AUTO_GENERATED_SUBJECT_PREFIXES,
    AUTOMATED_SENDER_PATTERNS,
    CALENDAR_CONTENT_TYPE,
    CALENDAR_INVITE_SUBJECT_PREFIXES,
    MIN_SUBJECT_LENGTH,
)
from crmsync.services.gmail import EmailMessage, ThreadMessage, count_recipients

SKIP_AUTOMATED = "automated sender"
SKIP_GROUP = "group email"
SKIP_CALENDAR_INVITE = "calendar invite"
SKIP_AUTO_GENERATED = "auto-generated subject"
SKIP_LOW_SIGNAL = "low signal"


def is_automated_sender(address: str) -> bool:
    """Case-insensitive pattern match on the whole address. Empty counts as automated."""
    address = (address or "").strip().lower()
    if not address:
        return True
    return any(pattern in address for pattern in AUTOMATED_SENDER_PATTERNS)


def is_group_email(message: EmailMessage, threshold: int = 5) -> bool:
    return count_recipients(message.to, message.cc) >= threshold


def is_calendar_invite(message: EmailMessage) -> bool:
    if CALENDAR_CONTENT_TYPE in (message.content_type or "").lower():
        return True
    subject = (message.subject or "").strip().lower()
    return subject.startswith(CALENDAR_INVITE_SUBJECT_PREFIXES)


def is_auto_generated_subject(subject: str) -> bool:
    subject = (subject or "").strip().lower()
    if len(subject) < MIN_SUBJECT_LENGTH:
        return True
    return subject.startswith(AUTO_GENERATED_SUBJECT_PREFIXES)


def noise_reason(message: EmailMessage, group_threshold: int = 5) -> Optional[str]:
    """First noise exclusion a message hits, or None."""
    if is_automated_sender(message.sender):
        return SKIP_AUTOMATED
    if is_group_email(message, group_threshold):
        return SKIP_GROUP
    if is_calendar_invite(message):
        return SKIP_CALENDAR_INVITE
    if is_auto_generated_subject(message.subject):
        return SKIP_AUTO_GENERATED
    return None


def has_two_way_engagement(
    message: EmailMessage,
    thread: list[ThreadMessage],
    user_email: str,
) -> bool:
    """
    True if a later message in the thread answers this one.

    Inbound message: the user replied. Outbound message: someone else replied.
    """
    user_email = user_email.lower()
    sent_by_user = message.sender == user_email
    for other in thread:
        if other.message_id == message.message_id or other.internal_date <= message.internal_date:
            continue
        if sent_by_user and other.sender and other.sender != user_email:
            return True
        if not sent_by_user and other.sender == user_email:
            return True
    return False
