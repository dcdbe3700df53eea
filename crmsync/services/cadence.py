"""
Follow-up cadence scoring.

Pure functions: given a contact's cadence settings and the time of their
last interaction, how overdue are they and when is the next follow-up due.
"""
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from crmsync.utils.datetime_utils import make_aware, utc_now


class RelationshipStrength(str, Enum):
    WEAK = "weak"
    MEDIUM = "medium"
    STRONG = "strong"


# Stronger relationships become urgent faster once overdue
STRENGTH_MULTIPLIERS = {
    RelationshipStrength.WEAK: 1.0,
    RelationshipStrength.MEDIUM: 1.5,
    RelationshipStrength.STRONG: 2.0,
}

DEFAULT_CADENCE_DAYS = 30
DEFAULT_STRENGTH = RelationshipStrength.MEDIUM


class CadenceError(ValueError):
    """Invalid cadence days or relationship strength."""


@dataclass
class ContactCadence:
    contact_id: str
    cadence_days: int = DEFAULT_CADENCE_DAYS
    relationship_strength: RelationshipStrength = DEFAULT_STRENGTH
    priority_score: float = 0.0
    last_interaction_date: Optional[datetime] = None
    next_followup_date: Optional[datetime] = None


def parse_strength(value) -> RelationshipStrength:
    try:
        return RelationshipStrength(str(value).lower())
    except ValueError:
        raise CadenceError(
            f"Invalid relationship strength '{value}' (expected weak, medium or strong)"
        ) from None


def validate_cadence_days(days: int) -> int:
    if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
        raise CadenceError(f"Cadence days must be a positive integer, got {days!r}")
    return days


def days_since(last: datetime, now: datetime) -> int:
    """Whole days elapsed (floored)."""
    elapsed = make_aware(now) - make_aware(last)
    return elapsed.days


def compute_priority_score(cadence: ContactCadence, now: Optional[datetime] = None) -> float:
    """
    How overdue a contact is, scaled by relationship strength.

    max(0, days_since_last_interaction - cadence_days) * 2 * multiplier.
    Contacts with no recorded interaction score 0.
    """
    if cadence.last_interaction_date is None:
        return 0.0
    now = now or utc_now()
    overdue = max(0, days_since(cadence.last_interaction_date, now) - cadence.cadence_days)
    multiplier = STRENGTH_MULTIPLIERS[RelationshipStrength(cadence.relationship_strength)]
    return float(overdue) * 2 * multiplier


def update_next_followup(cadence: ContactCadence) -> Optional[datetime]:
    """Last interaction + cadence_days, or None if there's no interaction yet."""
    if cadence.last_interaction_date is None:
        return None
    return cadence.last_interaction_date + timedelta(days=cadence.cadence_days)


def recompute(cadence: ContactCadence, now: Optional[datetime] = None) -> ContactCadence:
    """Return a copy with next_followup_date and priority_score brought up to date."""
    return replace(
        cadence,
        next_followup_date=update_next_followup(cadence),
        priority_score=compute_priority_score(cadence, now),
    )
