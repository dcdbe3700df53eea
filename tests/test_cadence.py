"""
Tests for follow-up cadence scoring.
"""
from datetime import datetime, timedelta, timezone

import pytest

from crmsync.services.cadence import (
    CadenceError,
    ContactCadence,
    RelationshipStrength,
    compute_priority_score,
    days_since,
    parse_strength,
    recompute,
    update_next_followup,
    validate_cadence_days,
)

pytestmark = pytest.mark.unit

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def cadence_with_gap(days: float, cadence_days: int = 30, strength=RelationshipStrength.MEDIUM):
    return ContactCadence(
        contact_id="c1",
        cadence_days=cadence_days,
        relationship_strength=strength,
        last_interaction_date=NOW - timedelta(days=days),
    )


class TestPriorityScore:
    def test_overdue_medium(self):
        """45 days since contact on a 30-day cadence: 15 * 2 * 1.5."""
        assert compute_priority_score(cadence_with_gap(45), NOW) == 45.0

    def test_overdue_strong(self):
        assert compute_priority_score(
            cadence_with_gap(45, strength=RelationshipStrength.STRONG), NOW
        ) == 60.0

    def test_overdue_weak(self):
        assert compute_priority_score(
            cadence_with_gap(40, strength=RelationshipStrength.WEAK), NOW
        ) == 20.0

    def test_not_yet_due(self):
        assert compute_priority_score(cadence_with_gap(20), NOW) == 0.0

    def test_exactly_due(self):
        assert compute_priority_score(cadence_with_gap(30), NOW) == 0.0

    def test_no_interaction(self):
        assert compute_priority_score(ContactCadence(contact_id="c1"), NOW) == 0.0

    def test_partial_days_floor(self):
        """31.9 days counts as 31."""
        assert compute_priority_score(cadence_with_gap(31.9), NOW) == 3.0


class TestNextFollowup:
    def test_next_followup(self):
        cadence = cadence_with_gap(10, cadence_days=14)
        assert update_next_followup(cadence) == NOW + timedelta(days=4)

    def test_next_followup_without_interaction(self):
        assert update_next_followup(ContactCadence(contact_id="c1")) is None

    def test_recompute_returns_copy(self):
        cadence = cadence_with_gap(45)
        updated = recompute(cadence, NOW)
        assert updated is not cadence
        assert cadence.priority_score == 0.0
        assert updated.priority_score == 45.0
        assert updated.next_followup_date == NOW - timedelta(days=15)


class TestValidation:
    @pytest.mark.parametrize("days", [0, -5, 1.5, True, "30"])
    def test_invalid_days(self, days):
        with pytest.raises(CadenceError):
            validate_cadence_days(days)

    def test_valid_days(self):
        assert validate_cadence_days(7) == 7

    def test_parse_strength(self):
        assert parse_strength("STRONG") == RelationshipStrength.STRONG
        with pytest.raises(CadenceError):
            parse_strength("close")

    def test_days_since_naive_treated_as_utc(self):
        assert days_since(datetime(2024, 5, 30, 12, 0), NOW) == 2
