"""
Interaction Store for CRM sync.

Stores one row per touchpoint with a contact (meeting, email, ...). Every
new interaction also moves the contact's last_contacted_at forward and
recomputes their follow-up cadence in the same transaction.
"""
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from crmsync.services.cadence import (
    ContactCadence,
    RelationshipStrength,
    days_since,
    parse_strength,
    recompute,
    validate_cadence_days,
)
from crmsync.services.crm_db import CRMDatabase
from crmsync.services.sync_metadata import SyncMetadata, decode_metadata, encode_metadata
from crmsync.utils.datetime_utils import from_storage, make_aware, to_storage, utc_now

logger = logging.getLogger(__name__)


class InteractionType(str, Enum):
    MEETING = "meeting"
    CALL = "call"
    EMAIL = "email"
    MESSAGE = "message"
    EVENT = "event"


@dataclass
class InteractionLog:
    """
    A single interaction with a contact.

    Stores metadata about the touchpoint, never message or meeting content.
    """

    contact_id: str
    interaction_type: InteractionType
    timestamp: datetime
    notes: str = ""
    sentiment: Optional[str] = None
    metadata: Optional[SyncMetadata] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "InteractionLog":
        return cls(
            id=row["id"],
            contact_id=row["contact_id"],
            interaction_type=InteractionType(row["interaction_type"]),
            timestamp=from_storage(row["timestamp"]),
            notes=row["notes"] or "",
            sentiment=row["sentiment"],
            metadata=decode_metadata(row["metadata"]),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "contact_id": self.contact_id,
            "interaction_type": self.interaction_type.value,
            "timestamp": self.timestamp.isoformat(),
            "notes": self.notes,
            "sentiment": self.sentiment,
        }


@dataclass
class FollowupContact:
    """A row of the follow-up list."""
    contact_id: str
    name: str
    email: Optional[str]
    cadence_days: int
    relationship_strength: RelationshipStrength
    priority_score: float
    last_interaction_date: Optional[datetime]
    next_followup_date: Optional[datetime]
    days_since_contact: Optional[int]

    def to_dict(self) -> dict:
        return {
            "contact_id": self.contact_id,
            "name": self.name,
            "email": self.email,
            "cadence_days": self.cadence_days,
            "relationship_strength": self.relationship_strength.value,
            "priority_score": self.priority_score,
            "last_interaction_date": (
                self.last_interaction_date.isoformat() if self.last_interaction_date else None
            ),
            "next_followup_date": (
                self.next_followup_date.isoformat() if self.next_followup_date else None
            ),
            "days_since_contact": self.days_since_contact,
        }


def _cadence_from_row(row: sqlite3.Row) -> ContactCadence:
    return ContactCadence(
        contact_id=row["contact_id"],
        cadence_days=row["cadence_days"],
        relationship_strength=RelationshipStrength(row["relationship_strength"]),
        priority_score=row["priority_score"],
        last_interaction_date=from_storage(row["last_interaction_date"]),
        next_followup_date=from_storage(row["next_followup_date"]),
    )


class InteractionStore:
    """
    SQLite-backed interaction and cadence storage.

    Manages interaction records plus the per-contact cadence row that
    every new interaction updates.
    """

    def __init__(self, db: CRMDatabase, clock: Callable[[], datetime] = utc_now):
        """
        Initialize interaction store.

        Args:
            db: Shared CRM database
            clock: Source of "now" for priority scoring
        """
        self.db = db
        self.clock = clock

    def log_interaction(self, interaction: InteractionLog) -> InteractionLog:
        """
        Record an interaction and update the contact's cadence.

        In one transaction: insert the entry, move contacts.last_contacted_at
        forward, and upsert contact_cadence with a recomputed priority.

        Raises:
            sqlite3.IntegrityError: If the contact doesn't exist
        """
        interaction.timestamp = make_aware(interaction.timestamp)
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO interaction_log
                    (id, contact_id, interaction_type, timestamp, notes, sentiment, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    interaction.id,
                    interaction.contact_id,
                    InteractionType(interaction.interaction_type).value,
                    to_storage(interaction.timestamp),
                    interaction.notes,
                    interaction.sentiment,
                    encode_metadata(interaction.metadata),
                ),
            )

            # Importing history out of order must not move these backwards
            stamp = to_storage(interaction.timestamp)
            conn.execute(
                """
                UPDATE contacts SET last_contacted_at = ?
                WHERE id = ? AND (last_contacted_at IS NULL OR last_contacted_at < ?)
                """,
                (stamp, interaction.contact_id, stamp),
            )

            cadence = self.get_cadence(interaction.contact_id) or ContactCadence(
                contact_id=interaction.contact_id
            )
            if (
                cadence.last_interaction_date is None
                or interaction.timestamp > cadence.last_interaction_date
            ):
                cadence.last_interaction_date = interaction.timestamp
            self._save_cadence(conn, recompute(cadence, self.clock()))

        return interaction

    def get_cadence(self, contact_id: str) -> Optional[ContactCadence]:
        row = self.db.query_one(
            "SELECT * FROM contact_cadence WHERE contact_id = ?", (contact_id,)
        )
        return _cadence_from_row(row) if row else None

    def set_cadence(
        self,
        contact_id: str,
        cadence_days: int,
        strength: Optional[str] = None,
    ) -> ContactCadence:
        """
        Explicitly set a contact's cadence (and optionally strength), then recompute.

        Raises:
            CadenceError: If days or strength are invalid
            LookupError: If the contact doesn't exist
        """
        validate_cadence_days(cadence_days)
        if not self.db.query_one("SELECT 1 FROM contacts WHERE id = ?", (contact_id,)):
            raise LookupError(f"Contact {contact_id} not found")

        with self.db.transaction() as conn:
            cadence = self.get_cadence(contact_id) or ContactCadence(contact_id=contact_id)
            cadence.cadence_days = cadence_days
            if strength is not None:
                cadence.relationship_strength = parse_strength(strength)
            cadence = recompute(cadence, self.clock())
            self._save_cadence(conn, cadence)

        logger.info(
            f"Set cadence for {contact_id}: every {cadence.cadence_days} days "
            f"({cadence.relationship_strength.value})"
        )
        return cadence

    def refresh_priority_scores(self) -> int:
        """
        Recompute every contact's priority against the current clock.

        Priority grows while no new interactions arrive, so scores stored at
        interaction time go stale. Returns the number of rows whose score changed.
        """
        now = self.clock()
        changed = 0
        with self.db.transaction() as conn:
            rows = conn.execute("SELECT * FROM contact_cadence").fetchall()
            for row in rows:
                cadence = _cadence_from_row(row)
                updated = recompute(cadence, now)
                if updated.priority_score != cadence.priority_score:
                    self._save_cadence(conn, updated)
                    changed += 1
        return changed

    def _save_cadence(self, conn: sqlite3.Connection, cadence: ContactCadence):
        conn.execute(
            """
            INSERT INTO contact_cadence
                (contact_id, cadence_days, relationship_strength, priority_score,
                 last_interaction_date, next_followup_date)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(contact_id) DO UPDATE SET
                cadence_days = excluded.cadence_days,
                relationship_strength = excluded.relationship_strength,
                priority_score = excluded.priority_score,
                last_interaction_date = excluded.last_interaction_date,
                next_followup_date = excluded.next_followup_date
            """,
            (
                cadence.contact_id,
                cadence.cadence_days,
                RelationshipStrength(cadence.relationship_strength).value,
                cadence.priority_score,
                to_storage(cadence.last_interaction_date),
                to_storage(cadence.next_followup_date),
            ),
        )

    def get_followup_list(self, limit: int = 10) -> list[FollowupContact]:
        """Overdue contacts, most urgent first."""
        rows = self.db.query(
            """
            SELECT cc.*, c.name, c.email
            FROM contact_cadence cc
            JOIN contacts c ON c.id = cc.contact_id
            WHERE cc.priority_score > 0
            ORDER BY cc.priority_score DESC, cc.last_interaction_date ASC
            LIMIT ?
            """,
            (limit,),
        )
        now = self.clock()
        results = []
        for row in rows:
            cadence = _cadence_from_row(row)
            last = cadence.last_interaction_date
            results.append(FollowupContact(
                contact_id=cadence.contact_id,
                name=row["name"],
                email=row["email"],
                cadence_days=cadence.cadence_days,
                relationship_strength=cadence.relationship_strength,
                priority_score=cadence.priority_score,
                last_interaction_date=last,
                next_followup_date=cadence.next_followup_date,
                days_since_contact=days_since(last, now) if last else None,
            ))
        return results

    def get_history(self, contact_id: str, limit: int = 50) -> list[InteractionLog]:
        """Interactions with one contact, newest first."""
        rows = self.db.query(
            """
            SELECT * FROM interaction_log WHERE contact_id = ?
            ORDER BY timestamp DESC LIMIT ?
            """,
            (contact_id, limit),
        )
        return [InteractionLog.from_row(row) for row in rows]

    def get_recent(self, days: int = 7, limit: int = 50) -> list[InteractionLog]:
        """Interactions across all contacts within the last N days, newest first."""
        since = to_storage(self.clock() - timedelta(days=days))
        rows = self.db.query(
            """
            SELECT * FROM interaction_log WHERE timestamp >= ?
            ORDER BY timestamp DESC LIMIT ?
            """,
            (since, limit),
        )
        return [InteractionLog.from_row(row) for row in rows]

    def count(self, contact_id: Optional[str] = None) -> int:
        if contact_id:
            row = self.db.query_one(
                "SELECT COUNT(*) FROM interaction_log WHERE contact_id = ?", (contact_id,)
            )
        else:
            row = self.db.query_one("SELECT COUNT(*) FROM interaction_log")
        return row[0]
