"""
Contact and company records.

Only the lookups and inserts the sync engine needs. Editing and searching
contacts belongs to the CRM front ends.
"""
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from crmsync.services.crm_db import CRMDatabase
from crmsync.utils.datetime_utils import from_storage, to_storage, utc_now

logger = logging.getLogger(__name__)


@dataclass
class Company:
    id: str
    name: str
    domain: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Company":
        return cls(
            id=row["id"],
            name=row["name"],
            domain=row["domain"],
            created_at=from_storage(row["created_at"]),
        )


@dataclass
class Contact:
    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    company_id: Optional[str] = None
    notes: Optional[str] = None
    last_contacted_at: Optional[datetime] = None
    created_at: Optional[datetime] = field(default=None)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Contact":
        return cls(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            phone=row["phone"],
            company_id=row["company_id"],
            notes=row["notes"],
            last_contacted_at=from_storage(row["last_contacted_at"]),
            created_at=from_storage(row["created_at"]),
        )


class ContactStore:
    """SQLite-backed contact lookups and inserts."""

    def __init__(self, db: CRMDatabase, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    def create(
        self,
        name: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        company_id: Optional[str] = None,
    ) -> Contact:
        contact = Contact(
            id=str(uuid.uuid4()),
            name=name,
            email=email or None,
            phone=phone or None,
            company_id=company_id,
            created_at=self.clock(),
        )
        self.db.execute(
            """
            INSERT INTO contacts (id, name, email, phone, company_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                contact.id,
                contact.name,
                contact.email,
                contact.phone,
                contact.company_id,
                to_storage(contact.created_at),
            ),
        )
        logger.info(f"Created contact {contact.name} ({contact.email or 'no email'})")
        return contact

    def get(self, contact_id: str) -> Optional[Contact]:
        row = self.db.query_one("SELECT * FROM contacts WHERE id = ?", (contact_id,))
        return Contact.from_row(row) if row else None

    def find_by_email(self, email: str) -> Optional[Contact]:
        """Case-insensitive email lookup. Oldest match wins."""
        row = self.db.query_one(
            """
            SELECT * FROM contacts WHERE email = ? COLLATE NOCASE
            ORDER BY created_at, rowid LIMIT 1
            """,
            (email.strip(),),
        )
        return Contact.from_row(row) if row else None

    def find_by_name(self, name: str) -> list[Contact]:
        """Case-insensitive exact name lookup, oldest first."""
        rows = self.db.query(
            """
            SELECT * FROM contacts WHERE name = ? COLLATE NOCASE
            ORDER BY created_at, rowid
            """,
            (name.strip(),),
        )
        return [Contact.from_row(row) for row in rows]

    def delete(self, contact_id: str) -> bool:
        """Delete a contact. Cadence and interactions cascade."""
        cursor = self.db.execute("DELETE FROM contacts WHERE id = ?", (contact_id,))
        return cursor.rowcount > 0

    def count(self) -> int:
        return self.db.query_one("SELECT COUNT(*) FROM contacts")[0]


class CompanyStore:
    """SQLite-backed company lookups and inserts."""

    def __init__(self, db: CRMDatabase, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    def create(self, name: str, domain: Optional[str] = None) -> Company:
        company = Company(
            id=str(uuid.uuid4()),
            name=name,
            domain=domain,
            created_at=self.clock(),
        )
        self.db.execute(
            "INSERT INTO companies (id, name, domain, created_at) VALUES (?, ?, ?, ?)",
            (company.id, company.name, company.domain, to_storage(company.created_at)),
        )
        logger.info(f"Created company {company.name}")
        return company

    def get(self, company_id: str) -> Optional[Company]:
        row = self.db.query_one("SELECT * FROM companies WHERE id = ?", (company_id,))
        return Company.from_row(row) if row else None

    def find_by_name(self, name: str) -> Optional[Company]:
        row = self.db.query_one(
            """
            SELECT * FROM companies WHERE name = ? COLLATE NOCASE
            ORDER BY created_at, rowid LIMIT 1
            """,
            (name.strip(),),
        )
        return Company.from_row(row) if row else None

    def count(self) -> int:
        return self.db.query_one("SELECT COUNT(*) FROM companies")[0]
