"""
Entity Resolver for CRM sync.

The only path by which provider data creates contacts and companies:
1. Email anchoring - case-insensitive exact email match
2. Name match - case-insensitive exact, guarded by email when one is known
3. Create - a new record with only the given fields populated

Existing records are never updated from provider data.
"""
import logging
import re
from dataclasses import dataclass
from typing import Optional, Union

from config.sync_patterns import COMMON_EMAIL_DOMAINS, COMPANY_DOMAIN_SUFFIXES
from crmsync.services.crm_db import CRMDatabase
from crmsync.services.crm_store import Company, CompanyStore, Contact, ContactStore

logger = logging.getLogger(__name__)


def normalize_email(email: Optional[str]) -> str:
    """Lowercase and strip an address; empty string for None."""
    return (email or "").strip().lower()


def extract_domain(email: Optional[str]) -> str:
    """Domain part of an address, lowercased. Empty for malformed input."""
    email = normalize_email(email)
    if email.count("@") != 1:
        return ""
    return email.split("@", 1)[1]


def is_common_email_domain(domain: str) -> bool:
    return domain.lower() in COMMON_EMAIL_DOMAINS


def company_name_from_domain(domain: str) -> str:
    """
    Guess a company name from an email domain.

    Examples:
        "acme-corp.com" -> "Acme Corp"
        "eng.startup.io" -> "Eng Startup"
        "gmail.com" -> "" (consumer mailbox, no company)
    """
    domain = (domain or "").lower().strip()
    if not domain or is_common_email_domain(domain):
        return ""

    for suffix in COMPANY_DOMAIN_SUFFIXES:
        if domain.endswith(suffix):
            domain = domain[: -len(suffix)]
            break

    parts = [p for p in re.split(r"[.-]", domain) if p]
    return " ".join(p.capitalize() for p in parts)


def name_from_email(email: str) -> str:
    """
    Best-guess display name from an address prefix.

    john.doe@... -> John Doe, jdoe@... -> Jdoe
    """
    if not email or "@" not in email:
        return email or "Unknown"
    prefix = email.split("@")[0]
    return re.sub(r"[._-]", " ", prefix).title()


@dataclass
class ResolutionResult:
    """Result of entity resolution."""

    entity: Union[Contact, Company]
    created: bool  # True if a new record was created
    match_type: str  # "email", "name" or "new"


class EntityResolver:
    """
    Resolves names/emails to Contact and Company records.

    Two different people sharing a display name are kept apart when both
    have emails: a name match is only accepted if the stored contact has no
    email or the same email.
    """

    def __init__(
        self,
        contacts: ContactStore,
        companies: CompanyStore,
    ):
        self.contacts = contacts
        self.companies = companies

    @classmethod
    def for_database(cls, db: CRMDatabase, clock=None) -> "EntityResolver":
        kwargs = {"clock": clock} if clock else {}
        return cls(ContactStore(db, **kwargs), CompanyStore(db, **kwargs))

    def resolve_contact(
        self,
        name: Optional[str],
        email: Optional[str] = None,
        company_name: Optional[str] = None,
        phone: Optional[str] = None,
        company_domain: Optional[str] = None,
    ) -> ResolutionResult:
        """
        Find or create a contact.

        Args:
            name: Display name (falls back to the email prefix when empty)
            email: Email address, used as the primary key when present
            company_name: Company to find-or-create and attach, only if a new
                contact is created
            phone: Phone to store if a new contact is created

        Raises:
            ValueError: If neither name nor email is given
        """
        email = normalize_email(email)
        name = (name or "").strip()
        if not name and not email:
            raise ValueError("Cannot resolve a contact without a name or email")

        # Pass 1: email exact match
        if email:
            existing = self.contacts.find_by_email(email)
            if existing:
                return ResolutionResult(entity=existing, created=False, match_type="email")

        if not name:
            name = name_from_email(email)

        # Pass 2: name exact match
        for candidate in self.contacts.find_by_name(name):
            if not email or not candidate.email or normalize_email(candidate.email) == email:
                return ResolutionResult(entity=candidate, created=False, match_type="name")

        # Pass 3: create
        company_id = None
        if company_name and company_name.strip():
            company_id = self.resolve_company(company_name, domain=company_domain).entity.id

        contact = self.contacts.create(
            name=name,
            email=email or None,
            phone=phone,
            company_id=company_id,
        )
        return ResolutionResult(entity=contact, created=True, match_type="new")

    def resolve_company(self, name: str, domain: Optional[str] = None) -> ResolutionResult:
        """
        Find or create a company by case-insensitive exact name.

        Raises:
            ValueError: If the name is empty
        """
        name = (name or "").strip()
        if not name:
            raise ValueError("Cannot resolve a company without a name")

        existing = self.companies.find_by_name(name)
        if existing:
            return ResolutionResult(entity=existing, created=False, match_type="name")

        company = self.companies.create(name=name, domain=domain)
        return ResolutionResult(entity=company, created=True, match_type="new")

