"""
Typed metadata attached to sync log and interaction entries.

Each record kind has its own frozen dataclass. Payloads are stored as JSON
with an explicit ``kind`` tag and ``schema_version`` so older readers can
skip fields they don't know and newer kinds decode to UnknownMetadata
instead of failing.
"""
import json
from dataclasses import dataclass, field, fields
from typing import Optional, Union

SCHEMA_VERSION = 1


@dataclass(frozen=True)
class CalendarEventMetadata:
    """Provenance for an imported calendar meeting."""
    event_summary: str = ""
    attendee_count: int = 0
    location: str = ""
    duration_minutes: int = 0

    kind = "calendar_event"


@dataclass(frozen=True)
class GmailMessageMetadata:
    """Provenance for an imported email. Headers only, never body content."""
    subject: str = ""
    thread_id: str = ""
    direction: str = "received"  # "received" or "sent"

    kind = "gmail_message"


@dataclass(frozen=True)
class ContactImportMetadata:
    """Provenance for a contact imported from the People API."""
    resource_name: str = ""

    kind = "contact_import"


@dataclass(frozen=True)
class UnknownMetadata:
    """A payload written by a newer version with a kind this version doesn't know."""
    kind: str
    schema_version: int
    data: dict = field(default_factory=dict)


SyncMetadata = Union[
    CalendarEventMetadata,
    GmailMessageMetadata,
    ContactImportMetadata,
    UnknownMetadata,
]

_VARIANTS = {
    cls.kind: cls
    for cls in (CalendarEventMetadata, GmailMessageMetadata, ContactImportMetadata)
}


def encode_metadata(meta: Optional[SyncMetadata]) -> Optional[str]:
    """Serialize metadata to a tagged JSON string (None passes through)."""
    if meta is None:
        return None
    if isinstance(meta, UnknownMetadata):
        payload = dict(meta.data)
        payload["kind"] = meta.kind
        payload["schema_version"] = meta.schema_version
        return json.dumps(payload, sort_keys=True)

    payload = {"kind": meta.kind, "schema_version": SCHEMA_VERSION}
    for f in fields(meta):
        payload[f.name] = getattr(meta, f.name)
    return json.dumps(payload, sort_keys=True)


def decode_metadata(raw: Optional[str]) -> Optional[SyncMetadata]:
    """
    Parse a stored metadata payload.

    Unknown fields are ignored; unknown kinds become UnknownMetadata.

    Raises:
        ValueError: If the payload is not a JSON object
    """
    if not raw:
        return None

    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"Metadata payload must be a JSON object, got {type(data).__name__}")

    kind = data.pop("kind", "")
    version = data.pop("schema_version", SCHEMA_VERSION)

    cls = _VARIANTS.get(kind)
    if cls is None:
        return UnknownMetadata(kind=kind, schema_version=version, data=data)

    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})
