"""Data models for event reconciliation."""
import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, NamedTuple, Optional, Union


class SourceShape(Enum):
    """Feed an event record was decoded from."""
    GRAPH_JSON = "graph_json"
    ICAL_EVENTS = "ical_events"
    ICAL_BIRTHDAYS = "ical_birthdays"


class RsvpStatus(Enum):
    """The viewer's response to an event."""
    ATTENDING = "attending"
    UNSURE = "unsure"
    DECLINED = "declined"
    NOT_REPLIED = "not_replied"


class CalendarType(Enum):
    """Logical calendars kept in the local store."""
    EVENTS = "events"
    BIRTHDAYS = "birthdays"


# Calendar types written by older schema versions
LEGACY_CALENDAR_TYPES = ("birthday",)


class Unmatched(NamedTuple):
    """Dispatch result for a record no calendar accepts."""
    reason: str


@dataclass(frozen=True)
class EventRecord:
    """Canonical, immutable representation of one remote event."""
    external_id: str
    title: str
    description: str
    location: str
    start: datetime
    end: datetime
    all_day: bool
    organizer: Optional[str]
    cancelled: bool
    rsvp_status: RsvpStatus
    recurrence: Optional[str]
    source: SourceShape

    @property
    def fingerprint(self) -> str:
        """
        SHA256 over the semantic fields.

        Two fetches of the same event produce the same fingerprint iff
        nothing the local store keeps has changed.
        """
        composite = "|".join([
            self.external_id,
            self.title,
            self.description,
            self.location,
            self.start.isoformat(),
            self.end.isoformat(),
            str(self.all_day),
            self.organizer or "",
            str(self.cancelled),
            self.rsvp_status.value,
            self.recurrence or "",
            self.source.value,
        ])
        return hashlib.sha256(composite.encode('utf-8')).hexdigest()


def dispatch(record: EventRecord, include_declined: bool = False) -> Union[CalendarType, Unmatched]:
    """
    Decide which calendar an event record belongs to.

    Args:
        record: Normalized event record
        include_declined: Keep events the viewer declined

    Returns:
        Target CalendarType, or Unmatched with the reason
    """
    if record.source is SourceShape.ICAL_BIRTHDAYS:
        return CalendarType.BIRTHDAYS
    if record.rsvp_status is RsvpStatus.DECLINED and not include_declined:
        return Unmatched("declined")
    return CalendarType.EVENTS


@dataclass
class SyncStats:
    """Typed counters accumulated over one sync pass."""
    added: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    unmatched: int = 0
    parse_errors: int = 0
    transport_failures: int = 0
    store_failures: int = 0
    reauth_requests: int = 0
    auth_failures: Dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def writes(self) -> int:
        """Number of local store mutations performed."""
        return self.added + self.updated + self.deleted

    def record_auth_failure(self, kind: str) -> None:
        self.auth_failures[kind] = self.auth_failures.get(kind, 0) + 1

    def to_dict(self) -> dict:
        return {
            'events_added': self.added,
            'events_updated': self.updated,
            'events_unchanged': self.unchanged,
            'events_deleted': self.deleted,
            'events_unmatched': self.unmatched,
            'parse_errors': self.parse_errors,
            'transport_failures': self.transport_failures,
            'store_failures': self.store_failures,
            'reauth_requests': self.reauth_requests,
            'auth_failures': dict(self.auth_failures),
            'errors': list(self.errors),
        }
