"""Logical calendars and per-event reconciliation against the local store."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterator, Optional, Set

from processor.models import (
    LEGACY_CALENDAR_TYPES,
    CalendarType,
    EventRecord,
    SyncStats,
    Unmatched,
    dispatch,
)
from settings import Settings
from sync.auth_gate import Credential

logger = logging.getLogger(__name__)


@dataclass
class SyncContext:
    """State owned by one in-flight sync pass."""
    account: str
    credential: Credential
    store: object
    stats: SyncStats
    settings: Settings
    now: datetime

    def is_enabled(self, calendar_type: CalendarType) -> bool:
        if calendar_type is CalendarType.EVENTS:
            return self.settings.events_calendar_enabled
        if calendar_type is CalendarType.BIRTHDAYS:
            return self.settings.birthdays_calendar_enabled
        return False


class Calendar:
    """
    One logical calendar of an account.

    Tracks which external ids were seen during the running pass so
    finalize_sync can delete whatever the feed no longer contains.
    """

    def __init__(self, calendar_type: CalendarType, context: SyncContext, enabled: bool):
        self.calendar_type = calendar_type
        self.context = context
        self.enabled = enabled
        self._stored: Dict[str, str] = {}
        self._seen: Set[str] = set()

    @property
    def store(self):
        return self.context.store

    @property
    def account(self) -> str:
        return self.context.account

    def initialize(self) -> None:
        """
        Create or look up the local calendar.

        Disabled calendars are removed from the local store instead.
        """
        self._seen.clear()
        if not self.enabled:
            self._stored = {}
            self.store.delete_calendar(self.account, self.calendar_type.value)
            return

        self.store.ensure_calendar(self.account, self.calendar_type.value)
        self._stored = self.store.get_stored_fingerprints(self.account, self.calendar_type.value)
        logger.debug(
            f"Calendar {self.calendar_type.value} initialized with {len(self._stored)} stored events"
        )

    def sync_event(self, record: EventRecord) -> None:
        """
        Apply one record to the local store.

        Args:
            record: Normalized event belonging to this calendar
        """
        stats = self.context.stats
        external_id = record.external_id

        if record.cancelled:
            if external_id in self._stored:
                logger.debug(f"Removing cancelled event {external_id}")
                self.store.delete_event(self.account, self.calendar_type.value, external_id)
                del self._stored[external_id]
                stats.deleted += 1
            self._seen.discard(external_id)
            return

        fingerprint = record.fingerprint
        stored_fingerprint = self._stored.get(external_id)
        if stored_fingerprint is None:
            self.store.upsert_event(self.account, self.calendar_type.value, record)
            stats.added += 1
        elif stored_fingerprint != fingerprint:
            self.store.upsert_event(self.account, self.calendar_type.value, record)
            stats.updated += 1
        else:
            stats.unchanged += 1

        self._stored[external_id] = fingerprint
        self._seen.add(external_id)

    def finalize_sync(self) -> int:
        """
        Delete stored events not seen in this pass.

        Only call after the calendar's whole feed was walked.

        Returns:
            Count of deleted events
        """
        stale = [external_id for external_id in self._stored if external_id not in self._seen]
        for external_id in stale:
            self.store.delete_event(self.account, self.calendar_type.value, external_id)
            del self._stored[external_id]

        if stale:
            logger.info(f"Removed {len(stale)} stale events from calendar {self.calendar_type.value}")
        self.context.stats.deleted += len(stale)
        self._seen.clear()
        return len(stale)

    def delete_local_calendar(self) -> None:
        self.store.delete_calendar(self.account, self.calendar_type.value)
        self._stored = {}
        self._seen.clear()


class CalendarSet:
    """All logical calendars of an account, keyed by type."""

    def __init__(self, context: SyncContext):
        self.context = context
        self._calendars: Dict[CalendarType, Calendar] = {
            calendar_type: Calendar(calendar_type, context, context.is_enabled(calendar_type))
            for calendar_type in CalendarType
        }

    def __iter__(self) -> Iterator[Calendar]:
        return iter(self._calendars.values())

    def get(self, calendar_type: CalendarType) -> Calendar:
        return self._calendars[calendar_type]

    def initialize(self) -> None:
        for calendar in self:
            calendar.initialize()

    def delete_all(self) -> None:
        """Delete every calendar of the account, legacy ones included."""
        for calendar in self:
            calendar.delete_local_calendar()
        for legacy_type in LEGACY_CALENDAR_TYPES:
            logger.debug(f"Removing legacy {legacy_type} calendar")
            self.context.store.delete_calendar(self.context.account, legacy_type)

    def calendar_for_event(self, record: EventRecord) -> Optional[Calendar]:
        """
        Resolve the calendar a record is applied to.

        Args:
            record: Normalized event record

        Returns:
            Enabled target Calendar, or None if no calendar accepts the record
        """
        target = dispatch(record, include_declined=self.context.settings.include_declined)
        if isinstance(target, Unmatched):
            logger.debug(f"No calendar for event {record.external_id}: {target.reason}")
            return None
        calendar = self._calendars[target]
        if not calendar.enabled:
            return None
        return calendar
