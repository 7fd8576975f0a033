"""Normalizer turning decoded feed entries into EventRecords."""
import logging
from datetime import date, datetime, time, timedelta
from typing import Any, List, Optional

from bs4 import BeautifulSoup
from dateutil import parser as date_parser
from dateutil import tz

from processor.models import EventRecord, RsvpStatus, SourceShape, SyncStats
from sync.errors import EventParseError

logger = logging.getLogger(__name__)


_GRAPH_RSVP = {
    'attending': RsvpStatus.ATTENDING,
    'unsure': RsvpStatus.UNSURE,
    'maybe': RsvpStatus.UNSURE,
    'declined': RsvpStatus.DECLINED,
    'not_replied': RsvpStatus.NOT_REPLIED,
}

_ICAL_PARTSTAT = {
    'ACCEPTED': RsvpStatus.ATTENDING,
    'TENTATIVE': RsvpStatus.UNSURE,
    'DECLINED': RsvpStatus.DECLINED,
    'NEEDS-ACTION': RsvpStatus.NOT_REPLIED,
}


class EventNormalizer:
    """Converts raw JSON objects and iCal VEVENTs into EventRecords."""

    BIRTHDAY_RECURRENCE = 'FREQ=YEARLY'
    DEFAULT_DURATION = timedelta(hours=1)
    ALL_DAY_DURATION = timedelta(days=1)

    def __init__(self, timezone: str = 'UTC'):
        """
        Initialize the normalizer.

        Args:
            timezone: Zone applied to floating times and all-day dates
        """
        self.tz = tz.gettz(timezone) or tz.UTC

    def normalize(self, raw: Any, shape: SourceShape) -> EventRecord:
        """
        Normalize one decoded feed entry.

        Args:
            raw: JSON object (GRAPH_JSON) or icalendar VEVENT component
            shape: Feed the entry came from

        Returns:
            EventRecord

        Raises:
            EventParseError: If the entry has no usable identity or start time
        """
        try:
            if shape is SourceShape.GRAPH_JSON:
                return self._from_graph(raw)
            return self._from_ical(raw, shape)
        except (AttributeError, TypeError, ValueError) as e:
            raise EventParseError(f"Malformed {shape.value} entry: {type(e).__name__}: {e}") from e

    def normalize_entries(self, entries: List[Any], shape: SourceShape,
                          stats: Optional[SyncStats] = None) -> List[EventRecord]:
        """
        Normalize a batch of entries, skipping the malformed ones.

        Args:
            entries: Raw entries in feed order
            shape: Feed the entries came from
            stats: Accumulator for parse error counts

        Returns:
            EventRecords in feed order
        """
        records = []
        for raw in entries:
            try:
                records.append(self.normalize(raw, shape))
            except EventParseError as e:
                logger.warning(f"Skipping malformed {shape.value} entry: {e}")
                if stats is not None:
                    stats.parse_errors += 1
        return records

    def _from_graph(self, raw: dict) -> EventRecord:
        if not isinstance(raw, dict):
            raise EventParseError(f"Expected JSON object, got {type(raw).__name__}")

        external_id = str(raw.get('id') or '').strip()
        if not external_id:
            raise EventParseError("Event missing required field: id")

        start_value = raw.get('start_time')
        if not start_value:
            raise EventParseError(f"Event {external_id} missing required field: start_time")
        start, all_day = self._parse_graph_time(start_value, external_id)

        end = None
        if raw.get('end_time'):
            try:
                end, _ = self._parse_graph_time(raw['end_time'], external_id)
            except EventParseError:
                logger.debug(f"Ignoring unparseable end_time of event {external_id}")
        end = self._resolve_end(start, end, all_day)

        owner = raw.get('owner')
        organizer = owner.get('name') if isinstance(owner, dict) else None

        return EventRecord(
            external_id=external_id,
            title=self._clean_text(raw.get('name')),
            description=self._clean_text(raw.get('description')),
            location=self._format_place(raw.get('place')),
            start=start,
            end=end,
            all_day=all_day,
            organizer=organizer,
            cancelled=bool(raw.get('is_canceled', False)),
            rsvp_status=_GRAPH_RSVP.get(str(raw.get('rsvp_status', '')).lower(),
                                        RsvpStatus.NOT_REPLIED),
            recurrence=None,
            source=SourceShape.GRAPH_JSON,
        )

    def _from_ical(self, component: Any, shape: SourceShape) -> EventRecord:
        try:
            external_id = str(component.get('UID', '')).strip()
        except AttributeError:
            raise EventParseError(f"Expected VEVENT component, got {type(component).__name__}")
        if not external_id:
            raise EventParseError("VEVENT missing required property: UID")

        try:
            start_value = component.decoded('DTSTART')
        except (KeyError, ValueError) as e:
            raise EventParseError(f"VEVENT {external_id} has no usable DTSTART: {e}")

        birthday = shape is SourceShape.ICAL_BIRTHDAYS
        start, all_day = self._coerce_ical_time(start_value, force_all_day=birthday)

        end = None
        if 'DTEND' in component:
            try:
                end, _ = self._coerce_ical_time(component.decoded('DTEND'), force_all_day=all_day)
            except (KeyError, ValueError):
                logger.debug(f"Ignoring unparseable DTEND of event {external_id}")
        end = self._resolve_end(start, end, all_day)

        recurrence = None
        rrule = component.get('RRULE')
        if isinstance(rrule, list):
            # Several RRULE lines; the first one is kept
            rrule = rrule[0] if rrule else None
        if rrule:
            recurrence = rrule.to_ical().decode('utf-8')
        elif birthday:
            recurrence = self.BIRTHDAY_RECURRENCE

        return EventRecord(
            external_id=external_id,
            title=self._clean_text(component.get('SUMMARY')),
            description=self._clean_text(component.get('DESCRIPTION')),
            location=self._clean_text(component.get('LOCATION')),
            start=start,
            end=end,
            all_day=all_day,
            organizer=self._ical_organizer(component.get('ORGANIZER')),
            cancelled=str(component.get('STATUS', '')).upper() == 'CANCELLED',
            rsvp_status=self._ical_rsvp(component),
            recurrence=recurrence,
            source=shape,
        )

    def _parse_graph_time(self, value: str, external_id: str) -> tuple[datetime, bool]:
        """
        Parse a Graph timestamp such as ``2018-05-12T19:00:00+0200``.

        Date-only values are all-day events.
        """
        try:
            parsed = date_parser.isoparse(str(value).strip())
        except (ValueError, OverflowError) as e:
            raise EventParseError(f"Invalid time '{value}' for event {external_id}: {e}")
        if 'T' not in str(value):
            return self._start_of_day(parsed.date()), True
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=self.tz)
        return parsed, False

    def _coerce_ical_time(self, value: Any, force_all_day: bool = False) -> tuple[datetime, bool]:
        if isinstance(value, datetime):
            if force_all_day:
                return self._start_of_day(value.date()), True
            if value.tzinfo is None:
                value = value.replace(tzinfo=self.tz)
            return value, False
        if isinstance(value, date):
            return self._start_of_day(value), True
        raise ValueError(f"Unsupported time value: {value!r}")

    def _start_of_day(self, day: date) -> datetime:
        return datetime.combine(day, time.min, tzinfo=self.tz)

    def _resolve_end(self, start: datetime, end: Optional[datetime], all_day: bool) -> datetime:
        if end is None or end < start:
            return start + (self.ALL_DAY_DURATION if all_day else self.DEFAULT_DURATION)
        return end

    def _format_place(self, place: Any) -> str:
        """
        Flatten a Graph place into a single line.

        Args:
            place: Place object (name plus optional location) or plain string

        Returns:
            Location text, empty if unknown
        """
        if not place:
            return ''
        if isinstance(place, str):
            return self._clean_text(place)
        if not isinstance(place, dict):
            return ''

        parts = []
        if place.get('name'):
            parts.append(str(place['name']).strip())
        location = place.get('location')
        if isinstance(location, dict):
            for key in ('street', 'city', 'country'):
                value = location.get(key)
                if value and str(value).strip() not in parts:
                    parts.append(str(value).strip())
        return ', '.join(parts)

    def _ical_organizer(self, organizer: Any) -> Optional[str]:
        if organizer is None:
            return None
        params = getattr(organizer, 'params', {})
        name = params.get('CN')
        if name:
            return str(name)
        value = str(organizer)
        if value.lower().startswith('mailto:'):
            value = value[len('mailto:'):]
        return value or None

    def _ical_rsvp(self, component: Any) -> RsvpStatus:
        partstat = component.get('PARTSTAT')
        if partstat is None:
            attendee = component.get('ATTENDEE')
            if isinstance(attendee, list):
                attendee = attendee[0] if attendee else None
            if attendee is not None:
                partstat = getattr(attendee, 'params', {}).get('PARTSTAT')
        if partstat is None:
            return RsvpStatus.NOT_REPLIED
        return _ICAL_PARTSTAT.get(str(partstat).upper(), RsvpStatus.NOT_REPLIED)

    def _clean_text(self, value: Any) -> str:
        """Return plain text, reducing embedded HTML markup."""
        if value is None:
            return ''
        text = str(value).strip()
        if '<' in text and '>' in text:
            text = BeautifulSoup(text, 'html.parser').get_text(separator=' ', strip=True)
        return text
