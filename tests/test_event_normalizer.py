"""Unit tests for EventNormalizer."""
from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from icalendar import Calendar

from processor.event_normalizer import EventNormalizer
from processor.models import RsvpStatus, SourceShape, SyncStats
from sync.errors import EventParseError


ICAL_DOCUMENT = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Facebook//NONSGML Facebook Events V1.0//EN
BEGIN:VEVENT
UID:e123@facebook.com
DTSTAMP:20240101T000000Z
DTSTART:20240201T190000Z
DTEND:20240201T210000Z
SUMMARY:Concert
DESCRIPTION:<p>Bring <b>friends</b></p>
LOCATION:Lucerna
ORGANIZER;CN=Jan Novak:MAILTO:noreply@facebookmail.com
PARTSTAT:TENTATIVE
END:VEVENT
BEGIN:VEVENT
UID:e124@facebook.com
DTSTART:20240202T180000
SUMMARY:Floating meetup
STATUS:CANCELLED
END:VEVENT
BEGIN:VEVENT
UID:b456@facebook.com
DTSTART;VALUE=DATE:20240310
SUMMARY:Petra's birthday
END:VEVENT
BEGIN:VEVENT
SUMMARY:No identity
DTSTART:20240203T180000Z
END:VEVENT
BEGIN:VEVENT
UID:e125@facebook.com
SUMMARY:No start
END:VEVENT
END:VCALENDAR
"""


@pytest.fixture
def vevents():
    return Calendar.from_ical(ICAL_DOCUMENT).walk('VEVENT')


@pytest.fixture
def normalizer():
    return EventNormalizer(timezone='Europe/Prague')


class TestGraphEntries:
    """Test cases for JSON feed entries."""

    def test_full_entry(self, normalizer):
        raw = {
            'id': '1234567890',
            'name': 'Live Music Night',
            'description': 'Enjoy live entertainment',
            'place': {
                'name': 'Lucerna',
                'location': {'street': 'Vodickova 36', 'city': 'Prague', 'country': 'Czechia'}
            },
            'start_time': '2024-01-15T19:00:00+0100',
            'end_time': '2024-01-15T22:00:00+0100',
            'owner': {'id': '42', 'name': 'Jan Novak'},
            'is_canceled': False,
            'rsvp_status': 'attending'
        }

        record = normalizer.normalize(raw, SourceShape.GRAPH_JSON)

        assert record.external_id == '1234567890'
        assert record.title == 'Live Music Night'
        assert record.description == 'Enjoy live entertainment'
        assert record.location == 'Lucerna, Vodickova 36, Prague, Czechia'
        assert record.start == datetime(2024, 1, 15, 18, 0, tzinfo=timezone.utc)
        assert record.end == datetime(2024, 1, 15, 21, 0, tzinfo=timezone.utc)
        assert record.all_day is False
        assert record.organizer == 'Jan Novak'
        assert record.cancelled is False
        assert record.rsvp_status is RsvpStatus.ATTENDING
        assert record.recurrence is None
        assert record.source is SourceShape.GRAPH_JSON

    def test_missing_optional_fields(self, normalizer):
        """Test that description, place and end fall back to defaults."""
        raw = {'id': '1', 'name': 'Minimal', 'start_time': '2024-01-15T19:00:00+0000'}

        record = normalizer.normalize(raw, SourceShape.GRAPH_JSON)

        assert record.description == ''
        assert record.location == ''
        assert record.organizer is None
        assert record.end - record.start == timedelta(hours=1)
        assert record.rsvp_status is RsvpStatus.NOT_REPLIED

    def test_date_only_start_is_all_day(self, normalizer):
        raw = {'id': '1', 'name': 'Festival', 'start_time': '2024-07-01'}

        record = normalizer.normalize(raw, SourceShape.GRAPH_JSON)

        assert record.all_day is True
        assert record.start.date() == date(2024, 7, 1)
        assert record.end - record.start == timedelta(days=1)

    def test_place_as_string_and_cancelled(self, normalizer):
        raw = {
            'id': '1',
            'start_time': '2024-01-15T19:00:00+0000',
            'place': 'Somewhere',
            'is_canceled': True,
            'rsvp_status': 'declined'
        }

        record = normalizer.normalize(raw, SourceShape.GRAPH_JSON)

        assert record.location == 'Somewhere'
        assert record.cancelled is True
        assert record.rsvp_status is RsvpStatus.DECLINED

    def test_end_before_start_is_replaced(self, normalizer):
        raw = {
            'id': '1',
            'start_time': '2024-01-15T19:00:00+0000',
            'end_time': '2024-01-15T18:00:00+0000'
        }

        record = normalizer.normalize(raw, SourceShape.GRAPH_JSON)

        assert record.end == record.start + timedelta(hours=1)

    @pytest.mark.parametrize('raw', [
        {'name': 'No id', 'start_time': '2024-01-15T19:00:00+0000'},
        {'id': '1', 'name': 'No start'},
        {'id': '1', 'start_time': 'next tuesday'},
        'not an object',
    ])
    def test_unusable_entries_raise(self, normalizer, raw):
        with pytest.raises(EventParseError):
            normalizer.normalize(raw, SourceShape.GRAPH_JSON)

    def test_same_entry_normalizes_equal(self, normalizer):
        raw = {'id': '1', 'name': 'Same', 'start_time': '2024-01-15T19:00:00+0000'}

        first = normalizer.normalize(dict(raw), SourceShape.GRAPH_JSON)
        second = normalizer.normalize(dict(raw), SourceShape.GRAPH_JSON)

        assert first == second
        assert first.fingerprint == second.fingerprint


class TestICalEntries:
    """Test cases for iCal VEVENT components."""

    def test_full_vevent(self, normalizer, vevents):
        record = normalizer.normalize(vevents[0], SourceShape.ICAL_EVENTS)

        assert record.external_id == 'e123@facebook.com'
        assert record.title == 'Concert'
        assert record.description == 'Bring friends'
        assert record.location == 'Lucerna'
        assert record.start == datetime(2024, 2, 1, 19, 0, tzinfo=timezone.utc)
        assert record.end == datetime(2024, 2, 1, 21, 0, tzinfo=timezone.utc)
        assert record.organizer == 'Jan Novak'
        assert record.rsvp_status is RsvpStatus.UNSURE
        assert record.cancelled is False
        assert record.source is SourceShape.ICAL_EVENTS

    def test_floating_time_and_cancelled(self, normalizer, vevents):
        record = normalizer.normalize(vevents[1], SourceShape.ICAL_EVENTS)

        assert record.cancelled is True
        assert record.start.utcoffset() == timedelta(hours=1)
        assert record.start.hour == 18

    def test_birthday_recurs_yearly(self, normalizer, vevents):
        record = normalizer.normalize(vevents[2], SourceShape.ICAL_BIRTHDAYS)

        assert record.all_day is True
        assert record.start.date() == date(2024, 3, 10)
        assert record.end.date() == date(2024, 3, 11)
        assert record.recurrence == 'FREQ=YEARLY'
        assert record.source is SourceShape.ICAL_BIRTHDAYS

    def test_missing_uid_raises(self, normalizer, vevents):
        with pytest.raises(EventParseError):
            normalizer.normalize(vevents[3], SourceShape.ICAL_EVENTS)

    def test_missing_start_raises(self, normalizer, vevents):
        with pytest.raises(EventParseError):
            normalizer.normalize(vevents[4], SourceShape.ICAL_EVENTS)


class TestNormalizeEntries:

    def test_malformed_entries_are_skipped_and_counted(self, normalizer, vevents):
        stats = SyncStats()

        records = normalizer.normalize_entries(vevents, SourceShape.ICAL_EVENTS, stats)

        assert [record.external_id for record in records] == [
            'e123@facebook.com', 'e124@facebook.com', 'b456@facebook.com'
        ]
        assert stats.parse_errors == 2

    def test_several_rrules_keep_first(self, normalizer):
        document = (
            "BEGIN:VCALENDAR\nVERSION:2.0\nPRODID:-//x//EN\n"
            "BEGIN:VEVENT\nUID:e1\nDTSTART:20240201T190000Z\nSUMMARY:Plain\nEND:VEVENT\n"
            "BEGIN:VEVENT\nUID:e2\nDTSTART:20240202T190000Z\nSUMMARY:Repeating\n"
            "RRULE:FREQ=WEEKLY\nRRULE:FREQ=MONTHLY\nEND:VEVENT\n"
            "END:VCALENDAR\n"
        )
        stats = SyncStats()

        records = normalizer.normalize_entries(
            Calendar.from_ical(document).walk('VEVENT'), SourceShape.ICAL_EVENTS, stats
        )

        assert [record.external_id for record in records] == ['e1', 'e2']
        assert records[1].recurrence == 'FREQ=WEEKLY'
        assert stats.parse_errors == 0

    def test_unexpected_entry_error_skips_only_that_entry(self, normalizer, vevents):
        stats = SyncStats()
        organizer = normalizer._ical_organizer

        def failing_organizer(value):
            if value is not None:
                raise AttributeError('broken organizer')
            return organizer(value)

        with patch.object(normalizer, '_ical_organizer', side_effect=failing_organizer):
            records = normalizer.normalize_entries(vevents, SourceShape.ICAL_EVENTS, stats)

        # e123 carries the only ORGANIZER
        assert [record.external_id for record in records] == [
            'e124@facebook.com', 'b456@facebook.com'
        ]
        assert stats.parse_errors == 3
