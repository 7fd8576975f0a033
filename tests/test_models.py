"""Unit tests for event records and calendar dispatch."""
from dataclasses import FrozenInstanceError, replace

import pytest

from processor.models import (
    CalendarType,
    RsvpStatus,
    SourceShape,
    SyncStats,
    Unmatched,
    dispatch,
)


class TestEventRecord:

    def test_equal_records_share_fingerprint(self, make_record):
        first = make_record('event-1')
        second = make_record('event-1')

        assert first == second
        assert first.fingerprint == second.fingerprint
        assert len(first.fingerprint) == 64  # SHA256 hex digest

    @pytest.mark.parametrize('field_name, value', [
        ('title', 'Other title'),
        ('description', 'Other description'),
        ('location', 'Brno'),
        ('cancelled', True),
        ('rsvp_status', RsvpStatus.UNSURE),
        ('recurrence', 'FREQ=YEARLY'),
        ('organizer', None),
    ])
    def test_semantic_change_changes_fingerprint(self, make_record, field_name, value):
        record = make_record('event-1')
        changed = replace(record, **{field_name: value})

        assert record != changed
        assert record.fingerprint != changed.fingerprint

    def test_records_are_immutable(self, make_record):
        record = make_record('event-1')

        with pytest.raises(FrozenInstanceError):
            record.title = 'Changed'


class TestDispatch:

    def test_birthday_feed_goes_to_birthdays(self, make_record):
        record = make_record('b1', source=SourceShape.ICAL_BIRTHDAYS)
        assert dispatch(record) is CalendarType.BIRTHDAYS

    @pytest.mark.parametrize('source', [SourceShape.GRAPH_JSON, SourceShape.ICAL_EVENTS])
    def test_other_feeds_go_to_events(self, make_record, source):
        assert dispatch(make_record('e1', source=source)) is CalendarType.EVENTS

    def test_declined_is_unmatched(self, make_record):
        record = make_record('e1', rsvp_status=RsvpStatus.DECLINED)

        result = dispatch(record)

        assert isinstance(result, Unmatched)
        assert result.reason == 'declined'

    def test_declined_kept_when_included(self, make_record):
        record = make_record('e1', rsvp_status=RsvpStatus.DECLINED)
        assert dispatch(record, include_declined=True) is CalendarType.EVENTS


class TestSyncStats:

    def test_writes_and_auth_failures(self):
        stats = SyncStats(added=2, updated=1, deleted=3, unchanged=4)
        stats.record_auth_failure('io')
        stats.record_auth_failure('io')

        assert stats.writes == 6
        assert stats.to_dict()['auth_failures'] == {'io': 2}
        assert stats.to_dict()['events_unchanged'] == 4
