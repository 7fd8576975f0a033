"""Shared fixtures for the sync tests."""
from datetime import datetime, timedelta, timezone

import boto3
import pytest
from moto import mock_aws

from processor.models import EventRecord, RsvpStatus, SourceShape
from settings import Settings
from storage.dynamodb_store import DynamoDBCalendarStore
from storage.state_store import SyncStateStore

EVENTS_TABLE = 'test-fb-event-sync-events'
STATE_TABLE = 'test-fb-event-sync-state'


@pytest.fixture(autouse=True)
def aws_env(monkeypatch):
    """Point boto3 at fake credentials so nothing reaches AWS."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def aws():
    with mock_aws():
        yield


@pytest.fixture
def events_table(aws):
    """Create a mock calendar events table."""
    dynamodb = boto3.resource('dynamodb', region_name='us-east-1')
    return dynamodb.create_table(
        TableName=EVENTS_TABLE,
        KeySchema=[
            {'AttributeName': 'calendar_key', 'KeyType': 'HASH'},
            {'AttributeName': 'event_id', 'KeyType': 'RANGE'}
        ],
        AttributeDefinitions=[
            {'AttributeName': 'calendar_key', 'AttributeType': 'S'},
            {'AttributeName': 'event_id', 'AttributeType': 'S'}
        ],
        BillingMode='PAY_PER_REQUEST'
    )


@pytest.fixture
def state_table(aws):
    """Create a mock sync state table."""
    dynamodb = boto3.resource('dynamodb', region_name='us-east-1')
    return dynamodb.create_table(
        TableName=STATE_TABLE,
        KeySchema=[{'AttributeName': 'account', 'KeyType': 'HASH'}],
        AttributeDefinitions=[{'AttributeName': 'account', 'AttributeType': 'S'}],
        BillingMode='PAY_PER_REQUEST'
    )


@pytest.fixture
def calendar_store(events_table):
    return DynamoDBCalendarStore(EVENTS_TABLE, region_name='us-east-1')


@pytest.fixture
def state_store(state_table):
    return SyncStateStore(STATE_TABLE, region_name='us-east-1')


@pytest.fixture
def settings():
    return Settings(
        events_table_name=EVENTS_TABLE,
        state_table_name=STATE_TABLE,
        feed_locale='en_US',
        bypass_rate_limit=True,
        region_name='us-east-1',
    )


@pytest.fixture
def now():
    return datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_record():
    """Factory for EventRecords with overridable fields."""
    def _make(external_id='event-1', **overrides):
        start = overrides.pop('start', datetime(2024, 2, 1, 19, 0, tzinfo=timezone.utc))
        fields = dict(
            external_id=external_id,
            title=f'Event {external_id}',
            description='Description',
            location='Prague',
            start=start,
            end=start + timedelta(hours=2),
            all_day=False,
            organizer='Organizer',
            cancelled=False,
            rsvp_status=RsvpStatus.ATTENDING,
            recurrence=None,
            source=SourceShape.GRAPH_JSON,
        )
        fields.update(overrides)
        return EventRecord(**fields)
    return _make
