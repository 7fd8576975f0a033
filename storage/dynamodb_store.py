"""DynamoDB-backed local calendar store."""
import logging
import time
from typing import Dict, List, Optional, Set

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError

from processor.models import EventRecord
from sync.errors import StoreError

logger = logging.getLogger(__name__)


class DynamoDBCalendarStore:
    """
    Local calendar store keyed by account and calendar type.

    Each (account, calendar type) pair owns one partition. The calendar
    entity itself is the item whose sort key is ``CALENDAR_ITEM``; every
    other item in the partition is a stored event keyed by external id.
    """

    BATCH_SIZE = 25  # DynamoDB batch operation limit
    CALENDAR_ITEM = '#calendar'

    def __init__(self, table_name: str, region_name: str = None):
        """
        Initialize DynamoDB resource and table reference.

        Args:
            table_name: Name of the DynamoDB table
            region_name: AWS region, defaults to the environment's
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBCalendarStore for table: {table_name}")

    @staticmethod
    def calendar_key(account: str, calendar_type: str) -> str:
        return f"{account}#{calendar_type}"

    def get_calendar(self, account: str, calendar_type: str) -> Optional[dict]:
        """Return the calendar item, or None if it does not exist."""
        try:
            response = self.table.get_item(
                Key={
                    'calendar_key': self.calendar_key(account, calendar_type),
                    'event_id': self.CALENDAR_ITEM,
                }
            )
        except (ClientError, BotoCoreError) as e:
            raise StoreError(f"Error reading calendar {calendar_type} for {account}: {e}") from e
        return response.get('Item')

    def create_calendar(self, account: str, calendar_type: str) -> bool:
        """
        Create the calendar entity for an account and type.

        Args:
            account: Account name
            calendar_type: Calendar type tag

        Returns:
            True if created, False if it already existed
        """
        item = {
            'calendar_key': self.calendar_key(account, calendar_type),
            'event_id': self.CALENDAR_ITEM,
            'account': account,
            'calendar_type': calendar_type,
            'created_at': int(time.time()),
        }
        try:
            self.table.put_item(
                Item=item,
                ConditionExpression='attribute_not_exists(calendar_key)',
            )
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException':
                return False
            raise StoreError(f"Error creating calendar {calendar_type} for {account}: {e}") from e
        except BotoCoreError as e:
            raise StoreError(f"Error creating calendar {calendar_type} for {account}: {e}") from e

        logger.info(f"Created calendar {calendar_type} for account {account}")
        return True

    def ensure_calendar(self, account: str, calendar_type: str) -> None:
        if self.get_calendar(account, calendar_type) is None:
            self.create_calendar(account, calendar_type)

    def delete_calendar(self, account: str, calendar_type: str) -> int:
        """
        Delete a calendar and every event stored in it.

        Args:
            account: Account name
            calendar_type: Calendar type tag

        Returns:
            Count of deleted items, calendar item included
        """
        keys = self._query_keys(self.calendar_key(account, calendar_type))
        if not keys:
            return 0

        logger.info(f"Deleting calendar {calendar_type} for account {account} ({len(keys)} items)")
        deleted = 0
        for i in range(0, len(keys), self.BATCH_SIZE):
            batch = keys[i:i + self.BATCH_SIZE]
            try:
                with self.table.batch_writer() as writer:
                    for event_id in batch:
                        writer.delete_item(Key={
                            'calendar_key': self.calendar_key(account, calendar_type),
                            'event_id': event_id,
                        })
                        deleted += 1
            except (ClientError, BotoCoreError) as e:
                raise StoreError(
                    f"Error deleting batch {i // self.BATCH_SIZE + 1} of calendar {calendar_type}: {e}"
                ) from e
        return deleted

    def upsert_event(self, account: str, calendar_type: str, record: EventRecord) -> None:
        item = self._record_to_item(account, calendar_type, record)
        try:
            self.table.put_item(Item=item)
        except (ClientError, BotoCoreError) as e:
            raise StoreError(f"Error writing event {record.external_id}: {e}") from e

    def delete_event(self, account: str, calendar_type: str, external_id: str) -> None:
        try:
            self.table.delete_item(Key={
                'calendar_key': self.calendar_key(account, calendar_type),
                'event_id': external_id,
            })
        except (ClientError, BotoCoreError) as e:
            raise StoreError(f"Error deleting event {external_id}: {e}") from e

    def get_event(self, account: str, calendar_type: str, external_id: str) -> Optional[dict]:
        try:
            response = self.table.get_item(Key={
                'calendar_key': self.calendar_key(account, calendar_type),
                'event_id': external_id,
            })
        except (ClientError, BotoCoreError) as e:
            raise StoreError(f"Error reading event {external_id}: {e}") from e
        return response.get('Item')

    def get_stored_fingerprints(self, account: str, calendar_type: str) -> Dict[str, str]:
        """
        Map every stored external id of a calendar to its fingerprint.

        Args:
            account: Account name
            calendar_type: Calendar type tag

        Returns:
            Dictionary mapping external id to fingerprint
        """
        items = self._query_items(self.calendar_key(account, calendar_type))
        return {
            item['event_id']: item.get('fingerprint', '')
            for item in items
            if item['event_id'] != self.CALENDAR_ITEM
        }

    def list_stored_external_ids(self, account: str, calendar_type: str) -> Set[str]:
        return set(self.get_stored_fingerprints(account, calendar_type))

    def _query_items(self, calendar_key: str) -> List[dict]:
        """Query a whole partition, following pagination."""
        try:
            response = self.table.query(
                KeyConditionExpression=Key('calendar_key').eq(calendar_key)
            )
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.query(
                    KeyConditionExpression=Key('calendar_key').eq(calendar_key),
                    ExclusiveStartKey=response['LastEvaluatedKey'],
                )
                items.extend(response.get('Items', []))
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error querying partition {calendar_key}: {e}")
            raise StoreError(f"Error querying partition {calendar_key}: {e}") from e
        return items

    def _query_keys(self, calendar_key: str) -> List[str]:
        return [item['event_id'] for item in self._query_items(calendar_key)]

    def _record_to_item(self, account: str, calendar_type: str, record: EventRecord) -> dict:
        """
        Convert an EventRecord to a DynamoDB item.

        Args:
            account: Account name
            calendar_type: Calendar type tag
            record: EventRecord to store

        Returns:
            DynamoDB item dictionary
        """
        item = {
            'calendar_key': self.calendar_key(account, calendar_type),
            'event_id': record.external_id,
            'title': record.title,
            'description': record.description,
            'location': record.location,
            'start': record.start.isoformat(),
            'end': record.end.isoformat(),
            'all_day': record.all_day,
            'cancelled': record.cancelled,
            'rsvp_status': record.rsvp_status.value,
            'attendees': [{'name': 'self', 'status': record.rsvp_status.value}],
            'source': record.source.value,
            'fingerprint': record.fingerprint,
            'last_updated': int(time.time()),
        }

        # Add optional fields if present
        if record.organizer:
            item['organizer'] = record.organizer
        if record.recurrence:
            item['recurrence'] = record.recurrence

        return item
