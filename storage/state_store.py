"""DynamoDB-backed persistence of per-account sync state."""
import logging
from dataclasses import dataclass
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from sync.errors import StoreError

logger = logging.getLogger(__name__)


@dataclass
class SyncState:
    """Persisted rate-limiter and migration state."""
    last_sync: int = 0
    syncs_this_hour: int = 0
    last_version: Optional[int] = None


class SyncStateStore:
    """Reads and writes SyncState items keyed by account."""

    def __init__(self, table_name: str, region_name: str = None):
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.table = self.dynamodb.Table(table_name)

    def load(self, account: str) -> SyncState:
        """
        Load the state of an account.

        Args:
            account: Account name

        Returns:
            SyncState, all defaults if nothing was stored yet
        """
        try:
            response = self.table.get_item(Key={'account': account})
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error loading sync state for {account}: {e}")
            raise StoreError(f"Error loading sync state for {account}: {e}") from e

        item = response.get('Item')
        if not item:
            return SyncState()

        last_version = item.get('last_version')
        return SyncState(
            last_sync=int(item.get('last_sync', 0)),
            syncs_this_hour=int(item.get('syncs_this_hour', 0)),
            last_version=int(last_version) if last_version is not None else None,
        )

    def save_rate_limit(self, account: str, last_sync: int, syncs_this_hour: int) -> None:
        self._update(
            account,
            'SET last_sync = :last_sync, syncs_this_hour = :count',
            {':last_sync': last_sync, ':count': syncs_this_hour},
        )

    def set_last_version(self, account: str, version: int) -> None:
        self._update(account, 'SET last_version = :version', {':version': version})

    def _update(self, account: str, expression: str, values: dict) -> None:
        try:
            self.table.update_item(
                Key={'account': account},
                UpdateExpression=expression,
                ExpressionAttributeValues=values,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error saving sync state for {account}: {e}")
            raise StoreError(f"Error saving sync state for {account}: {e}") from e
