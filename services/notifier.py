"""User notifications published through SNS."""
import json
import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


class SnsNotifier:
    """Publishes user-facing notifications to an SNS topic."""

    def __init__(self, topic_arn: str, region_name: str = None):
        self.topic_arn = topic_arn
        self.client = boto3.client('sns', region_name=region_name) if topic_arn else None

    def notify_needs_reauthentication(self, account: str) -> None:
        """
        Ask the user to sign in again. Failures are logged, never raised.

        Args:
            account: Account whose credential expired
        """
        if self.client is None:
            logger.warning(f"Account {account} needs re-authentication (no notification topic configured)")
            return

        message = {
            'type': 'needs_reauthentication',
            'account': account,
            'title': 'Sign in required',
            'description': 'Event sync needs you to sign in again before it can continue.',
        }
        try:
            self.client.publish(
                TopicArn=self.topic_arn,
                Subject='Event sync: sign in required',
                Message=json.dumps(message),
            )
            logger.info(f"Sent re-authentication notification for account {account}")
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to send re-authentication notification: {e}")
