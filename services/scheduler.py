"""Manual and periodic sync triggers backed by EventBridge."""
import json
import logging
import math
import re

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Triggers passes immediately or configures an EventBridge schedule."""

    def __init__(self, engine, target_arn: str, rule_prefix: str, region_name: str = None):
        """
        Args:
            engine: SyncEngine running the passes
            target_arn: ARN of the function invoked by periodic rules
            rule_prefix: Prefix of the per-account rule names
            region_name: AWS region, defaults to the environment's
        """
        self.engine = engine
        self.target_arn = target_arn
        self.rule_prefix = rule_prefix
        self.client = boto3.client('events', region_name=region_name)

    def rule_name(self, account: str) -> str:
        # Rule names allow [.\-_A-Za-z0-9] only
        safe_account = re.sub(r'[^.\-_A-Za-z0-9]', '_', account)
        return f"{self.rule_prefix}-{safe_account}"[:64]

    def trigger_sync(self, account: str):
        """Run a pass for the account right away."""
        logger.info(f"Explicitly requested sync for account {account}")
        return self.engine.sync(account)

    def configure_periodic(self, account: str, interval_seconds: int) -> None:
        """
        Schedule periodic passes for an account.

        Args:
            account: Account name
            interval_seconds: Interval between passes, 0 disables the schedule
        """
        name = self.rule_name(account)
        self._remove_rule(name)
        if interval_seconds <= 0:
            logger.info(f"Disabled periodic sync for account {account}")
            return

        if not self.target_arn:
            raise ValueError("SYNC_FUNCTION_ARN must be set to schedule periodic syncs")

        minutes = max(1, math.ceil(interval_seconds / 60))
        unit = 'minute' if minutes == 1 else 'minutes'
        self.client.put_rule(
            Name=name,
            ScheduleExpression=f"rate({minutes} {unit})",
            State='ENABLED',
            Description=f"Periodic event sync for {account}",
        )
        self.client.put_targets(
            Rule=name,
            Targets=[{
                'Id': 'sync',
                'Arn': self.target_arn,
                'Input': json.dumps({'account': account}),
            }],
        )
        logger.info(f"Scheduled periodic sync for account {account}, interval: {minutes} min")

    def _remove_rule(self, name: str) -> None:
        try:
            self.client.describe_rule(Name=name)
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'ResourceNotFoundException':
                return
            raise
        self.client.remove_targets(Rule=name, Ids=['sync'])
        self.client.delete_rule(Name=name)
