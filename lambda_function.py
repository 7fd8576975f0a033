"""AWS Lambda handler for event and birthday calendar sync."""
import json
import logging
import time
from typing import Any, Dict, List

from feed.graph_client import GraphClient
from feed.ical_client import ICalClient
from processor.event_normalizer import EventNormalizer
from services.credentials import SecretsManagerCredentialStore
from services.notifier import SnsNotifier
from services.scheduler import SyncScheduler
from settings import Settings
from storage.dynamodb_store import DynamoDBCalendarStore
from storage.state_store import SyncStateStore
from sync.engine import SyncEngine


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    EXTRA_KEYS = ('account', 'outcome', 'error_type', 'duration_seconds')

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key in self.EXTRA_KEYS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def build_engine(settings: Settings) -> SyncEngine:
    """Wire the sync engine with its AWS and HTTP collaborators."""
    return SyncEngine(
        settings=settings,
        store=DynamoDBCalendarStore(settings.events_table_name, region_name=settings.region_name),
        state_store=SyncStateStore(settings.state_table_name, region_name=settings.region_name),
        credential_store=SecretsManagerCredentialStore(
            settings.secret_prefix, region_name=settings.region_name
        ),
        notifier=SnsNotifier(settings.notify_topic_arn, region_name=settings.region_name),
        graph_client=GraphClient(timeout=settings.timeout_seconds),
        ical_client=ICalClient(timeout=settings.timeout_seconds),
        normalizer=EventNormalizer(timezone=settings.timezone),
    )


def _accounts_from_event(event: Dict[str, Any], settings: Settings) -> List[str]:
    if event.get('account'):
        return [event['account']]
    if event.get('accounts'):
        return list(event['accounts'])
    return list(settings.accounts)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function.

    Args:
        event: EventBridge schedule payload or direct invocation payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and per-account results
    """
    event = event or {}
    start_time = time.time()

    logger = logging.getLogger(__name__)
    try:
        settings = Settings.from_env()
    except ValueError as e:
        setup_logging()
        logger.error(
            f"Invalid configuration: {str(e)}",
            extra={'error_type': type(e).__name__}
        )
        return _response(400, {
            'message': 'Invalid configuration',
            'error': str(e),
            'error_type': type(e).__name__,
        })
    setup_logging(settings.log_level)

    logger.info(
        "Lambda execution started",
        extra={'account': event.get('account')}
    )

    try:
        engine = build_engine(settings)
        scheduler = SyncScheduler(
            engine,
            target_arn=settings.sync_function_arn,
            rule_prefix=settings.schedule_rule_prefix,
            region_name=settings.region_name,
        )

        if event.get('action') == 'configure_periodic':
            account = event.get('account')
            if not account:
                return _response(400, {'message': 'configure_periodic requires an account'})
            interval = int(event.get('interval_seconds', 0))
            scheduler.configure_periodic(account, interval)
            return _response(200, {
                'message': 'Periodic sync configured',
                'account': account,
                'interval_seconds': interval,
            })

        accounts = _accounts_from_event(event, settings)
        if not accounts:
            logger.warning("No account to sync")
            return _response(400, {'message': 'No account to sync'})

        results = {}
        for account in accounts:
            results[account] = scheduler.trigger_sync(account).to_dict()

        duration = time.time() - start_time
        logger.info(
            "Lambda execution completed successfully",
            extra={'duration_seconds': round(duration, 2)}
        )
        return _response(200, {
            'message': 'Sync completed',
            'results': results,
            'duration_seconds': round(duration, 2),
        })

    except Exception as e:
        duration = time.time() - start_time

        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )

        return _response(500, {
            'message': 'Sync failed',
            'error': str(e),
            'error_type': type(e).__name__,
            'duration_seconds': round(duration, 2)
        })


def _response(status_code: int, body: dict) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'body': json.dumps(body)
    }
