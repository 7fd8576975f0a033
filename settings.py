"""Environment-based configuration for the event sync function."""
import locale
import os
from dataclasses import dataclass, field
from typing import List


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value.strip() == '':
        return default
    return value.strip().lower() in ('true', '1', 'yes')


@dataclass(frozen=True)
class Settings:
    """Runtime settings read once per invocation."""
    events_table_name: str = 'fb-event-sync-events'
    state_table_name: str = 'fb-event-sync-state'
    secret_prefix: str = 'fb-event-sync'
    notify_topic_arn: str = ''
    log_level: str = 'INFO'
    timeout_seconds: int = 30
    feed_mode: str = 'ical'
    feed_locale: str = 'default'
    events_calendar_enabled: bool = True
    birthdays_calendar_enabled: bool = True
    include_declined: bool = False
    bypass_rate_limit: bool = False
    timezone: str = 'UTC'
    accounts: List[str] = field(default_factory=list)
    sync_function_arn: str = ''
    schedule_rule_prefix: str = 'fb-event-sync'
    region_name: str = None

    @classmethod
    def from_env(cls) -> 'Settings':
        """
        Build settings from environment variables.

        Returns:
            Settings instance with defaults for unset variables
        """
        feed_mode = os.environ.get('FEED_MODE', 'ical').strip().lower()
        if feed_mode not in ('ical', 'graph'):
            raise ValueError(f"Unsupported FEED_MODE: {feed_mode}")

        accounts = [
            name.strip()
            for name in os.environ.get('ACCOUNTS', '').split(',')
            if name.strip()
        ]

        return cls(
            events_table_name=os.environ.get('EVENTS_TABLE_NAME', 'fb-event-sync-events'),
            state_table_name=os.environ.get('STATE_TABLE_NAME', 'fb-event-sync-state'),
            secret_prefix=os.environ.get('SECRET_PREFIX', 'fb-event-sync'),
            notify_topic_arn=os.environ.get('NOTIFY_TOPIC_ARN', ''),
            log_level=os.environ.get('LOG_LEVEL', 'INFO'),
            timeout_seconds=int(os.environ.get('TIMEOUT_SECONDS', '30')),
            feed_mode=feed_mode,
            feed_locale=os.environ.get('FEED_LOCALE', 'default'),
            events_calendar_enabled=_env_bool('EVENTS_CALENDAR_ENABLED', True),
            birthdays_calendar_enabled=_env_bool('BIRTHDAYS_CALENDAR_ENABLED', True),
            include_declined=_env_bool('INCLUDE_DECLINED', False),
            bypass_rate_limit=_env_bool('BYPASS_RATE_LIMIT', False),
            timezone=os.environ.get('TIMEZONE', 'UTC'),
            accounts=accounts,
            sync_function_arn=os.environ.get('SYNC_FUNCTION_ARN', ''),
            schedule_rule_prefix=os.environ.get('SCHEDULE_RULE_PREFIX', 'fb-event-sync'),
            region_name=os.environ.get('AWS_REGION') or None,
        )

    def resolved_locale(self) -> str:
        """Locale sent to the iCal feed, e.g. ``en_US``."""
        if self.feed_locale and self.feed_locale != 'default':
            return self.feed_locale
        language = locale.getlocale()[0]
        if not language or language in ('C', 'POSIX'):
            return 'en_US'
        # Strip any encoding suffix such as "en_US.UTF-8"
        return language.split('.')[0]
