"""Sync engine running one reconciliation pass per trigger."""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from dateutil import tz

from feed.cursor_walker import CursorWalker
from feed.ical_client import ICalFeed, sanitize_uri
from processor.event_normalizer import EventNormalizer
from processor.models import CalendarType, EventRecord, SourceShape, SyncStats
from storage.state_store import SyncStateStore
from sync.auth_gate import AuthFailure, AuthGate, NeedsReauth
from sync.calendars import CalendarSet, SyncContext
from sync.errors import FeedParseError, StoreError, TokenExpiredError, TransportError
from sync.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

# Bump when the local store layout changes; all calendars are recreated
SCHEMA_VERSION = 3

# At most one pass per process
_PASS_LOCK = threading.Lock()


class PassState(Enum):
    IDLE = "idle"
    RATE_LIMIT_CHECK = "rate_limit_check"
    AUTHENTICATING = "authenticating"
    FETCHING = "fetching"
    RECONCILING = "reconciling"
    FINALIZING = "finalizing"


class PassOutcome(Enum):
    SUCCESS = "success"
    ALREADY_RUNNING = "already_running"
    RATE_LIMITED = "rate_limited"
    AUTH_NEEDED = "auth_needed"
    AUTH_FAILED = "auth_failed"
    STORE_FAILED = "store_failed"


@dataclass
class PassResult:
    """Terminal outcome and statistics of one pass."""
    outcome: PassOutcome
    stats: SyncStats
    finalized: List[CalendarType] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'outcome': self.outcome.value,
            'finalized': [calendar_type.value for calendar_type in self.finalized],
            'statistics': self.stats.to_dict(),
        }


class SyncEngine:
    """
    Orchestrates a sync pass.

    States run IDLE -> RATE_LIMIT_CHECK -> AUTHENTICATING -> FETCHING/RECONCILING
    -> FINALIZING -> IDLE, returning to IDLE from any state on failure.
    """

    def __init__(self, settings, store, state_store: SyncStateStore, credential_store,
                 notifier, graph_client=None, ical_client=None,
                 normalizer: Optional[EventNormalizer] = None):
        self.settings = settings
        self.store = store
        self.state_store = state_store
        self.auth_gate = AuthGate(credential_store)
        self.notifier = notifier
        self.graph_client = graph_client
        self.ical_client = ical_client
        self.normalizer = normalizer or EventNormalizer(timezone=settings.timezone)
        self.state = PassState.IDLE

    def sync(self, account: str, now: Optional[datetime] = None) -> PassResult:
        """
        Run one sync pass for an account.

        A trigger arriving while another pass is running is dropped.

        Args:
            account: Account name
            now: Trigger time, defaults to the current time; naive values
                are taken as local time in the configured zone

        Returns:
            PassResult describing how the pass ended
        """
        logger.info(f"performSync request for account {account}")
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            # Naive trigger times are read in the configured zone
            now = now.replace(tzinfo=tz.gettz(self.settings.timezone) or tz.UTC)

        if not _PASS_LOCK.acquire(blocking=False):
            logger.warning("Another sync is already running, dropping this trigger")
            return PassResult(PassOutcome.ALREADY_RUNNING, SyncStats())

        try:
            result = self._run_pass(account, now)
        finally:
            self.state = PassState.IDLE
            _PASS_LOCK.release()

        logger.info(
            f"Sync for {account} done: {result.outcome.value}",
            extra={'account': account, 'outcome': result.outcome.value},
        )
        return result

    def _run_pass(self, account: str, now: datetime) -> PassResult:
        stats = SyncStats()

        self.state = PassState.RATE_LIMIT_CHECK
        limiter = RateLimiter(
            self.state_store,
            account,
            bypass=self.settings.bypass_rate_limit,
            timezone=self.settings.timezone,
        )
        try:
            if not limiter.may_proceed(now):
                return PassResult(PassOutcome.RATE_LIMITED, stats)
        except StoreError as e:
            return self._store_failed(stats, e)

        self.state = PassState.AUTHENTICATING
        auth = self.auth_gate.acquire_credential(account)
        if isinstance(auth, NeedsReauth):
            stats.reauth_requests += 1
            self.notifier.notify_needs_reauthentication(account)
            return PassResult(PassOutcome.AUTH_NEEDED, stats)
        if isinstance(auth, AuthFailure):
            stats.record_auth_failure(auth.kind.value)
            stats.errors.append(f"auth {auth.kind.value}: {auth.message}")
            return PassResult(PassOutcome.AUTH_FAILED, stats)

        context = SyncContext(
            account=account,
            credential=auth,
            store=self.store,
            stats=stats,
            settings=self.settings,
            now=now,
        )
        calendars = CalendarSet(context)
        finalized: List[CalendarType] = []

        try:
            calendars.initialize()
            self._migrate_if_needed(context, calendars)

            if calendars.get(CalendarType.EVENTS).enabled:
                if self._sync_events(context, calendars):
                    self._finalize(calendars, CalendarType.EVENTS, finalized)

            if calendars.get(CalendarType.BIRTHDAYS).enabled:
                if self._sync_ical(context, calendars, ICalFeed.BIRTHDAYS):
                    self._finalize(calendars, CalendarType.BIRTHDAYS, finalized)
        except StoreError as e:
            result = self._store_failed(stats, e)
            result.finalized = finalized
            return result

        return PassResult(PassOutcome.SUCCESS, stats, finalized)

    def _migrate_if_needed(self, context: SyncContext, calendars: CalendarSet) -> None:
        """Recreate every calendar when the stored schema version differs."""
        state = self.state_store.load(context.account)
        if state.last_version == SCHEMA_VERSION:
            return

        logger.info(
            f"New version detected ({state.last_version} -> {SCHEMA_VERSION}): deleting all calendars"
        )
        calendars.delete_all()
        self.state_store.set_last_version(context.account, SCHEMA_VERSION)
        calendars.initialize()

    def _sync_events(self, context: SyncContext, calendars: CalendarSet) -> bool:
        if self.settings.feed_mode == 'graph':
            return self._sync_graph(context, calendars)
        return self._sync_ical(context, calendars, ICalFeed.EVENTS)

    def _sync_graph(self, context: SyncContext, calendars: CalendarSet) -> bool:
        """Walk the JSON feed, reconciling page by page."""
        self.state = PassState.FETCHING
        walker = CursorWalker(self.graph_client, context.credential.access_token, context.now)

        def handle_page(entries: List[dict]) -> List[EventRecord]:
            self.state = PassState.RECONCILING
            records = self._reconcile(entries, SourceShape.GRAPH_JSON, calendars, context)
            self.state = PassState.FETCHING
            return records

        result = walker.walk(handle_page)
        if result.error is not None:
            self._record_feed_error(context, result.error)
            if isinstance(result.error, TokenExpiredError):
                logger.info("Access token expired, invalidating it")
                self.auth_gate.invalidate(context.credential)
        logger.debug(f"Graph walk finished after {result.pages} pages: {result.stop_reason}")
        return result.completed

    def _sync_ical(self, context: SyncContext, calendars: CalendarSet, feed: ICalFeed) -> bool:
        """Fetch one iCal document and reconcile it in a single sweep."""
        self.state = PassState.FETCHING
        tokens = self.auth_gate.acquire_feed_tokens(context.account, context.credential)
        if tokens is None:
            return False

        uri = self.ical_client.build_uri(
            feed, tokens.uid, tokens.key, self.settings.resolved_locale()
        )
        logger.debug(f"Syncing {feed.name.lower()} iCal from {sanitize_uri(uri)}")
        try:
            components = self.ical_client.fetch_events(uri)
        except (TransportError, FeedParseError) as e:
            self._record_feed_error(context, e)
            return False

        self.state = PassState.RECONCILING
        shape = SourceShape.ICAL_BIRTHDAYS if feed is ICalFeed.BIRTHDAYS else SourceShape.ICAL_EVENTS
        self._reconcile(components, shape, calendars, context)
        logger.debug("iCal sync done")
        return True

    def _reconcile(self, entries: List[Any], shape: SourceShape, calendars: CalendarSet,
                   context: SyncContext) -> List[EventRecord]:
        """
        Normalize entries and apply them in feed order.

        Returns:
            Every record normalized, including the ones no calendar accepted
        """
        records = self.normalizer.normalize_entries(entries, shape, context.stats)
        for record in records:
            calendar = calendars.calendar_for_event(record)
            if calendar is None:
                context.stats.unmatched += 1
                continue
            calendar.sync_event(record)
        return records

    def _finalize(self, calendars: CalendarSet, calendar_type: CalendarType,
                  finalized: List[CalendarType]) -> None:
        self.state = PassState.FINALIZING
        calendars.get(calendar_type).finalize_sync()
        finalized.append(calendar_type)

    @staticmethod
    def _record_feed_error(context: SyncContext, error: Exception) -> None:
        if isinstance(error, FeedParseError):
            context.stats.parse_errors += 1
        else:
            context.stats.transport_failures += 1
        context.stats.errors.append(f"{type(error).__name__}: {error}")

    @staticmethod
    def _store_failed(stats: SyncStats, error: StoreError) -> PassResult:
        logger.error(f"Local store failure, aborting pass: {error}")
        stats.store_failures += 1
        stats.errors.append(f"StoreError: {error}")
        return PassResult(PassOutcome.STORE_FAILED, stats)
