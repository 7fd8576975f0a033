"""Gate limiting how often a sync pass may run."""
import logging
from datetime import datetime

from dateutil import tz

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Minimum spacing and hourly cap for sync passes of one account.

    A pass is rejected when the previous accepted pass started less than
    MIN_INTERVAL_SECONDS ago, or when MAX_SYNCS_PER_HOUR passes were already
    accepted within the current hour-of-day. Accepted passes are recorded
    immediately so overlapping triggers see the new timestamp.
    """

    MIN_INTERVAL_SECONDS = 60
    HOUR_SECONDS = 3600
    MAX_SYNCS_PER_HOUR = 5

    def __init__(self, state_store, account: str, bypass: bool = False, timezone: str = 'UTC'):
        """
        Args:
            state_store: SyncStateStore holding last sync and counter
            account: Account the limits apply to
            bypass: Accept every pass without recording it (debug/test)
            timezone: Zone whose hour-of-day defines the hourly window
        """
        self.state_store = state_store
        self.account = account
        self.bypass = bypass
        self.tz = tz.gettz(timezone) or tz.UTC

    def may_proceed(self, now: datetime) -> bool:
        """
        Decide whether a pass may start at ``now`` and record it if so.

        Args:
            now: Timezone-aware trigger time

        Returns:
            True if the pass may proceed
        """
        if self.bypass:
            logger.debug("Rate limit bypassed")
            return True

        state = self.state_store.load(self.account)
        now_ts = int(now.timestamp())
        elapsed = now_ts - state.last_sync

        if state.last_sync and elapsed < 0:
            logger.warning(
                f"Last sync of {self.account} is {-elapsed} seconds in the future, resetting"
            )
        elif state.last_sync and elapsed < self.MIN_INTERVAL_SECONDS:
            logger.info(
                f"Skipping sync for {self.account}, last sync was only {elapsed} seconds ago"
            )
            return False

        if not state.last_sync or elapsed < 0 or elapsed >= self.HOUR_SECONDS:
            syncs_this_hour = 1
        else:
            last_hour = datetime.fromtimestamp(state.last_sync, self.tz).hour
            now_hour = now.astimezone(self.tz).hour
            logger.debug(f"Last sync hour: {last_hour}, now sync hour: {now_hour}")
            if last_hour != now_hour:
                syncs_this_hour = 1
            else:
                syncs_this_hour = state.syncs_this_hour + 1
            if syncs_this_hour > self.MAX_SYNCS_PER_HOUR:
                logger.info(f"Skipping sync for {self.account}, too many syncs per hour")
                return False

        self.state_store.save_rate_limit(self.account, now_ts, syncs_this_hour)
        return True
