"""Pagination over the JSON events feed."""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from processor.models import EventRecord
from sync.errors import FeedParseError, TransportError

logger = logging.getLogger(__name__)


@dataclass
class WalkResult:
    """Outcome of a feed walk."""
    completed: bool
    pages: int
    stop_reason: str
    error: Optional[Exception] = None


class CursorWalker:
    """
    Walks the JSON feed page by page.

    Each page is handed to ``handle_page`` before the next one is requested,
    so records from earlier pages stay applied when a later page fails.
    """

    FIELDS = "id,name,description,place,start_time,end_time,owner,is_canceled,rsvp_status"
    PAGE_LIMIT = 100
    HISTORY_WINDOW = timedelta(days=365)

    def __init__(self, client, access_token: str, now: datetime,
                 page_limit: int = PAGE_LIMIT, history_window: timedelta = HISTORY_WINDOW):
        self.client = client
        self.access_token = access_token
        self.now = now
        self.page_limit = page_limit
        self.history_window = history_window

    def walk(self, handle_page: Callable[[List[dict]], List[EventRecord]]) -> WalkResult:
        """
        Fetch and hand over pages until the feed ends or becomes too old.

        Args:
            handle_page: Applies one page of raw entries, returning the
                records it normalized

        Returns:
            WalkResult; ``completed`` is False only when a fault stopped the walk
        """
        cutoff = self.now - self.history_window
        cursor = None
        pages = 0

        while True:
            try:
                response = self.client.fetch(
                    self.access_token, self.FIELDS, self.page_limit, cursor
                )
                entries = self._page_entries(response)
            except (TransportError, FeedParseError) as e:
                logger.error(f"Feed walk stopped after {pages} pages: {e}")
                return WalkResult(completed=False, pages=pages, stop_reason='fault', error=e)

            pages += 1
            records = handle_page(entries)

            # Only sync events back one year
            if records:
                oldest = min(record.start for record in records)
                if oldest < cutoff:
                    logger.debug(f"Oldest event on page {pages} starts {oldest}, stopping walk")
                    return WalkResult(completed=True, pages=pages, stop_reason='history_window')

            cursor = self._next_cursor(response)
            if cursor is None or not entries:
                return WalkResult(completed=True, pages=pages, stop_reason='end_of_feed')

    @staticmethod
    def _page_entries(response) -> List[dict]:
        if not isinstance(response, dict):
            raise FeedParseError("Graph page is not a JSON object")
        data = response.get('data', [])
        if not isinstance(data, list):
            raise FeedParseError("Graph page 'data' is not a list")
        return data

    @staticmethod
    def _next_cursor(response: dict) -> Optional[str]:
        try:
            return response['paging']['cursors']['after'] or None
        except (KeyError, TypeError):
            return None
