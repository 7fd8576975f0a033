"""Client for the iCalendar event and birthday exports."""
import logging
import time
from enum import Enum
from typing import List
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import requests
from icalendar import Calendar

from sync.errors import FeedParseError, TransportError

logger = logging.getLogger(__name__)


class ICalFeed(Enum):
    EVENTS = "/ical/u.php"
    BIRTHDAYS = "/ical/b.php"


_SECRET_PARAMS = ('uid', 'key')


def sanitize_uri(uri: str) -> str:
    """
    Hide the uid and key query parameters of a feed URI.

    Args:
        uri: Feed URI

    Returns:
        URI safe to write to logs
    """
    try:
        parts = urlsplit(uri)
        query = [
            (name, 'hidden' if name in _SECRET_PARAMS else value)
            for name, value in parse_qsl(parts.query, keep_blank_values=True)
        ]
    except ValueError:
        return '<URI parsing error>'
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


class ICalClient:
    """Downloads and parses iCalendar documents."""

    BASE_URL = "https://www.facebook.com"

    def __init__(self, timeout: int = 30, max_retries: int = 3, base_delay: float = 1):
        """
        Initialize the iCal client.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Attempts before giving up
            base_delay: First backoff delay in seconds, doubled per attempt
        """
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay

    def build_uri(self, feed: ICalFeed, uid: str, key: str, locale: str) -> str:
        query = urlencode([('uid', uid), ('key', key), ('locale', locale)])
        return f"{self.BASE_URL}{feed.value}?{query}"

    def fetch_events(self, uri: str) -> list:
        """
        Download a feed and return its VEVENT components.

        Args:
            uri: Feed URI from build_uri

        Returns:
            List of icalendar Event components in document order
        """
        return self.parse(self.fetch(uri))

    def fetch(self, uri: str) -> bytes:
        """
        Download a feed document with retry logic.

        Args:
            uri: Feed URI

        Returns:
            Raw document bytes

        Raises:
            TransportError: If all retry attempts fail
        """
        safe_uri = sanitize_uri(uri)
        for attempt in range(self.max_retries):
            try:
                logger.info(f"Fetching iCal feed (attempt {attempt + 1}/{self.max_retries})")
                response = requests.get(uri, timeout=self.timeout)
                response.raise_for_status()
                return response.content

            except requests.RequestException as e:
                status = getattr(e.response, 'status_code', None)
                if attempt < self.max_retries - 1:
                    delay = self.base_delay * (2 ** attempt)
                    logger.warning(
                        f"iCal request failed (attempt {attempt + 1}/{self.max_retries}): "
                        f"{type(e).__name__} status={status}. Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    body = e.response.text[:200] if e.response is not None else 'Unknown error'
                    logger.error(f"Error retrieving iCal file: {status}, {body}")
                    logger.error(f"URI: {safe_uri}")
                    raise TransportError(
                        f"iCal request failed: {type(e).__name__}", status_code=status
                    ) from e

    def parse(self, document: bytes) -> List:
        """
        Parse an iCalendar document.

        Args:
            document: Raw document bytes

        Returns:
            VEVENT components in document order

        Raises:
            FeedParseError: If the document is empty or not iCalendar
        """
        if not document or not document.strip():
            raise FeedParseError("Response body is empty")
        try:
            calendars = Calendar.from_ical(document, multiple=True)
        except (ValueError, IndexError, KeyError) as e:
            raise FeedParseError(f"Invalid iCalendar document: {e}") from e
        if not calendars:
            raise FeedParseError("Document contains no VCALENDAR")
        return calendars[0].walk('VEVENT')
