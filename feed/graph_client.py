"""Client for the paginated JSON events endpoint."""
import logging
import time
from typing import Optional

import requests

from sync.errors import FeedParseError, TokenExpiredError, TransportError

logger = logging.getLogger(__name__)


class GraphClient:
    """Fetches pages of the viewer's events from the Graph API."""

    BASE_URL = "https://graph.facebook.com/v2.12/me/events"
    EXPIRED_TOKEN_CODE = 190

    def __init__(self, timeout: int = 30, max_retries: int = 3, base_delay: float = 1):
        """
        Initialize the Graph client.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Attempts per page before giving up
            base_delay: First backoff delay in seconds, doubled per attempt
        """
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay

    def fetch(self, access_token: str, fields: str, limit: int,
              after: Optional[str] = None) -> dict:
        """
        Fetch one page of events.

        Args:
            access_token: OAuth access token
            fields: Comma separated field list
            limit: Maximum number of events on the page
            after: Opaque cursor of the previous page

        Returns:
            Decoded response with ``data`` and ``paging`` keys

        Raises:
            TokenExpiredError: The token was rejected
            TransportError: All retry attempts failed
            FeedParseError: The response body is not JSON
        """
        params = {
            'access_token': access_token,
            'fields': fields,
            'limit': str(limit),
        }
        if after is not None:
            params['after'] = after

        response = self._get_with_retry(params)
        try:
            return response.json()
        except ValueError as e:
            raise FeedParseError(f"Graph response is not valid JSON: {e}") from e

    def _get_with_retry(self, params: dict) -> requests.Response:
        for attempt in range(self.max_retries):
            try:
                logger.debug(f"Sending Graph request (attempt {attempt + 1}/{self.max_retries})")
                response = requests.get(self.BASE_URL, params=params, timeout=self.timeout)
                if response.status_code in (400, 401) and self._is_token_error(response):
                    raise TokenExpiredError(
                        "Graph rejected the access token", status_code=response.status_code
                    )
                response.raise_for_status()
                logger.debug("Graph response received")
                return response

            except requests.RequestException as e:
                # Never log the exception text: it contains the request URL with the token
                status = getattr(e.response, 'status_code', None)
                if attempt < self.max_retries - 1:
                    delay = self.base_delay * (2 ** attempt)
                    logger.warning(
                        f"Graph request failed (attempt {attempt + 1}/{self.max_retries}): "
                        f"{type(e).__name__} status={status}. Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.max_retries} Graph attempts failed. "
                        f"Last error: {type(e).__name__} status={status}"
                    )
                    raise TransportError(
                        f"Graph request failed: {type(e).__name__}", status_code=status
                    ) from e

    def _is_token_error(self, response: requests.Response) -> bool:
        try:
            error = response.json().get('error', {})
        except (ValueError, AttributeError):
            return False
        if not isinstance(error, dict):
            return False
        return error.get('code') == self.EXPIRED_TOKEN_CODE or error.get('type') == 'OAuthException'
