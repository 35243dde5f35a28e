from __future__ import annotations

import logging
from typing import Optional

import requests

from .config import FEED_API_BASE_URL, FEED_TIMEOUT_SECONDS
from .stock import Snapshot, parse_snapshot
from .utils import HTTPError, FeedUnavailableError, get_http_session, retrying

logger = logging.getLogger(__name__)


# Up to 3 attempts, exponential back-off (1s, 2s, ...) capped at 5s.
@retrying(3, min_wait=1, max_wait=5)
def _get(session: requests.Session, url: str, **kwargs: dict) -> requests.Response:
    """Thin wrapper around session.get with the feed retry policy."""
    return session.get(url, **kwargs)


def _build_stock_endpoint(base_url: str) -> str:
    return f"{base_url.rstrip('/')}/v2/growagarden/stock"


class FeedPoller:
    """Pulls a whole snapshot from the REST API."""

    def __init__(
        self,
        base_url: str = FEED_API_BASE_URL,
        *,
        timeout: float = FEED_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self._session = session

    def fetch_snapshot(self) -> Snapshot:
        """GET the current stock.

        Raises FeedUnavailableError when the API cannot be reached after
        retries and MalformedSnapshotError when the body is unusable.
        """
        close_session = False
        session = self._session
        if session is None:
            session = get_http_session()
            close_session = True

        url = _build_stock_endpoint(self.base_url)
        try:
            try:
                resp = _get(session, url, timeout=self.timeout)
            except (requests.RequestException, HTTPError) as e:
                raise FeedUnavailableError(f"Stock API request failed: {e}") from e
            if resp.status_code != 200:
                raise FeedUnavailableError(f"Unexpected status code: {resp.status_code}")
            logger.debug("Fetched stock from %s", url)
            return parse_snapshot(resp.content)
        finally:
            if close_session:
                session.close()


__all__ = ["FeedPoller"]
