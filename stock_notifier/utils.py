"""Helper utilities.

This module centralises common helper functions such as creating a
configured HTTP session, applying retry policies to network calls and
the error types shared across the service.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

import requests
from requests import Response
from tenacity import (after_log, retry, retry_if_exception_type,
                      stop_after_attempt, wait_exponential)


logger = logging.getLogger(__name__)


def get_http_session() -> requests.Session:
    """Return a new HTTP session with sensible defaults.

    Caller is responsible for closing the session or letting it be
    garbage collected.
    """
    session = requests.Session()
    session.headers.update(
        {
            "User-Agent": "RelStocks-Bot/1.1",
            "Accept": "application/json",
        }
    )
    return session


class HTTPError(Exception):
    """Raised when an HTTP request fails after retries."""


class RetryableStatus(HTTPError):
    """Server asked us to back off (429) or failed (>= 500)."""


class FeedUnavailableError(Exception):
    """Transient I/O failure while talking to the stock feed."""


class MalformedSnapshotError(ValueError):
    """A stock payload could not be parsed into a snapshot."""


class ConfigurationError(RuntimeError):
    """A required collaborator or setting is missing."""


def _raise_for_status(resp: Response) -> None:
    try:
        resp.raise_for_status()
    except requests.RequestException as e:
        raise HTTPError(str(e)) from e


def retrying(attempts: int = 5, *, min_wait: float = 1, max_wait: float = 10) -> Callable[..., Callable[..., Response]]:
    """Decorator factory to apply retry logic to HTTP calls.

    The decorated function must accept a `requests.Session` as its first
    argument, followed by URL and optional kwargs, and return a
    `requests.Response`.  Retries are attempted for network errors,
    rate limiting (429) and server errors (status >= 500), at most
    ``attempts`` times with exponential back-off between ``min_wait``
    and ``max_wait`` seconds.  Other 4xx responses fail immediately.
    """

    def decorator(method: Callable[..., Response]) -> Callable[..., Response]:
        @retry(
            reraise=True,
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
            retry=(
                retry_if_exception_type(requests.RequestException)
                | retry_if_exception_type(RetryableStatus)
            ),
            after=after_log(logger, logging.WARNING),
        )
        def wrapper(session: requests.Session, url: str, **kwargs: Any) -> Response:
            response = method(session, url, **kwargs)
            if response.status_code == 429 or response.status_code >= 500:
                raise RetryableStatus(f"Server returned status {response.status_code}")
            _raise_for_status(response)
            return response

        return wrapper

    return decorator


# Default policy for outbound calls.
retryable_request = retrying()


__all__ = [
    "get_http_session",
    "retrying",
    "retryable_request",
    "HTTPError",
    "RetryableStatus",
    "FeedUnavailableError",
    "MalformedSnapshotError",
    "ConfigurationError",
]
