"""Messenger notifier.

Sends alert text to a single recipient via the Graph API send endpoint.
Rate limiting and server errors are retried a bounded number of times;
any other failure is logged and reported as ``False``.
"""
from __future__ import annotations

import logging
from typing import Optional

import requests

from .config import GRAPH_API_URL, PAGE_ACCESS_TOKEN
from .ratelimit import SentMessageLog
from .utils import ConfigurationError, HTTPError, get_http_session, retrying

logger = logging.getLogger(__name__)

# Messenger rejects text messages above this length.
MAX_MESSAGE_LENGTH = 2000


@retrying(4, min_wait=1, max_wait=8)
def _post(session: requests.Session, url: str, **kwargs) -> requests.Response:
    return session.post(url, **kwargs)


def _truncate(text: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


def build_payload(recipient_id: str, text: str) -> dict:
    return {
        "messaging_type": "UPDATE",
        "recipient": {"id": recipient_id},
        "message": {"text": _truncate(text)},
    }


class MessengerChannel:
    def __init__(
        self,
        page_access_token: Optional[str] = None,
        api_url: str = GRAPH_API_URL,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        sent_log: Optional[SentMessageLog] = None,
    ) -> None:
        token = page_access_token if page_access_token is not None else PAGE_ACCESS_TOKEN
        if not token:
            raise ConfigurationError("PAGE_ACCESS_TOKEN is not configured. Cannot send messages.")
        self._token = token
        self.api_url = api_url
        self.timeout = timeout
        self._session = session or get_http_session()
        self.sent_log = sent_log if sent_log is not None else SentMessageLog()

    def send(self, recipient_id: str, text: str) -> bool:
        """Deliver ``text`` to ``recipient_id``. Never raises for delivery failures."""
        if not recipient_id:
            raise ValueError("recipient_id is required")
        payload = build_payload(recipient_id, text)
        try:
            _post(
                self._session,
                self.api_url,
                params={"access_token": self._token},
                json=payload,
                timeout=self.timeout,
            )
        except (requests.RequestException, HTTPError) as e:
            logger.warning("Failed to send message to %s: %s", recipient_id, e)
            return False
        self.sent_log.track(payload["message"]["text"])
        logger.info("Message sent to: %s", recipient_id)
        return True

    def is_echo(self, text: str) -> bool:
        """True when ``text`` is something this channel sent a moment ago."""
        return self.sent_log.is_recent(text)

    def close(self) -> None:
        self._session.close()


__all__ = ["MessengerChannel", "build_payload", "MAX_MESSAGE_LENGTH"]
