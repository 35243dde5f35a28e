"""Concurrent alert fan-out.

Every recipient is attempted in the same wave on its own worker.  Once
the whole wave has settled, the recipients that failed get exactly one
more attempt in a second wave.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Iterable, Set

from .utils import ConfigurationError

logger = logging.getLogger(__name__)

SendFn = Callable[[str, str], bool]


@dataclass
class DispatchResult:
    succeeded: Set[str] = field(default_factory=set)
    failed: Set[str] = field(default_factory=set)

    def merge(self, other: "DispatchResult") -> "DispatchResult":
        return DispatchResult(self.succeeded | other.succeeded, self.failed | other.failed)


class Dispatcher:
    def __init__(self, send: SendFn) -> None:
        if not callable(send):
            raise ConfigurationError("Dispatcher needs a send(recipient_id, text) callable")
        self._send = send

    def _attempt(self, recipient: str, text: str) -> bool:
        try:
            return bool(self._send(recipient, text))
        except Exception:
            logger.exception("Delivery to %s raised", recipient)
            return False

    def _wave(self, text: str, recipients: Set[str]) -> Set[str]:
        """Send to every recipient concurrently; return those that failed."""
        if not recipients:
            return set()
        with ThreadPoolExecutor(max_workers=len(recipients), thread_name_prefix="dispatch") as pool:
            futures = {pool.submit(self._attempt, r, text): r for r in recipients}
            wait(futures)
        return {r for fut, r in futures.items() if not fut.result()}

    def dispatch(self, text: str, recipients: Iterable[str]) -> DispatchResult:
        targets = set(recipients)
        failed = self._wave(text, targets)
        if failed:
            logger.info("Retrying %d of %d recipients", len(failed), len(targets))
            failed = self._wave(text, failed)
        if failed:
            logger.warning("Delivery failed after retry for %d recipient(s): %s",
                           len(failed), ", ".join(sorted(failed)))
        return DispatchResult(targets - failed, failed)


__all__ = ["Dispatcher", "DispatchResult"]
