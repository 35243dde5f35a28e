"""Fallback poller.

Runs a reconciliation on a fixed grid (every 5 minutes of PH time by
default) while the streaming connection is down.  Deadlines are
computed from the wall clock, not from when the process started, so
checks line up with the shop's restock cadence.
"""
from __future__ import annotations

import datetime as _dt
import enum
import logging
import threading
from typing import Any, Callable, Optional

from .stock import Snapshot
from .utils import ConfigurationError, FeedUnavailableError, MalformedSnapshotError

logger = logging.getLogger(__name__)

# A run closer than this fraction of the interval to the previous one is a duplicate.
DUPLICATE_RUN_FRACTION = 0.8


def _utcnow() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def next_deadline(
    now: _dt.datetime,
    interval: _dt.timedelta = _dt.timedelta(minutes=5),
    utc_offset: _dt.timedelta = _dt.timedelta(hours=8),
) -> _dt.datetime:
    """Round ``now`` up to the next interval boundary in the given offset.

    The result is strictly after ``now`` and carries ``now``'s tzinfo
    (naive input is taken as UTC).
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=_dt.timezone.utc)
    local = now.astimezone(_dt.timezone(utc_offset))
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    elapsed = local - midnight
    slots = elapsed // interval + 1
    deadline = midnight + slots * interval
    return deadline.astimezone(now.tzinfo)


class PollerState(enum.Enum):
    IDLE = "idle"
    WAITING = "waiting"
    RUNNING = "running"


class FallbackPoller:
    """Backstop for the streaming path.

    ``fetch`` returns a Snapshot; ``handle`` consumes it (the monitor).
    A run is skipped when there are no subscribers or the stream is
    healthy, and suppressed when it lands too close to the previous run.
    """

    def __init__(
        self,
        fetch: Callable[[], Snapshot],
        handle: Callable[[Snapshot], Any],
        *,
        stream_active: Callable[[], bool] = lambda: False,
        subscriber_count: Callable[[], int] = lambda: 1,
        interval: _dt.timedelta = _dt.timedelta(minutes=5),
        utc_offset: _dt.timedelta = _dt.timedelta(hours=8),
        clock: Callable[[], _dt.datetime] = _utcnow,
    ) -> None:
        if fetch is None or handle is None:
            raise ConfigurationError("Fallback poller needs a fetch and a handle callable")
        self._fetch = fetch
        self._handle = handle
        self._stream_active = stream_active
        self._subscriber_count = subscriber_count
        self.interval = interval
        self.utc_offset = utc_offset
        self._clock = clock

        self.state = PollerState.IDLE
        self.next_run: Optional[_dt.datetime] = None
        self.last_run: Optional[_dt.datetime] = None
        self._run_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def compute_next_deadline(self, now: Optional[_dt.datetime] = None) -> _dt.datetime:
        return next_deadline(now or self._clock(), self.interval, self.utc_offset)

    def is_duplicate(self, now: _dt.datetime) -> bool:
        if self.last_run is None:
            return False
        return now - self.last_run < self.interval * DUPLICATE_RUN_FRACTION

    def run_once(self, now: Optional[_dt.datetime] = None) -> bool:
        """Poll once if allowed. Returns True when a snapshot was handled."""
        now = now or self._clock()
        if not self._run_lock.acquire(blocking=False):
            logger.info("Poll already in progress; skipping.")
            return False
        try:
            if self.is_duplicate(now):
                logger.info("Skipping poll: previous run at %s is too recent.", self.last_run.isoformat())
                return False
            if self._subscriber_count() <= 0:
                logger.info("No subscribers to notify; skipping poll.")
                return False
            if self._stream_active():
                logger.debug("Stream is active; skipping poll.")
                return False

            self.state = PollerState.RUNNING
            self.last_run = now
            logger.info("Running scheduled stock check...")
            try:
                snapshot = self._fetch()
            except (FeedUnavailableError, MalformedSnapshotError) as e:
                logger.warning("Scheduled stock check failed: %s", e)
                return False
            self._handle(snapshot)
            return True
        finally:
            if self.state is PollerState.RUNNING:
                self.state = PollerState.IDLE
            self._run_lock.release()

    # ---- background loop ---------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="fallback-poller", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self.state = PollerState.IDLE

    def _loop(self) -> None:
        while not self._stop.is_set():
            now = self._clock()
            self.next_run = self.compute_next_deadline(now)
            self.state = PollerState.WAITING
            local = self.next_run.astimezone(_dt.timezone(self.utc_offset))
            logger.info("Next stock check scheduled at: %s", local.isoformat())
            if self._stop.wait((self.next_run - now).total_seconds()):
                break
            try:
                self.run_once()
            except Exception:
                logger.exception("Error in fallback poll")
        self.state = PollerState.IDLE


__all__ = ["FallbackPoller", "PollerState", "next_deadline", "DUPLICATE_RUN_FRACTION"]
