"""Per-user throttling and sent-message bookkeeping.

All state here lives in memory and is lost on restart.  Every structure
takes an injectable clock and guards its maps with a lock, since both
the command front end and the alert threads touch them.
"""
from __future__ import annotations

import datetime as _dt
import hashlib
import logging
import math
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Optional

logger = logging.getLogger(__name__)


def _utcnow() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


@dataclass
class _Usage:
    last_command: Optional[_dt.datetime] = None
    day: Optional[_dt.date] = None
    count: int = 0
    recent: Deque[_dt.datetime] = field(default_factory=deque)


class RateLimiter:
    """Command throttling for one process.

    A user is refused when the previous command was too recent, when the
    daily allowance is spent (days roll over at local midnight in
    ``utc_offset``), or when too many commands landed inside the sliding
    message window.
    """

    def __init__(
        self,
        *,
        command_cooldown: _dt.timedelta = _dt.timedelta(seconds=2),
        daily_limit: int = 100,
        message_limit: int = 5,
        message_window: _dt.timedelta = _dt.timedelta(seconds=60),
        utc_offset: _dt.timedelta = _dt.timedelta(hours=8),
        clock: Callable[[], _dt.datetime] = _utcnow,
    ) -> None:
        self.command_cooldown = command_cooldown
        self.daily_limit = daily_limit
        self.message_limit = message_limit
        self.message_window = message_window
        self.utc_offset = utc_offset
        self._clock = clock
        self._usage: Dict[str, _Usage] = {}
        self._lock = threading.Lock()

    def _today(self, now: _dt.datetime) -> _dt.date:
        return now.astimezone(_dt.timezone(self.utc_offset)).date()

    def _refusal(self, usage: _Usage, now: _dt.datetime) -> Optional[str]:
        # caller holds self._lock
        if usage.last_command is not None:
            wait = self.command_cooldown - (now - usage.last_command)
            if wait > _dt.timedelta(0):
                seconds = math.ceil(wait.total_seconds())
                return f"⏳ Please wait {seconds} second(s) before using another command."

        if usage.day != self._today(now):
            usage.day = self._today(now)
            usage.count = 0
        if usage.count >= self.daily_limit:
            return (
                f"❌ You have reached your daily command limit of {self.daily_limit} "
                "commands. Please try again tomorrow."
            )

        while usage.recent and now - usage.recent[0] >= self.message_window:
            usage.recent.popleft()
        if len(usage.recent) >= self.message_limit:
            wait = self.message_window - (now - usage.recent[0])
            seconds = math.ceil(wait.total_seconds())
            return f"⏳ You are sending messages too quickly. Please wait {seconds} second(s)."
        return None

    def check(self, user_id: str, now: Optional[_dt.datetime] = None) -> Optional[str]:
        """Return the refusal text for ``user_id``, or None when allowed. Records nothing."""
        now = now or self._clock()
        with self._lock:
            return self._refusal(self._usage.setdefault(user_id, _Usage()), now)

    def record(self, user_id: str, now: Optional[_dt.datetime] = None) -> None:
        now = now or self._clock()
        with self._lock:
            usage = self._usage.setdefault(user_id, _Usage())
            if usage.day != self._today(now):
                usage.day = self._today(now)
                usage.count = 0
            usage.last_command = now
            usage.count += 1
            usage.recent.append(now)

    def allow(self, user_id: str, now: Optional[_dt.datetime] = None) -> Optional[str]:
        """check() and, when allowed, record() as one step."""
        now = now or self._clock()
        with self._lock:
            usage = self._usage.setdefault(user_id, _Usage())
            refusal = self._refusal(usage, now)
            if refusal is None:
                usage.last_command = now
                usage.count += 1
                usage.recent.append(now)
        if refusal is not None:
            logger.info("Rate limited %s", user_id)
        return refusal


class Cooldown:
    """One action per user per ``period`` (the manual stock check)."""

    def __init__(
        self,
        period: _dt.timedelta = _dt.timedelta(minutes=5),
        *,
        clock: Callable[[], _dt.datetime] = _utcnow,
    ) -> None:
        self.period = period
        self._clock = clock
        self._last: Dict[str, _dt.datetime] = {}
        self._lock = threading.Lock()

    def remaining(self, user_id: str, now: Optional[_dt.datetime] = None) -> _dt.timedelta:
        now = now or self._clock()
        with self._lock:
            last = self._last.get(user_id)
        if last is None:
            return _dt.timedelta(0)
        return max(self.period - (now - last), _dt.timedelta(0))

    def try_acquire(self, user_id: str, now: Optional[_dt.datetime] = None) -> Optional[_dt.timedelta]:
        """Start a new period for ``user_id``, or return how long is left of the current one."""
        now = now or self._clock()
        with self._lock:
            last = self._last.get(user_id)
            if last is not None and now - last < self.period:
                return self.period - (now - last)
            self._last[user_id] = now
        return None


def cooldown_message(remaining: _dt.timedelta) -> str:
    minutes = math.ceil(remaining.total_seconds() / 60)
    return f"⏳ Please wait {minutes} minute(s) before checking again."


class SentMessageLog:
    """Remembers recently sent texts for ``ttl``.

    The webhook receives echoes of the page's own messages; anything
    found here is one of those.
    """

    def __init__(
        self,
        ttl: _dt.timedelta = _dt.timedelta(seconds=60),
        *,
        clock: Callable[[], _dt.datetime] = _utcnow,
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self._sent: Dict[str, _dt.datetime] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(text: str) -> str:
        return hashlib.sha1(text.encode("utf-8")).hexdigest()

    def _prune(self, now: _dt.datetime) -> None:
        # caller holds self._lock
        expired = [key for key, at in self._sent.items() if now - at >= self.ttl]
        for key in expired:
            del self._sent[key]

    def track(self, text: str, now: Optional[_dt.datetime] = None) -> None:
        now = now or self._clock()
        with self._lock:
            self._prune(now)
            self._sent[self._key(text)] = now

    def is_recent(self, text: str, now: Optional[_dt.datetime] = None) -> bool:
        now = now or self._clock()
        with self._lock:
            self._prune(now)
            return self._key(text) in self._sent

    def __len__(self) -> int:
        with self._lock:
            return len(self._sent)


__all__ = ["RateLimiter", "Cooldown", "SentMessageLog", "cooldown_message"]
