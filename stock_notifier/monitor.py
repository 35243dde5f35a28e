"""Reconcile-evaluate-dispatch cycle for one snapshot.

Both the stream and the fallback poller feed snapshots through
``StockMonitor.handle_snapshot``.  Category memory is updated once per
snapshot before any subscriber is evaluated, so every subscriber sees
the same answer to "is this new".
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Optional, Protocol, Set

from .differ import ChangeReport, SnapshotDiffer
from .dispatcher import Dispatcher, DispatchResult
from .evaluator import AlertEvaluator, format_stock_status
from .ratelimit import Cooldown, RateLimiter, cooldown_message
from .stock import Snapshot, WatchList
from .utils import ConfigurationError

logger = logging.getLogger(__name__)


class Directory(Protocol):
    def active_subscribers(self) -> FrozenSet[str]: ...

    def watch_list(self, user_id: str) -> Optional[WatchList]: ...


@dataclass
class MonitorRound:
    report: ChangeReport
    alerts: int = 0
    result: DispatchResult = field(default_factory=DispatchResult)


class StockMonitor:
    def __init__(
        self,
        differ: SnapshotDiffer,
        evaluator: AlertEvaluator,
        dispatcher: Dispatcher,
        directory: Directory,
        *,
        fetch: Optional[Callable[[], Snapshot]] = None,
        rate_limiter: Optional[RateLimiter] = None,
        cooldown: Optional[Cooldown] = None,
    ) -> None:
        missing = [name for name, dep in (
            ("differ", differ),
            ("evaluator", evaluator),
            ("dispatcher", dispatcher),
            ("directory", directory),
        ) if dep is None]
        if missing:
            raise ConfigurationError(f"StockMonitor is missing: {', '.join(missing)}")
        self.differ = differ
        self.evaluator = evaluator
        self.dispatcher = dispatcher
        self.directory = directory
        self.fetch = fetch
        self.rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter()
        self.cooldown = cooldown if cooldown is not None else Cooldown()
        self.last_snapshot: Optional[Snapshot] = None

    def _watch_list(self, user_id: str) -> Optional[WatchList]:
        try:
            return self.directory.watch_list(user_id)
        except Exception:
            logger.exception("Could not load watch list for %s; using defaults", user_id)
            return None

    def handle_snapshot(self, snapshot: Snapshot, realtime: bool = True) -> MonitorRound:
        logger.info("Processing %s stock update...", "real-time" if realtime else "scheduled")
        self.last_snapshot = snapshot
        report = self.differ.reconcile(snapshot)
        round_ = MonitorRound(report)

        subscribers = self.directory.active_subscribers()
        if not subscribers:
            logger.info("No subscribers to notify.")
            return round_

        # Subscribers with the same alert text share one fan-out.
        groups: Dict[str, Set[str]] = defaultdict(set)
        for user_id in subscribers:
            watch_list = self._watch_list(user_id)
            alert = self.evaluator.evaluate(snapshot, watch_list, report, realtime=realtime)
            if alert is not None:
                groups[alert.text].add(user_id)

        if not groups:
            logger.info("No matching stock found at this time")
            return round_

        round_.alerts = len(groups)
        for text, recipients in groups.items():
            result = self.dispatcher.dispatch(text, recipients)
            round_.result = round_.result.merge(result)

        logger.info(
            "Alert round done: %d distinct alert(s), %d delivered, %d failed",
            round_.alerts, len(round_.result.succeeded), len(round_.result.failed),
        )
        return round_

    def handle_realtime(self, snapshot: Snapshot) -> MonitorRound:
        return self.handle_snapshot(snapshot, realtime=True)

    def handle_scheduled(self, snapshot: Snapshot) -> MonitorRound:
        return self.handle_snapshot(snapshot, realtime=False)

    def stock_status(self, snapshot: Optional[Snapshot] = None) -> str:
        return format_stock_status(snapshot or self.last_snapshot)

    def subscriber_count(self) -> int:
        return len(self.directory.active_subscribers())

    def admit(self, user_id: str) -> Optional[str]:
        """Gate for any user command. Returns the refusal text, or None to proceed."""
        return self.rate_limiter.allow(user_id)

    def manual_check(self, user_id: str) -> str:
        """On-demand check for one user.

        Fetches fresh stock, sends ``user_id`` a scheduled-style alert for
        whatever on their watch list is eligible, and returns the stock
        summary.  Category memory is only previewed, so other subscribers
        keep their pending alerts.  Feed errors propagate to the caller.
        """
        if self.fetch is None:
            raise ConfigurationError("Manual checks need a fetch callable")
        remaining = self.cooldown.try_acquire(user_id)
        if remaining is not None:
            return cooldown_message(remaining)

        snapshot = self.fetch()
        self.last_snapshot = snapshot
        report = self.differ.preview(snapshot)
        watch_list = self._watch_list(user_id)
        alert = self.evaluator.evaluate(snapshot, watch_list, report, realtime=False)
        if alert is not None:
            self.dispatcher.dispatch(alert.text, {user_id})
        return self.stock_status(snapshot)


__all__ = ["StockMonitor", "MonitorRound"]
