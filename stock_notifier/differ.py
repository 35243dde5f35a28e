"""Snapshot reconciliation.

Decides, once per incoming snapshot and before any subscriber is
looked at, which categories are worth alerting on.  Immediate
categories qualify on presence alone.  Slow-restock categories qualify
on a never-before-seen item, once the quiescence window has elapsed,
or (when bundling is on) because an immediate category fired in the
same snapshot.
"""
from __future__ import annotations

import datetime as _dt
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Iterable, Optional

from .stock import Cadence, Category, Snapshot

logger = logging.getLogger(__name__)

DEFAULT_QUIESCENCE_WINDOW = _dt.timedelta(minutes=30)

# Eligibility reasons
PRESENT = "present"
NEW_ITEM = "new_item"
WINDOW_ELAPSED = "window_elapsed"
BUNDLED = "bundled"


def _utcnow() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


@dataclass
class CategoryMemory:
    last_seen_item_set: FrozenSet[str] = frozenset()
    last_notify_time: Optional[_dt.datetime] = None


@dataclass(frozen=True)
class CategoryChange:
    category: Category
    eligible: bool
    reason: Optional[str] = None
    new_items: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class ChangeReport:
    """Per-category eligibility for one snapshot."""

    changes: Dict[Category, CategoryChange] = field(default_factory=dict)
    at: Optional[_dt.datetime] = None

    def is_eligible(self, category: Category) -> bool:
        change = self.changes.get(category)
        return bool(change and change.eligible)

    def reason(self, category: Category) -> Optional[str]:
        change = self.changes.get(category)
        return change.reason if change else None

    @property
    def eligible_categories(self) -> list[Category]:
        return [cat for cat, change in self.changes.items() if change.eligible]


class SnapshotDiffer:
    """Owns the process-wide category memory.

    ``reconcile`` is the only writer; the lock is held for the whole call
    so snapshots from the stream and the poller are applied one at a time.
    """

    def __init__(
        self,
        *,
        quiescence_window: _dt.timedelta = DEFAULT_QUIESCENCE_WINDOW,
        bundle_slow_restock: bool = True,
        categories: Iterable[Category] = tuple(Category),
        clock: Callable[[], _dt.datetime] = _utcnow,
    ) -> None:
        self.quiescence_window = quiescence_window
        self.bundle_slow_restock = bundle_slow_restock
        self.categories = tuple(categories)
        self._clock = clock
        self._memory: Dict[Category, CategoryMemory] = {cat: CategoryMemory() for cat in self.categories}
        self._lock = threading.Lock()

    def memory(self, category: Category) -> CategoryMemory:
        with self._lock:
            mem = self._memory[category]
            return CategoryMemory(mem.last_seen_item_set, mem.last_notify_time)

    def reconcile(self, snapshot: Snapshot, now: Optional[_dt.datetime] = None) -> ChangeReport:
        return self._apply(snapshot, now or self._clock(), commit=True)

    def preview(self, snapshot: Snapshot, now: Optional[_dt.datetime] = None) -> ChangeReport:
        """What reconcile() would report, leaving the memory untouched."""
        return self._apply(snapshot, now or self._clock(), commit=False)

    def _apply(self, snapshot: Snapshot, now: _dt.datetime, *, commit: bool) -> ChangeReport:
        changes: Dict[Category, CategoryChange] = {}

        with self._lock:
            immediate = [c for c in self.categories if c.cadence is Cadence.IMMEDIATE]
            slow = [c for c in self.categories if c.cadence is Cadence.SLOW_RESTOCK]

            for cat in immediate:
                ids = snapshot.item_ids(cat)
                changes[cat] = CategoryChange(cat, bool(ids), PRESENT if ids else None)
                if commit:
                    self._memory[cat].last_seen_item_set = ids
            # Cosmetics never pull slow-restock categories along.
            immediate_fired = any(changes[c].eligible for c in immediate if c.tracked)

            for cat in slow:
                changes[cat] = self._reconcile_slow(cat, snapshot.item_ids(cat), now, immediate_fired, commit)

        report = ChangeReport(changes, now)
        if report.eligible_categories:
            logger.debug(
                "Eligible categories: %s",
                ", ".join(f"{c.name.lower()}({report.reason(c)})" for c in report.eligible_categories),
            )
        return report

    def _reconcile_slow(
        self,
        cat: Category,
        ids: FrozenSet[str],
        now: _dt.datetime,
        immediate_fired: bool,
        commit: bool = True,
    ) -> CategoryChange:
        mem = self._memory[cat]
        new_items = ids - mem.last_seen_item_set
        window_elapsed = (
            mem.last_notify_time is None
            or now - mem.last_notify_time >= self.quiescence_window
        )

        reason = None
        if ids:
            if new_items:
                reason = NEW_ITEM
            elif window_elapsed:
                reason = WINDOW_ELAPSED
            elif immediate_fired and self.bundle_slow_restock:
                reason = BUNDLED

        if commit:
            # Only a real window expiry restarts the window.
            if reason is not None and window_elapsed:
                mem.last_notify_time = now
            mem.last_seen_item_set = ids

        return CategoryChange(cat, reason is not None, reason, frozenset(new_items))


__all__ = [
    "CategoryMemory",
    "CategoryChange",
    "ChangeReport",
    "SnapshotDiffer",
    "DEFAULT_QUIESCENCE_WINDOW",
    "PRESENT",
    "NEW_ITEM",
    "WINDOW_ELAPSED",
    "BUNDLED",
]
