"""Per-subscriber alert evaluation and message formatting."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .differ import BUNDLED, ChangeReport
from .stock import (Cadence, Category, DEFAULT_WATCH_LIST, Snapshot,
                    TRACKED_CATEGORIES, WatchList, format_item_name)

logger = logging.getLogger(__name__)

REALTIME_HEADER = "🔔 Real-time Stock Alert!"
SCHEDULED_HEADER = "📦 Scheduled Stock Alert!"


@dataclass(frozen=True)
class FormattedAlert:
    text: str
    categories: Tuple[Category, ...]


def _format_block(category: Category, item_ids: List[str]) -> str:
    lines = "\n".join(f"• {format_item_name(i)}" for i in item_ids)
    return f"{category.label}\n{lines}"


class AlertEvaluator:
    """Turns a snapshot plus a watch list into an alert, or None.

    A category contributes when the subscriber watches at least one of
    its items and the change report marked it eligible.  A slow-restock
    category that is only eligible through bundling rides along only
    when this subscriber already gets an immediate category.
    """

    def __init__(self, default_watch_list: WatchList = DEFAULT_WATCH_LIST) -> None:
        self.default_watch_list = default_watch_list

    def evaluate(
        self,
        snapshot: Snapshot,
        watch_list: Optional[WatchList],
        report: ChangeReport,
        *,
        realtime: bool = True,
    ) -> Optional[FormattedAlert]:
        watched = watch_list or self.default_watch_list

        matches: List[Tuple[Category, List[str]]] = []
        for cat in Category:
            wanted = watched.get(cat)
            if not wanted or not report.is_eligible(cat):
                continue
            # Keep feed order, drop duplicates.
            hits = list(dict.fromkeys(i.item_id for i in snapshot.items(cat) if i.item_id in wanted))
            if hits:
                matches.append((cat, hits))

        has_immediate = any(cat.cadence is Cadence.IMMEDIATE and cat.tracked for cat, _ in matches)
        blocks = []
        contributing = []
        for cat, hits in matches:
            if report.reason(cat) == BUNDLED and not has_immediate:
                continue
            blocks.append(_format_block(cat, hits))
            contributing.append(cat)

        if not blocks:
            return None
        header = REALTIME_HEADER if realtime else SCHEDULED_HEADER
        text = header + "\n\n" + "\n\n".join(blocks)
        return FormattedAlert(text, tuple(contributing))


def format_stock_status(snapshot: Optional[Snapshot]) -> str:
    """Summary of everything currently in stock (tracked categories only)."""
    sections = []
    if snapshot is not None:
        for cat in TRACKED_CATEGORIES:
            unique = sorted(snapshot.item_ids(cat))
            if unique:
                lines = "\n".join(f"• {format_item_name(i)}" for i in unique)
                sections.append(f"{cat.label} ({len(unique)} items)\n{lines}")
    if not sections:
        return "❌ No items currently in stock."
    return "📦 Current Stock Status\n\n" + "\n\n".join(sections)


__all__ = [
    "AlertEvaluator",
    "FormattedAlert",
    "format_stock_status",
    "REALTIME_HEADER",
    "SCHEDULED_HEADER",
]
