"""Stock data model.

A snapshot is the whole shop inventory at one point in time, keyed by
category.  The feed always sends whole snapshots, so a category missing
from a payload means the shop has nothing in it.
"""
from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

from .utils import MalformedSnapshotError

logger = logging.getLogger(__name__)


class Cadence(enum.Enum):
    IMMEDIATE = "immediate"
    SLOW_RESTOCK = "slow_restock"


class Category(enum.Enum):
    """Shop categories, declared in display order."""

    SEED = "seed_stock"
    GEAR = "gear_stock"
    EGG = "egg_stock"
    EVENTSHOP = "eventshop_stock"
    COSMETIC = "cosmetic_stock"

    @property
    def label(self) -> str:
        return CATEGORY_LABELS[self]

    @property
    def cadence(self) -> Cadence:
        return CATEGORY_CADENCE[self]

    @property
    def tracked(self) -> bool:
        return self in TRACKED_CATEGORIES


CATEGORY_LABELS: Dict[Category, str] = {
    Category.SEED: "🌱 Seeds",
    Category.GEAR: "🛠️ Gear",
    Category.EGG: "🥚 Eggs",
    Category.EVENTSHOP: "🎪 Event Shop",
    Category.COSMETIC: "🎨 Cosmetics",
}

# Eggs and the event shop restock on a 30 minute cycle; the rest rotate every 5.
CATEGORY_CADENCE: Dict[Category, Cadence] = {
    Category.SEED: Cadence.IMMEDIATE,
    Category.GEAR: Cadence.IMMEDIATE,
    Category.EGG: Cadence.SLOW_RESTOCK,
    Category.EVENTSHOP: Cadence.SLOW_RESTOCK,
    Category.COSMETIC: Cadence.IMMEDIATE,
}

# Categories that count for change detection and the stock summary.
TRACKED_CATEGORIES: Tuple[Category, ...] = (
    Category.SEED,
    Category.GEAR,
    Category.EGG,
    Category.EVENTSHOP,
)

_CATEGORY_ALIASES: Dict[str, Category] = {}
for _cat in Category:
    _short = _cat.value[: -len("_stock")]
    _CATEGORY_ALIASES[_cat.value] = _cat
    _CATEGORY_ALIASES[_short] = _cat
    _CATEGORY_ALIASES[_short + "s"] = _cat
_CATEGORY_ALIASES["cosmetic"] = Category.COSMETIC
_CATEGORY_ALIASES["event"] = Category.EVENTSHOP


def resolve_category(name: str) -> Category:
    """Map a user-facing category name ("eggs", "seed", "gear_stock") to a Category."""
    if isinstance(name, Category):
        return name
    key = (name or "").strip().lower()
    try:
        return _CATEGORY_ALIASES[key]
    except KeyError:
        raise ValueError(f"Unknown category: {name!r}") from None


def format_item_name(item_id: Optional[str]) -> str:
    """Convert snake_case item ids to Title Case ("bell_pepper" -> "Bell Pepper")."""
    if not item_id:
        return "Unknown Item"
    return " ".join(word[:1].upper() + word[1:] for word in item_id.split("_"))


@dataclass(frozen=True)
class StockItem:
    item_id: str
    quantity: int = 0

    @property
    def display_name(self) -> str:
        return format_item_name(self.item_id)


@dataclass(frozen=True)
class Snapshot:
    """Full point-in-time inventory across all categories."""

    categories: Mapping[Category, Tuple[StockItem, ...]] = field(default_factory=dict)

    def items(self, category: Category) -> Tuple[StockItem, ...]:
        return tuple(self.categories.get(category, ()))

    def item_ids(self, category: Category) -> FrozenSet[str]:
        return frozenset(item.item_id for item in self.items(category))

    def signature(self, category: Category) -> Tuple[str, ...]:
        """Order-independent encoding used to compare two snapshots."""
        return tuple(sorted(f"{item.item_id}:{item.quantity}" for item in self.items(category)))

    def is_empty(self) -> bool:
        return not any(self.categories.get(cat) for cat in Category)

    @classmethod
    def from_items(cls, **categories: Iterable[Any]) -> "Snapshot":
        """Build a snapshot from short names, e.g. ``Snapshot.from_items(seed=["kiwi"])``.

        Entries may be item ids, ``(item_id, quantity)`` pairs or StockItems.
        """
        built: Dict[Category, Tuple[StockItem, ...]] = {}
        for name, entries in categories.items():
            items = []
            for entry in entries:
                if isinstance(entry, StockItem):
                    items.append(entry)
                elif isinstance(entry, str):
                    items.append(StockItem(entry, 1))
                else:
                    item_id, qty = entry
                    items.append(StockItem(str(item_id), int(qty)))
            built[resolve_category(name)] = tuple(items)
        return cls(built)


def _coerce_quantity(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def parse_snapshot(payload: Any) -> Snapshot:
    """Parse a feed payload (dict, str or bytes) into a Snapshot.

    Raises MalformedSnapshotError when the payload is not JSON, is not an
    object, carries no stock category at all, or a category is not a list.
    """
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError as e:
            raise MalformedSnapshotError(f"Payload is not JSON: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedSnapshotError(f"Payload is {type(payload).__name__}, expected object")

    present = [cat for cat in Category if cat.value in payload]
    if not present:
        raise MalformedSnapshotError("Payload carries no stock categories")

    categories: Dict[Category, Tuple[StockItem, ...]] = {}
    for cat in present:
        raw = payload[cat.value]
        if raw is None:
            continue
        if not isinstance(raw, list):
            raise MalformedSnapshotError(f"{cat.value} is {type(raw).__name__}, expected list")
        items = []
        for entry in raw:
            if not isinstance(entry, dict) or not entry.get("item_id"):
                logger.debug("Dropping %s entry without item_id: %r", cat.value, entry)
                continue
            items.append(StockItem(str(entry["item_id"]), _coerce_quantity(entry.get("quantity"))))
        categories[cat] = tuple(items)
    return Snapshot(categories)


# A subscriber's watch list: category -> item ids.
WatchList = Mapping[Category, FrozenSet[str]]

DEFAULT_WATCH_LIST: WatchList = {
    Category.SEED: frozenset({
        "banana", "pineapple", "avocado", "kiwi", "bell_pepper",
        "prickly_pear", "loquat", "feijoa", "sugar_apple",
    }),
    Category.GEAR: frozenset({
        "advanced_sprinkler", "master_sprinkler", "godly_sprinkler",
        "tanning_mirror", "lightning_rod", "friendship_pot",
    }),
    Category.EGG: frozenset({"bug_egg", "mythical_egg", "paradise_egg"}),
}


__all__ = [
    "Cadence",
    "Category",
    "StockItem",
    "Snapshot",
    "WatchList",
    "DEFAULT_WATCH_LIST",
    "TRACKED_CATEGORIES",
    "format_item_name",
    "parse_snapshot",
    "resolve_category",
]
