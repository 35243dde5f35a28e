"""Tests for snapshot reconciliation and category memory."""

import datetime as dt

from stock_notifier.differ import (BUNDLED, NEW_ITEM, PRESENT, WINDOW_ELAPSED,
                                   SnapshotDiffer)
from stock_notifier.stock import Category, Snapshot

MIN = dt.timedelta(minutes=1)


def eggs(*ids):
    return Snapshot.from_items(egg=list(ids))


class TestImmediateCategories:

    def test_presence_is_enough(self, t0):
        differ = SnapshotDiffer()
        snap = Snapshot.from_items(seed=["kiwi"])
        assert differ.reconcile(snap, now=t0).reason(Category.SEED) == PRESENT
        # same stock again: still eligible, novelty not required
        assert differ.reconcile(snap, now=t0 + MIN).is_eligible(Category.SEED)

    def test_empty_is_not_eligible(self, t0):
        report = SnapshotDiffer().reconcile(Snapshot.from_items(seed=[]), now=t0)
        assert not report.is_eligible(Category.SEED)
        assert not report.is_eligible(Category.GEAR)

    def test_cosmetics_are_reconciled(self, t0):
        report = SnapshotDiffer().reconcile(Snapshot.from_items(cosmetic=["gnome"]), now=t0)
        assert report.reason(Category.COSMETIC) == PRESENT


class TestSlowRestock:

    def test_egg_scenario(self, t0):
        differ = SnapshotDiffer()
        first = differ.reconcile(eggs("bug_egg"), now=t0)
        assert first.is_eligible(Category.EGG)
        assert first.reason(Category.EGG) == NEW_ITEM

        second = differ.reconcile(eggs("bug_egg"), now=t0 + MIN)
        assert not second.is_eligible(Category.EGG)

        third = differ.reconcile(eggs("bug_egg"), now=t0 + 31 * MIN)
        assert third.is_eligible(Category.EGG)
        assert third.reason(Category.EGG) == WINDOW_ELAPSED

    def test_unchanged_within_window_never_eligible(self, t0):
        differ = SnapshotDiffer()
        differ.reconcile(eggs("bug_egg", "mythical_egg"), now=t0)
        for minutes in (1, 5, 12, 29):
            report = differ.reconcile(eggs("mythical_egg", "bug_egg"), now=t0 + minutes * MIN)
            assert not report.is_eligible(Category.EGG)

    def test_first_appearance_always_eligible(self, t0):
        differ = SnapshotDiffer()
        differ.reconcile(eggs("bug_egg"), now=t0)
        report = differ.reconcile(eggs("bug_egg", "paradise_egg"), now=t0 + 2 * MIN)
        assert report.reason(Category.EGG) == NEW_ITEM
        assert report.changes[Category.EGG].new_items == {"paradise_egg"}

    def test_window_restarts_after_elapsed_notification(self, t0):
        differ = SnapshotDiffer()
        differ.reconcile(eggs("bug_egg"), now=t0)
        assert differ.reconcile(eggs("bug_egg"), now=t0 + 30 * MIN).is_eligible(Category.EGG)
        assert differ.memory(Category.EGG).last_notify_time == t0 + 30 * MIN
        assert not differ.reconcile(eggs("bug_egg"), now=t0 + 45 * MIN).is_eligible(Category.EGG)

    def test_new_item_inside_window_keeps_notify_time(self, t0):
        differ = SnapshotDiffer()
        differ.reconcile(eggs("bug_egg"), now=t0)
        differ.reconcile(eggs("bug_egg", "paradise_egg"), now=t0 + 10 * MIN)
        assert differ.memory(Category.EGG).last_notify_time == t0

    def test_last_seen_tracks_latest_state(self, t0):
        differ = SnapshotDiffer()
        differ.reconcile(eggs("bug_egg"), now=t0)
        differ.reconcile(eggs(), now=t0 + MIN)
        assert differ.memory(Category.EGG).last_seen_item_set == frozenset()
        # bug_egg is new again after going out of stock
        report = differ.reconcile(eggs("bug_egg"), now=t0 + 2 * MIN)
        assert report.reason(Category.EGG) == NEW_ITEM

    def test_absent_category_is_no_items(self, t0):
        differ = SnapshotDiffer()
        differ.reconcile(eggs("bug_egg"), now=t0)
        report = differ.reconcile(Snapshot.from_items(seed=[]), now=t0 + 40 * MIN)
        assert not report.is_eligible(Category.EGG)
        assert differ.memory(Category.EGG).last_seen_item_set == frozenset()


class TestBundling:

    def test_slow_category_bundles_with_immediate(self, t0):
        differ = SnapshotDiffer()
        differ.reconcile(eggs("bug_egg"), now=t0)
        snap = Snapshot.from_items(seed=["kiwi"], egg=["bug_egg"])
        report = differ.reconcile(snap, now=t0 + MIN)
        assert report.reason(Category.EGG) == BUNDLED
        # bundling does not restart the quiescence window
        assert differ.memory(Category.EGG).last_notify_time == t0

    def test_cosmetics_do_not_bundle(self, t0):
        differ = SnapshotDiffer()
        differ.reconcile(eggs("bug_egg"), now=t0)
        snap = Snapshot.from_items(cosmetic=["gnome"], egg=["bug_egg"])
        assert not differ.reconcile(snap, now=t0 + MIN).is_eligible(Category.EGG)

    def test_bundling_can_be_disabled(self, t0):
        differ = SnapshotDiffer(bundle_slow_restock=False)
        differ.reconcile(eggs("bug_egg"), now=t0)
        snap = Snapshot.from_items(seed=["kiwi"], egg=["bug_egg"])
        assert not differ.reconcile(snap, now=t0 + MIN).is_eligible(Category.EGG)

    def test_custom_window(self, t0):
        differ = SnapshotDiffer(quiescence_window=dt.timedelta(minutes=5))
        differ.reconcile(eggs("bug_egg"), now=t0)
        assert differ.reconcile(eggs("bug_egg"), now=t0 + 5 * MIN).is_eligible(Category.EGG)


class TestPreview:

    def test_preview_leaves_memory_untouched(self, t0):
        differ = SnapshotDiffer()
        report = differ.preview(eggs("bug_egg"), now=t0)
        assert report.reason(Category.EGG) == NEW_ITEM
        assert differ.memory(Category.EGG).last_seen_item_set == frozenset()
        assert differ.memory(Category.EGG).last_notify_time is None
        assert differ.reconcile(eggs("bug_egg"), now=t0 + MIN).reason(Category.EGG) == NEW_ITEM


class TestClock:

    def test_uses_injected_clock(self, t0):
        now = [t0]
        differ = SnapshotDiffer(clock=lambda: now[0])
        differ.reconcile(eggs("bug_egg"))
        now[0] = t0 + MIN
        assert not differ.reconcile(eggs("bug_egg")).is_eligible(Category.EGG)
        assert differ.memory(Category.EGG).last_notify_time == t0
