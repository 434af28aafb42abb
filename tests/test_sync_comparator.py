"""Tests for the DiffPlanner."""

from datetime import timedelta

import pytest

from pys4.models import ObjectEntry, Origin
from pys4.sync.comparator import DiffPlanner, SyncPlan, SyncTask, TaskKind
from pys4.sync.filters import FilterChain

NOW = 1_700_000_000.0


def src(key: str, size: int = 5, mtime: float = 1000.0, md5=None) -> ObjectEntry:
    return ObjectEntry(key, size, mtime, Origin.LOCAL, md5)


def dst(key: str, size: int = 5, mtime: float = 1000.0, md5=None) -> ObjectEntry:
    return ObjectEntry(key, size, mtime, Origin.REMOTE, md5)


class TestPlanning:
    """Tests for the merge-join."""

    def test_empty_destination_creates_everything(self):
        source = [src("a.txt"), src("b.txt")]

        plan = DiffPlanner().plan(source, [])

        assert [t.key for t in plan.creates] == ["a.txt", "b.txt"]
        assert all(t.kind == TaskKind.CREATE for t in plan.creates)
        assert plan.creates[0].reason == "New object"
        assert plan.updates == []
        assert plan.deletes == []
        assert plan.total_bytes == 10

    def test_identical_listings_give_empty_plan(self):
        source = [src("a", md5="aa"), src("b", md5="bb")]
        destination = [dst("a", md5="aa"), dst("b", md5="bb")]

        plan = DiffPlanner(remove=True).plan(source, destination)

        assert plan.is_empty
        assert plan.skipped == 2

    def test_content_change_is_update(self):
        plan = DiffPlanner().plan([src("a", md5="new")], [dst("a", md5="old")])

        assert [t.key for t in plan.updates] == ["a"]
        task = plan.updates[0]
        assert task.kind == TaskKind.UPDATE
        assert task.reason == "Content differs"
        assert task.source_ref.content_hash == "new"
        assert task.dest_ref.content_hash == "old"

    def test_interleaved_keys(self):
        source = [src("a"), src("c", md5="x"), src("e")]
        destination = [dst("b"), dst("c", md5="y"), dst("d")]

        plan = DiffPlanner(remove=True).plan(source, destination)

        assert [t.key for t in plan.creates] == ["a", "e"]
        assert [t.key for t in plan.updates] == ["c"]
        assert [t.key for t in plan.deletes] == ["b", "d"]
        assert [t.key for t in plan.tasks] == ["a", "e", "c", "b", "d"]

    def test_plan_is_deterministic(self):
        source = [src("a"), src("b", size=9)]
        destination = [dst("b"), dst("z")]
        planner = DiffPlanner(remove=True)

        assert planner.plan(source, destination) == planner.plan(source, destination)


class TestRemoveFlag:
    """Tests for destination-only keys."""

    def test_without_remove_destination_only_is_skipped(self):
        plan = DiffPlanner(remove=False).plan([], [dst("extraneous.txt")])

        assert plan.deletes == []
        assert plan.skipped == 1

    def test_with_remove_destination_only_is_deleted(self):
        plan = DiffPlanner(remove=True).plan([], [dst("extraneous.txt")])

        assert [t.key for t in plan.deletes] == ["extraneous.txt"]
        task = plan.deletes[0]
        assert task.kind == TaskKind.DELETE
        assert task.source_ref is None
        assert task.size == 0
        assert task.reason == "Not present in source"


class TestFingerprintFallback:
    """Tests for comparisons without content hashes on both sides."""

    def test_size_difference(self):
        plan = DiffPlanner().plan([src("a", size=10)], [dst("a", size=5, mtime=9999.0)])
        assert plan.updates[0].reason == "Size differs (10 vs 5)"

    def test_newer_source_with_same_size(self):
        plan = DiffPlanner().plan([src("a", mtime=2000.0)], [dst("a", mtime=1000.0)])
        assert plan.updates[0].reason == "Source is newer"

    def test_destination_modified_later_is_update(self):
        """Test that a same-size copy edited after the source is reconciled."""
        plan = DiffPlanner().plan(
            [src("big.bin", size=10, mtime=100.0)], [dst("big.bin", size=10, mtime=200.0)]
        )
        assert [t.key for t in plan.updates] == ["big.bin"]
        assert plan.updates[0].reason == "Destination modified"

    def test_mtime_within_tolerance_is_in_sync(self):
        """Test that sub-second timestamp drift does not trigger a transfer."""
        plan = DiffPlanner().plan(
            [src("a", mtime=1000.4, md5="aa")], [dst("a", mtime=1000.0, md5=None)]
        )
        assert plan.is_empty
        assert plan.skipped == 1

    def test_hashes_win_over_times(self):
        plan = DiffPlanner().plan(
            [src("a", mtime=5000.0, md5="same")], [dst("a", mtime=1.0, md5="same")]
        )
        assert plan.is_empty


class TestFiltering:
    """Tests for filters applied during planning."""

    def test_excluded_keys_never_transfer(self):
        source = [src("a.tmp"), src("a.txt"), src("b.tmp", size=9)]
        destination = [dst("b.tmp")]
        chain = FilterChain.from_options(exclude=("*.tmp",))

        plan = DiffPlanner().plan(source, destination, chain, NOW)

        assert [t.key for t in plan.transfers] == ["a.txt"]

    def test_age_filters(self):
        source = [src("fresh.txt", mtime=NOW - 10)]
        older = FilterChain.from_options(older_than=timedelta(days=365))
        newer = FilterChain.from_options(newer_than=timedelta(days=365))

        assert DiffPlanner().plan(source, [], older, NOW).is_empty
        assert len(DiffPlanner().plan(source, [], newer, NOW).creates) == 1


class TestSortedInput:
    """Tests for the sorted-input precondition."""

    def test_unsorted_source(self):
        with pytest.raises(ValueError, match="Source listing"):
            DiffPlanner().plan([src("b"), src("a")], [])

    def test_duplicate_destination_keys(self):
        with pytest.raises(ValueError, match="Destination listing"):
            DiffPlanner().plan([], [dst("a"), dst("a")])


class TestPlanSerialization:
    """Tests for SyncPlan and SyncTask dictionaries."""

    def test_to_dict(self):
        plan = SyncPlan(
            creates=[SyncTask("a", TaskKind.CREATE, source_ref=src("a"), reason="New object")],
            deletes=[SyncTask("z", TaskKind.DELETE, dest_ref=dst("z"))],
            skipped=3,
        )

        data = plan.to_dict()

        assert data["creates"] == [
            {"key": "a", "kind": "create", "size": 5, "reason": "New object"}
        ]
        assert data["deletes"][0]["kind"] == "delete"
        assert data["deletes"][0]["size"] == 0
        assert data["skipped"] == 3
        assert data["bytes"] == 5
