"""Diff planning: merge two sorted listings into a transfer plan."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..models import ObjectEntry
from .filters import FilterChain


class TaskKind(str, Enum):
    """Kinds of work a sync plan can contain."""

    CREATE = "create"
    """Copy an object missing from the destination"""

    UPDATE = "update"
    """Replace a destination object whose content differs"""

    DELETE = "delete"
    """Remove a destination object missing from the source"""


@dataclass(frozen=True)
class SyncTask:
    """One unit of work in a plan."""

    key: str
    """Relative key of the object"""

    kind: TaskKind
    """What to do with it"""

    source_ref: Optional[ObjectEntry] = None
    """Source entry (None for deletes)"""

    dest_ref: Optional[ObjectEntry] = None
    """Destination entry (None for creates)"""

    reason: str = ""
    """Human-readable reason for this task"""

    @property
    def size(self) -> int:
        """Bytes the task moves (0 for deletes)."""
        if self.kind == TaskKind.DELETE or self.source_ref is None:
            return 0
        return self.source_ref.size

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "kind": self.kind.value,
            "size": self.size,
            "reason": self.reason,
        }


@dataclass
class SyncPlan:
    """Creates, updates and deletes in key order, plus the skip count."""

    creates: list[SyncTask] = field(default_factory=list)
    updates: list[SyncTask] = field(default_factory=list)
    deletes: list[SyncTask] = field(default_factory=list)
    skipped: int = 0

    @property
    def transfers(self) -> list[SyncTask]:
        """Tasks that copy data (creates then updates)."""
        return self.creates + self.updates

    @property
    def tasks(self) -> list[SyncTask]:
        return self.creates + self.updates + self.deletes

    @property
    def is_empty(self) -> bool:
        return not (self.creates or self.updates or self.deletes)

    @property
    def total_bytes(self) -> int:
        return sum(task.size for task in self.transfers)

    def to_dict(self) -> dict[str, Any]:
        return {
            "creates": [t.to_dict() for t in self.creates],
            "updates": [t.to_dict() for t in self.updates],
            "deletes": [t.to_dict() for t in self.deletes],
            "skipped": self.skipped,
            "bytes": self.total_bytes,
        }


def _check_sorted(entries: list[ObjectEntry], side: str) -> None:
    for previous, current in zip(entries, entries[1:]):
        if not previous.key < current.key:
            raise ValueError(
                f"{side} listing is not strictly sorted: "
                f"{previous.key!r} before {current.key!r}"
            )


class DiffPlanner:
    """Builds a :class:`SyncPlan` from a source and a destination listing.

    Both listings must be sorted by key. The planner walks them with two
    cursors, so planning is linear and the resulting task lists are in key
    order. The plan depends only on its inputs.

    Args:
        remove: Turn destination-only keys into deletes instead of skips
    """

    def __init__(self, remove: bool = False):
        self.remove = remove

    def plan(
        self,
        source: list[ObjectEntry],
        destination: list[ObjectEntry],
        filter_chain: Optional[FilterChain] = None,
        now: Optional[float] = None,
    ) -> SyncPlan:
        """Compare two listings.

        Args:
            source: Source entries sorted by key
            destination: Destination entries sorted by key
            filter_chain: Filters applied to the source entries
            now: Reference instant for age filters

        Returns:
            The plan

        Raises:
            ValueError: If a listing is not strictly ascending
        """
        _check_sorted(source, "Source")
        _check_sorted(destination, "Destination")
        if filter_chain is not None:
            source = filter_chain.apply(source, now)

        plan = SyncPlan()
        i = j = 0
        while i < len(source) or j < len(destination):
            src = source[i] if i < len(source) else None
            dst = destination[j] if j < len(destination) else None

            if dst is None or (src is not None and src.key < dst.key):
                plan.creates.append(
                    SyncTask(src.key, TaskKind.CREATE, source_ref=src, reason="New object")
                )
                i += 1
            elif src is None or dst.key < src.key:
                if self.remove:
                    plan.deletes.append(
                        SyncTask(
                            dst.key,
                            TaskKind.DELETE,
                            dest_ref=dst,
                            reason="Not present in source",
                        )
                    )
                else:
                    plan.skipped += 1
                j += 1
            else:
                if src.same_content(dst):
                    plan.skipped += 1
                else:
                    plan.updates.append(
                        SyncTask(
                            src.key,
                            TaskKind.UPDATE,
                            source_ref=src,
                            dest_ref=dst,
                            reason=self._update_reason(src, dst),
                        )
                    )
                i += 1
                j += 1

        return plan

    @staticmethod
    def _update_reason(src: ObjectEntry, dst: ObjectEntry) -> str:
        if src.content_hash and dst.content_hash:
            return "Content differs"
        if src.size != dst.size:
            return f"Size differs ({src.size} vs {dst.size})"
        if src.last_modified > dst.last_modified:
            return "Source is newer"
        return "Destination modified"
