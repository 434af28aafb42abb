"""Sync engine for pys4 - list, plan, transfer and watch."""

from .comparator import DiffPlanner, SyncPlan, SyncTask, TaskKind
from .engine import SyncEngine
from .filters import EntryFilter, ExcludeGlob, FilterChain, NewerThan, OlderThan
from .operations import LocalStore, ObjectStore, RemoteStore, open_store
from .options import SyncOptions
from .pair import SyncPair, parse_target
from .scanner import ObjectLister
from .transfer import (
    KeyRegistry,
    MultipartSession,
    PartPlan,
    TaskResult,
    TransferExecutor,
    TransferReport,
)
from .watch import (
    CancellationToken,
    CycleResult,
    WatchContext,
    WatchLoop,
    WatchState,
    cancel_on_signals,
)

__all__ = [
    "SyncEngine",
    "SyncOptions",
    "SyncPair",
    "parse_target",
    "ObjectStore",
    "LocalStore",
    "RemoteStore",
    "open_store",
    "ObjectLister",
    "EntryFilter",
    "ExcludeGlob",
    "OlderThan",
    "NewerThan",
    "FilterChain",
    "DiffPlanner",
    "SyncPlan",
    "SyncTask",
    "TaskKind",
    "PartPlan",
    "MultipartSession",
    "KeyRegistry",
    "TaskResult",
    "TransferReport",
    "TransferExecutor",
    "CancellationToken",
    "CycleResult",
    "WatchContext",
    "WatchLoop",
    "WatchState",
    "cancel_on_signals",
]
