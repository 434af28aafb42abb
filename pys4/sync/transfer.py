"""Plan execution: bounded-concurrency transfers with multipart chunking."""

import logging
import threading
import time
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..exceptions import S4Error, S4TransferError
from ..retry import RetryPolicy
from ..utils import (
    DEFAULT_MULTIPART_THRESHOLD,
    DEFAULT_PART_SIZE,
    DEFAULT_PART_WORKERS,
    DEFAULT_WORKERS,
    MAX_PART_COUNT,
)
from .comparator import SyncPlan, SyncTask, TaskKind
from .operations import ObjectStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PartPlan:
    """How an object is split into parts.

    ``ranges`` holds ``(index, start, length)`` triples with 1-based indexes;
    the last range holds the remainder.
    """

    size: int
    part_size: int
    ranges: tuple[tuple[int, int, int], ...]

    @property
    def part_count(self) -> int:
        return len(self.ranges)

    @classmethod
    def build(cls, size: int, part_size: int = DEFAULT_PART_SIZE) -> "PartPlan":
        """Split ``size`` bytes into parts of ``part_size``.

        The part size is doubled until the object fits in the store's part
        count limit.

        Examples:
            >>> PartPlan.build(17 * 1024 * 1024).part_count
            3
        """
        if size <= 0:
            raise ValueError("Cannot split an empty object into parts")
        if part_size <= 0:
            raise ValueError("Part size must be positive")
        while (size + part_size - 1) // part_size > MAX_PART_COUNT:
            part_size *= 2

        ranges = []
        start = 0
        index = 1
        while start < size:
            length = min(part_size, size - start)
            ranges.append((index, start, length))
            start += length
            index += 1
        return cls(size=size, part_size=part_size, ranges=tuple(ranges))


@dataclass
class MultipartSession:
    """State of one in-progress multipart upload."""

    key: str
    upload_id: str
    parts: dict[int, str] = field(default_factory=dict)
    """Confirmed part ETags by index"""

    def ordered_parts(self) -> list[tuple[int, str]]:
        return sorted(self.parts.items())


@dataclass
class TaskResult:
    """Outcome of one task."""

    key: str
    kind: TaskKind
    ok: bool
    error: Optional[str] = None
    bytes: int = 0
    elapsed: float = 0.0
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "kind": self.kind.value,
            "ok": self.ok,
            "error": self.error,
            "bytes": self.bytes,
            "elapsed": round(self.elapsed, 3),
        }


@dataclass
class TransferReport:
    """Aggregated results of executing a plan."""

    results: list[TaskResult] = field(default_factory=list)
    skipped: int = 0
    dry_run: bool = False

    def add(self, result: TaskResult) -> None:
        self.results.append(result)

    @property
    def failed(self) -> list[TaskResult]:
        return [r for r in self.results if not r.ok]

    @property
    def succeeded(self) -> list[TaskResult]:
        return [r for r in self.results if r.ok]

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def bytes_transferred(self) -> int:
        return sum(r.bytes for r in self.results if r.ok)

    def count(self, kind: TaskKind, ok: bool = True) -> int:
        return sum(1 for r in self.results if r.kind == kind and r.ok == ok)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "created": self.count(TaskKind.CREATE),
            "updated": self.count(TaskKind.UPDATE),
            "deleted": self.count(TaskKind.DELETE),
            "skipped": self.skipped,
            "failed": len(self.failed),
            "bytes": self.bytes_transferred,
            "errors": [r.to_dict() for r in self.failed],
        }


class KeyRegistry:
    """Tracks destination keys with a transfer in flight.

    ``hold`` blocks while another thread holds the same key.
    """

    def __init__(self) -> None:
        self._active: set[str] = set()
        self._cond = threading.Condition()

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._cond:
            while key in self._active:
                self._cond.wait()
            self._active.add(key)
        try:
            yield
        finally:
            with self._cond:
                self._active.discard(key)
                self._cond.notify_all()

    def __contains__(self, key: str) -> bool:
        with self._cond:
            return key in self._active


class TransferExecutor:
    """Executes the tasks of a :class:`SyncPlan` against two stores.

    Tasks run on a bounded thread pool. Objects larger than the multipart
    threshold are uploaded in parts on a per-task pool; a part that fails
    after retries aborts that upload and fails only its task. Results are
    collected on the calling thread as tasks finish.

    Examples:
        >>> executor = TransferExecutor(LocalStore(src), RemoteStore(client, scope))
        >>> report = executor.execute(plan)
        >>> report.ok
        True
    """

    def __init__(
        self,
        source: ObjectStore,
        destination: ObjectStore,
        workers: int = DEFAULT_WORKERS,
        part_workers: int = DEFAULT_PART_WORKERS,
        part_size: int = DEFAULT_PART_SIZE,
        multipart_threshold: int = DEFAULT_MULTIPART_THRESHOLD,
        retry: Optional[RetryPolicy] = None,
        dry_run: bool = False,
        registry: Optional[KeyRegistry] = None,
    ):
        """Initialize the executor.

        Args:
            source: Store objects are read from
            destination: Store objects are written to and deleted from
            workers: Concurrent tasks
            part_workers: Concurrent parts per multipart task
            part_size: Multipart part size in bytes
            multipart_threshold: Objects strictly larger than this use multipart
            retry: Retry policy for every store call
            dry_run: Log the work instead of doing it
            registry: In-flight key registry (shared between executors)
        """
        self.source = source
        self.destination = destination
        self.workers = max(1, workers)
        self.part_workers = max(1, part_workers)
        self.part_size = part_size
        self.multipart_threshold = multipart_threshold
        self.retry = retry or RetryPolicy()
        self.dry_run = dry_run
        self.registry = registry or KeyRegistry()

    def execute(
        self,
        plan: SyncPlan,
        on_result: Optional[Callable[[TaskResult], None]] = None,
    ) -> TransferReport:
        """Execute every task of a plan.

        Args:
            plan: Plan to execute
            on_result: Called on the calling thread after each task

        Returns:
            Report with one result per task
        """
        report = TransferReport(skipped=plan.skipped, dry_run=self.dry_run)
        tasks = plan.tasks
        if not tasks:
            return report

        logger.debug(f"Executing {len(tasks)} task(s) with {self.workers} worker(s)")
        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            futures = {executor.submit(self.execute_task, task): task for task in tasks}
            for future in as_completed(futures):
                result = future.result()
                report.add(result)
                if result.ok:
                    logger.debug(f"Completed {result.key} in {result.elapsed:.2f}s")
                else:
                    logger.debug(f"Failed {result.key} in {result.elapsed:.2f}s")
                if on_result is not None:
                    on_result(result)
        return report

    def execute_task(self, task: SyncTask) -> TaskResult:
        """Run one task and capture its outcome; never raises."""
        start = time.monotonic()
        if self.dry_run:
            if task.kind == TaskKind.DELETE:
                logger.info(f"dry-run: would delete {self.destination}/{task.key}")
            else:
                logger.info(f"dry-run: would {task.kind.value} {task.key} ({task.size} bytes)")
            return TaskResult(task.key, task.kind, ok=True, dry_run=True)

        try:
            with self.registry.hold(task.key):
                if task.kind == TaskKind.DELETE:
                    self._delete(task)
                    transferred = 0
                else:
                    transferred = self._transfer(task)
        except (S4Error, OSError) as e:
            logger.debug(f"Task {task.kind.value} {task.key} failed: {e}")
            return TaskResult(
                task.key,
                task.kind,
                ok=False,
                error=str(e),
                elapsed=time.monotonic() - start,
            )
        except Exception as e:
            logger.exception(f"Unexpected error during {task.kind.value} of {task.key}")
            return TaskResult(
                task.key,
                task.kind,
                ok=False,
                error=f"{type(e).__name__}: {e}",
                elapsed=time.monotonic() - start,
            )
        return TaskResult(
            task.key,
            task.kind,
            ok=True,
            bytes=transferred,
            elapsed=time.monotonic() - start,
        )

    def _delete(self, task: SyncTask) -> None:
        self.retry.call(lambda: self.destination.delete(task.key), f"delete {task.key}")

    def _transfer(self, task: SyncTask) -> int:
        last_modified = task.source_ref.last_modified if task.source_ref else None
        return self.copy_object(task.key, task.key, task.size, last_modified)

    def copy_object(
        self,
        source_key: str,
        dest_key: str,
        size: int,
        last_modified: Optional[float] = None,
    ) -> int:
        """Copy one object from the source store to the destination store.

        Objects larger than the multipart threshold are uploaded in parts.

        Args:
            source_key: Key in the source store
            dest_key: Key in the destination store
            size: Expected size in bytes
            last_modified: Source mtime, kept on the destination copy

        Returns:
            Bytes transferred

        Raises:
            S4TransferError: If the object changed or a part failed
            S4Error: If a single-request transfer failed after retries
        """
        if size > self.multipart_threshold:
            return self._copy_multipart(source_key, dest_key, size, last_modified)
        return self._copy_single(source_key, dest_key, size, last_modified)

    def _copy_single(
        self,
        source_key: str,
        dest_key: str,
        size: int,
        last_modified: Optional[float],
    ) -> int:
        data = self.retry.call(lambda: self.source.read(source_key), f"read {source_key}")
        if len(data) != size:
            raise S4TransferError(
                f"{source_key} changed during transfer "
                f"(expected {size} bytes, read {len(data)})",
                key=dest_key,
            )
        self.retry.call(
            lambda: self.destination.put(dest_key, data, size, last_modified),
            f"put {dest_key}",
        )
        return len(data)

    def _upload_part(
        self,
        session: MultipartSession,
        source_key: str,
        index: int,
        start: int,
        length: int,
    ) -> tuple[int, str]:
        key = session.key

        def attempt() -> str:
            data = self.source.read(source_key, start, length)
            if len(data) != length:
                raise S4TransferError(
                    f"Short read of part {index} of {source_key}: "
                    f"{len(data)} of {length} bytes",
                    key=key,
                )
            return self.destination.upload_part(session.upload_id, key, index, data)

        return index, self.retry.call(attempt, f"upload part {index} of {key}")

    def _copy_multipart(
        self,
        source_key: str,
        dest_key: str,
        size: int,
        last_modified: Optional[float],
    ) -> int:
        key = dest_key
        part_plan = PartPlan.build(size, self.part_size)
        upload_id = self.retry.call(
            lambda: self.destination.initiate_multipart(key, last_modified),
            f"initiate upload of {key}",
        )
        session = MultipartSession(key=key, upload_id=upload_id)
        logger.debug(
            f"Multipart upload of {key}: {part_plan.part_count} part(s) "
            f"of {part_plan.part_size} bytes (upload id {upload_id})"
        )

        try:
            workers = min(self.part_workers, part_plan.part_count)
            with ThreadPoolExecutor(max_workers=workers) as pool:
                futures = [
                    pool.submit(self._upload_part, session, source_key, index, start, length)
                    for index, start, length in part_plan.ranges
                ]
                try:
                    for future in as_completed(futures):
                        index, etag = future.result()
                        session.parts[index] = etag
                except BaseException:
                    for pending in futures:
                        pending.cancel()
                    raise

            if len(session.parts) != part_plan.part_count:
                raise S4TransferError(
                    f"Only {len(session.parts)} of {part_plan.part_count} parts "
                    f"of {key} were confirmed",
                    key=key,
                )
            self.retry.call(
                lambda: self.destination.complete_multipart(
                    upload_id, key, session.ordered_parts(), last_modified
                ),
                f"complete upload of {key}",
            )
        except BaseException as e:
            self._abort(session)
            if isinstance(e, S4Error) and not isinstance(e, S4TransferError):
                raise S4TransferError(f"Multipart upload of {key} failed: {e}", key=key) from e
            raise

        return size

    def _abort(self, session: MultipartSession) -> None:
        try:
            self.retry.call(
                lambda: self.destination.abort_multipart(session.upload_id, session.key),
                f"abort upload of {session.key}",
            )
            logger.debug(f"Aborted multipart upload {session.upload_id} of {session.key}")
        except (S4Error, OSError) as e:
            logger.warning(
                f"Failed to abort multipart upload {session.upload_id} of {session.key}: {e}"
            )
