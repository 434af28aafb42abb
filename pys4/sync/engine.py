"""Core sync engine: list, plan and execute one sync cycle."""

import logging
import time
from typing import Callable, Optional

from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from ..api import S3Client
from ..output import OutputFormatter
from ..utils import format_size
from .comparator import DiffPlanner, SyncPlan, TaskKind
from .filters import FilterChain
from .operations import ObjectStore, open_store
from .options import SyncOptions
from .pair import SyncPair
from .scanner import ObjectLister
from .transfer import TaskResult, TransferExecutor, TransferReport

logger = logging.getLogger(__name__)


class SyncEngine:
    """Orchestrates one sync cycle for a pair."""

    def __init__(
        self,
        client_factory: Optional[Callable[[str], S3Client]] = None,
        output: Optional[OutputFormatter] = None,
        store_factory: Optional[Callable[..., ObjectStore]] = None,
    ):
        """Initialize sync engine.

        Args:
            client_factory: Returns the S3 client of an alias
            output: Output formatter for displaying progress/status
            store_factory: Replaces :func:`open_store` (used by tests)
        """
        self.client_factory = client_factory
        self.output = output or OutputFormatter()
        self.store_factory = store_factory or open_store

    def open_stores(
        self, pair: SyncPair, options: SyncOptions
    ) -> tuple[ObjectStore, ObjectStore]:
        # A vanished source must fail the cycle, not list as empty
        source = self.store_factory(
            pair.source, self.client_factory, options.multipart_threshold, missing_ok=False
        )
        destination = self.store_factory(
            pair.destination, self.client_factory, options.multipart_threshold
        )
        return source, destination

    def sync_pair(
        self,
        pair: SyncPair,
        options: SyncOptions,
        filter_chain: Optional[FilterChain] = None,
        now: Optional[float] = None,
    ) -> TransferReport:
        """Run one full cycle: list both sides, plan, execute.

        Args:
            pair: Source and destination
            options: Validated sync options
            filter_chain: Source filters (built from options if omitted)
            now: Reference instant for age filters (captured if omitted)

        Returns:
            Report of the executed (or, in dry-run, planned) tasks

        Raises:
            S4ListingError: If either side cannot be listed

        Examples:
            >>> engine = SyncEngine(client_factory)
            >>> pair = SyncPair.parse("./data", "minio/backup", {"minio"})
            >>> report = engine.sync_pair(pair, SyncOptions(dry_run=True))
            >>> report.ok
            True
        """
        start = time.monotonic()
        if filter_chain is None:
            filter_chain = options.filter_chain()
        source, destination = self.open_stores(pair, options)

        self.output.info(f"Syncing: {pair}")
        source_entries, dest_entries = self._list(source, destination, options)

        if now is None:
            now = time.time()
        plan = DiffPlanner(remove=options.remove).plan(
            source_entries, dest_entries, filter_chain, now
        )
        logger.debug(
            f"Planned {len(plan.creates)} create(s), {len(plan.updates)} update(s), "
            f"{len(plan.deletes)} delete(s), {plan.skipped} skipped"
        )
        self._display_plan(plan, options.dry_run)

        executor = TransferExecutor(
            source,
            destination,
            workers=options.workers,
            part_workers=options.part_workers,
            part_size=options.part_size,
            multipart_threshold=options.multipart_threshold,
            retry=options.retry,
            dry_run=options.dry_run,
        )
        report = self._execute(executor, plan)
        self._display_summary(report)
        logger.debug(f"Sync cycle took {time.monotonic() - start:.2f}s")
        return report

    def _list(
        self, source: ObjectStore, destination: ObjectStore, options: SyncOptions
    ) -> tuple[list, list]:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            disable=self.output.silent,
        ) as progress:
            results = []
            for role, store in (("source", source), ("destination", destination)):
                task = progress.add_task(f"Listing {role} {store}...", total=None)

                def on_page(count: int, task=task, role=role) -> None:
                    progress.update(task, description=f"Listing {role}: {count} object(s)")

                entries = ObjectLister(retry=options.retry, on_page=on_page).list(store)
                progress.update(
                    task, description=f"Found {len(entries)} {role} object(s)"
                )
                results.append(entries)
        return results[0], results[1]

    def _execute(self, executor: TransferExecutor, plan: SyncPlan) -> TransferReport:
        tasks = plan.tasks
        if not tasks or executor.dry_run:
            return executor.execute(plan)

        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            disable=self.output.silent,
        ) as progress:
            task_id = progress.add_task("Syncing objects...", total=len(tasks))

            def on_result(result: TaskResult) -> None:
                progress.update(task_id, advance=1)
                # JSON mode reports failures in the final document
                if not result.ok and not self.output.json_output:
                    self.output.error(
                        f"{result.kind.value} {result.key} failed: {result.error}"
                    )

            return executor.execute(plan, on_result=on_result)

    def _display_plan(self, plan: SyncPlan, dry_run: bool) -> None:
        """Display the sync plan to the user."""
        if self.output.silent:
            return

        if dry_run:
            self.output.print("dry-run: true")
        self.output.info("Sync plan:")
        if plan.creates:
            self.output.info(f"  + Create: {len(plan.creates)} object(s)")
        if plan.updates:
            self.output.info(f"  ~ Update: {len(plan.updates)} object(s)")
        if plan.deletes:
            self.output.info(f"  - Delete: {len(plan.deletes)} object(s)")
        if plan.skipped:
            self.output.info(f"  = Skip: {plan.skipped} object(s)")
        if plan.transfers:
            self.output.info(f"  Bytes to transfer: {format_size(plan.total_bytes)}")

        if dry_run:
            markers = {TaskKind.CREATE: "+", TaskKind.UPDATE: "~", TaskKind.DELETE: "-"}
            for task in plan.tasks:
                self.output.print(f"  {markers[task.kind]} {task.key} ({task.reason})")

        self.output.print("")

    def _display_summary(self, report: TransferReport) -> None:
        """Display the cycle summary."""
        if report.dry_run:
            self.output.success("Dry run complete!")
            return

        created = report.count(TaskKind.CREATE)
        updated = report.count(TaskKind.UPDATE)
        deleted = report.count(TaskKind.DELETE)
        failed = len(report.failed)

        if not report.results:
            self.output.info("No changes needed - everything is in sync!")
            return

        status = (
            f"created {created}, updated {updated}, deleted {deleted}, "
            f"skipped {report.skipped}, failed {failed} "
            f"({format_size(report.bytes_transferred)})"
        )
        if failed:
            self.output.warning(f"Sync finished with errors: {status}")
        else:
            self.output.success(f"Sync complete: {status}")
