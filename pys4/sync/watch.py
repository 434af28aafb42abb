"""Watch mode: re-run the sync cycle on an interval until cancelled."""

import logging
import signal
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from ..exceptions import S4WatchCycleError
from .engine import SyncEngine
from .filters import FilterChain
from .options import SyncOptions
from .pair import SyncPair
from .transfer import TransferReport

logger = logging.getLogger(__name__)


class WatchState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class CancellationToken:
    """Cooperative stop signal shared between a watch loop and its owner."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; return True if cancelled."""
        return self._event.wait(timeout)


@dataclass
class WatchContext:
    """Everything a watch loop needs, fixed before the first cycle."""

    pair: SyncPair
    options: SyncOptions
    filter_chain: FilterChain
    interval: float
    token: CancellationToken = field(default_factory=CancellationToken)

    @classmethod
    def create(
        cls,
        pair: SyncPair,
        options: SyncOptions,
        token: Optional[CancellationToken] = None,
    ) -> "WatchContext":
        """Build a context, validating the filters up front.

        Raises:
            S4ConfigError: If a filter is invalid
        """
        return cls(
            pair=pair,
            options=options,
            filter_chain=options.filter_chain(),
            interval=options.watch_interval,
            token=token or CancellationToken(),
        )


@dataclass
class CycleResult:
    """Outcome of one watch cycle."""

    cycle: int
    report: Optional[TransferReport] = None
    error: Optional[S4WatchCycleError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.report is not None and self.report.ok


class WatchLoop:
    """Runs sync cycles until the token is cancelled.

    The loop is IDLE while sleeping and RUNNING during a cycle. A failing
    cycle is logged and recorded on its :class:`CycleResult`; the loop keeps
    going. The only place the loop waits is ``token.wait(interval)``, so a
    cancel takes effect at the end of the current cycle at the latest.
    """

    def __init__(
        self,
        engine: SyncEngine,
        context: WatchContext,
        on_cycle: Optional[Callable[[CycleResult], None]] = None,
    ):
        self.engine = engine
        self.context = context
        self.on_cycle = on_cycle
        self.state = WatchState.IDLE
        self.cycles = 0

    def run_cycle(self) -> CycleResult:
        """Run a single cycle and capture its outcome."""
        self.cycles += 1
        cycle = self.cycles
        start = time.monotonic()
        logger.debug(f"Watch cycle {cycle} started")
        try:
            report = self.engine.sync_pair(
                self.context.pair,
                self.context.options,
                filter_chain=self.context.filter_chain,
            )
        except Exception as e:
            error = S4WatchCycleError(f"Cycle {cycle} failed: {e}", cycle=cycle)
            error.__cause__ = e
            logger.error(str(error))
            return CycleResult(cycle=cycle, error=error)

        logger.debug(
            f"Watch cycle {cycle} finished in {time.monotonic() - start:.2f}s "
            f"({len(report.results)} task(s), {len(report.failed)} failed)"
        )
        return CycleResult(cycle=cycle, report=report)

    def run(self, max_cycles: Optional[int] = None) -> Optional[CycleResult]:
        """Run cycles until cancelled (or ``max_cycles`` is reached).

        Returns:
            Result of the latest cycle, or None if cancelled before the first
        """
        token = self.context.token
        latest: Optional[CycleResult] = None
        while not token.cancelled:
            self.state = WatchState.RUNNING
            try:
                latest = self.run_cycle()
            finally:
                self.state = WatchState.IDLE
            if self.on_cycle is not None:
                self.on_cycle(latest)
            if max_cycles is not None and self.cycles >= max_cycles:
                break
            if token.wait(self.context.interval):
                break
        logger.debug(f"Watch loop stopped after {self.cycles} cycle(s)")
        return latest


@contextmanager
def cancel_on_signals(token: CancellationToken) -> Iterator[None]:
    """Cancel ``token`` on SIGINT/SIGTERM instead of raising."""

    def handler(signum, frame) -> None:
        logger.debug(f"Received signal {signum}, stopping after this cycle")
        token.cancel()

    signals = [signal.SIGINT]
    if hasattr(signal, "SIGTERM"):
        signals.append(signal.SIGTERM)
    previous = {}
    if threading.current_thread() is threading.main_thread():
        for signum in signals:
            previous[signum] = signal.signal(signum, handler)
    try:
        yield
    finally:
        for signum, old in previous.items():
            signal.signal(signum, old)
