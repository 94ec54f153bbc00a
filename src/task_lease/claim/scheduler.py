"""
Trigger side of the protocol: fire claim cycles on overlapping schedules.

Each schedule gets its own thread and its own ClaimEngine, so several cycles
run against the same store at once, exactly the situation the claim protocol
has to tolerate.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from ..storage.base import AtomicTaskStore
from .engine import ClaimEngine, CycleResult, LeaseTimeout, ProcessFn

logger = logging.getLogger(__name__)

MODES = ('bulk', 'single')


@dataclass
class Schedule:
    """When to fire cycles. Delays are in seconds."""
    initial_delay: float = 0.0
    fixed_delay: Optional[float] = None  # None: fire once


class CycleScheduler:
    """Runs claim cycles for a set of schedules on background threads."""

    def __init__(self, store: AtomicTaskStore, process_fn: ProcessFn,
                 schedules: Sequence[Schedule], mode: str = 'bulk',
                 batch_size: int = 10, lease_timeout: LeaseTimeout = 300,
                 max_tasks: Optional[int] = None,
                 engine_options: Optional[Dict[str, Any]] = None,
                 name: str = "cycle"):
        """
        Initialize scheduler.

        Args:
            store: Shared task store
            process_fn: Processing callback passed to every cycle
            schedules: One thread is started per schedule
            mode: 'bulk' or 'single'
            batch_size: Batch size for bulk cycles
            lease_timeout: Lease duration (timedelta or seconds)
            max_tasks: Optional claim limit per cycle
            engine_options: Extra ClaimEngine keyword arguments
            name: Prefix for thread names and claimant ids
        """
        if mode not in MODES:
            raise ValueError(f"Unknown cycle mode '{mode}', expected one of {MODES}")
        if not schedules:
            raise ValueError("At least one schedule is required")

        self.store = store
        self.process_fn = process_fn
        self.schedules = list(schedules)
        self.mode = mode
        self.batch_size = batch_size
        self.lease_timeout = lease_timeout
        self.max_tasks = max_tasks
        self.engine_options = engine_options or {}
        self.name = name

        self.totals: List[CycleResult] = [CycleResult() for _ in self.schedules]
        self.errors: List[Optional[BaseException]] = [None for _ in self.schedules]
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    def _run_cycle(self, engine: ClaimEngine) -> CycleResult:
        if self.mode == 'bulk':
            return engine.run_bulk(self.batch_size, self.lease_timeout, self.process_fn, self.max_tasks)
        return engine.run_single(self.lease_timeout, self.process_fn, self.max_tasks)

    def _run_schedule(self, index: int, schedule: Schedule) -> None:
        engine = ClaimEngine(self.store, claimant_id=f"{self.name}-{index + 1}", **self.engine_options)

        if self._stop.wait(schedule.initial_delay):
            return

        while True:
            try:
                self.totals[index].add(self._run_cycle(engine))
            except Exception as e:
                # A failed cycle leaves no partial state; the next firing starts clean
                logger.error(f"Cycle on {engine.claimant_id} failed: {str(e)}")
                self.errors[index] = e

            if schedule.fixed_delay is None or self._stop.wait(schedule.fixed_delay):
                return

    def _launch(self, schedules: Sequence[Schedule]) -> None:
        if self._threads:
            raise RuntimeError("Scheduler already started")

        self._stop.clear()
        self.totals = [CycleResult() for _ in schedules]
        self.errors = [None for _ in schedules]
        for index, schedule in enumerate(schedules):
            thread = threading.Thread(
                target=self._run_schedule,
                args=(index, schedule),
                name=f"{self.name}-{index + 1}",
                daemon=True
            )
            self._threads.append(thread)
            thread.start()

        logger.info(f"Started {len(self._threads)} {self.mode} schedules")

    def start(self) -> None:
        """Start one thread per schedule. Totals and errors start from zero."""
        self._launch(self.schedules)

    def join(self, timeout: Optional[float] = None) -> None:
        for thread in self._threads:
            thread.join(timeout)

    def stop(self, timeout: Optional[float] = 30) -> None:
        """Ask every schedule to finish after its current cycle, then wait."""
        logger.info("Stopping schedules")
        self._stop.set()
        self.join(timeout)

    def is_running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def run_once(self) -> List[CycleResult]:
        """
        Fire every schedule once (after its initial delay) and wait.

        The configured schedules are left as they are, so the scheduler can
        still be started afterwards.

        Returns:
            Per-schedule cycle results of this pass
        """
        self._launch([Schedule(initial_delay=s.initial_delay) for s in self.schedules])
        self.join()
        self._threads = []
        return self.totals

    def combined(self) -> CycleResult:
        """Sum of all schedule totals."""
        combined = CycleResult()
        for total in self.totals:
            combined.add(total)
        return combined
