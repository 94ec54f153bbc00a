"""
Claim engine: the claim / process / complete cycle.

Two variants share the lease policy:

- bulk: read a batch of eligible ids, claim them with one conditional bulk
  update, process what was won, complete the successes with a second bulk
  update. Repeats until a round finds nothing.
- single: claim one task at a time with an atomic find-and-modify, process it,
  complete it. Repeats until nothing is eligible.

Mutual exclusion comes entirely from the store's per-document atomic
conditional writes. The engine keeps no state between invocations; any number
of engines (threads or processes) may run cycles against the same store
concurrently.

Delivery is at-least-once. A task whose processing fails, times out, or whose
claimant dies stays in `processing` until its lease expires, then any claimant
may pick it up again. Leases are never renewed, so processing that outlives
the lease timeout can be claimed a second time by another claimant.
"""

import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Union

from ..storage.base import ASCENDING, AtomicTaskStore
from .deadline import call_with_deadline
from .lease_policy import DEFAULT_LEASE_TIMEOUT, LeasePolicy
from ..models import ID_FIELD, Task

logger = logging.getLogger(__name__)

ProcessFn = Callable[[Task], Any]
LeaseTimeout = Union[timedelta, int, float]


@dataclass
class CycleResult:
    """Outcome of one cycle."""
    claimed: int = 0
    completed: int = 0
    failed: int = 0
    rounds: int = 0

    def add(self, other: 'CycleResult') -> None:
        """Fold another result into this one."""
        self.claimed += other.claimed
        self.completed += other.completed
        self.failed += other.failed
        self.rounds += other.rounds

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def as_timedelta(lease_timeout: LeaseTimeout) -> timedelta:
    """Accept a timedelta or a number of seconds."""
    if isinstance(lease_timeout, timedelta):
        return lease_timeout
    return timedelta(seconds=lease_timeout)


class ClaimEngine:
    """Runs claim cycles against an atomic task store."""

    def __init__(self, store: AtomicTaskStore, sort_field: str = ID_FIELD,
                 process_timeout: Optional[float] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 claimant_id: Optional[str] = None):
        """
        Initialize claim engine.

        Args:
            store: Shared task store
            sort_field: Field giving claim order (ascending); ids are assumed
                to be assigned monotonically so this means oldest first
            process_timeout: Seconds allowed per processing call (None: unbounded)
            clock: Time source for lease stamps (defaults to UTC now)
            claimant_id: Identifier used in claim tokens and log lines
        """
        self.store = store
        self.sort_field = sort_field
        self.process_timeout = process_timeout
        self.clock = clock
        self.claimant_id = claimant_id or f"claimant_{uuid.uuid4().hex[:8]}"

    def _policy(self, lease_timeout: LeaseTimeout) -> LeasePolicy:
        return LeasePolicy(as_timedelta(lease_timeout), self.clock)

    def _claim_token(self) -> str:
        return f"{self.claimant_id}:{uuid.uuid4().hex[:12]}"

    def _sort(self):
        return [(self.sort_field, ASCENDING)]

    def _process(self, task: Task, process_fn: ProcessFn) -> bool:
        """Run the callback; True on success. Failures are logged, never raised."""
        try:
            outcome = call_with_deadline(process_fn, task, self.process_timeout)
        except Exception as e:
            logger.error(f"{self.claimant_id} failed to process task {task.id}: {str(e)}")
            logger.debug("Exception details:", exc_info=True)
            return False

        if outcome is False:
            logger.error(f"{self.claimant_id} processing reported failure for task {task.id}")
            return False
        return True

    def run_bulk(self, batch_size: int, lease_timeout: LeaseTimeout = DEFAULT_LEASE_TIMEOUT,
                 process_fn: Optional[ProcessFn] = None,
                 max_tasks: Optional[int] = None) -> CycleResult:
        """
        Run the bulk variant until a round finds nothing to claim.

        Args:
            batch_size: Maximum tasks claimed per round
            lease_timeout: Lease duration (timedelta or seconds)
            process_fn: Callback invoked for each claimed task
            max_tasks: Stop once this many tasks have been claimed

        Returns:
            Cycle result; `completed` counts tasks transitioned to done
        """
        if batch_size < 1:
            raise ValueError(f"Batch size must be at least 1, got {batch_size}")
        if process_fn is None:
            raise ValueError("A processing callback is required")

        policy = self._policy(lease_timeout)
        result = CycleResult()

        while max_tasks is None or result.claimed < max_tasks:
            limit = batch_size if max_tasks is None else min(batch_size, max_tasks - result.claimed)
            now = policy.now()
            eligible = policy.eligibility_filter(now)

            # Plain read; another claimant may lock any of these before we do
            candidates = self.store.find_eligible(eligible, self._sort(), limit, projection=[ID_FIELD])
            ids = [task.id for task in candidates]
            if not ids:
                logger.debug(f"{self.claimant_id} found no eligible tasks")
                break

            # Eligibility is re-checked per document inside the update
            token = self._claim_token()
            won = self.store.conditional_bulk_update(
                {"$and": [{ID_FIELD: {"$in": ids}}, eligible]},
                policy.claim_update(now, token)
            )
            if won == 0:
                logger.debug(f"{self.claimant_id} lost the race for all {len(ids)} candidates")
                break

            result.rounds += 1
            result.claimed += won
            logger.info(f"{self.claimant_id} processing {won} tasks")

            held = self.store.find({"$and": [{ID_FIELD: {"$in": ids}}, policy.held_by(token)]})
            if len(held) != won:
                logger.warning(f"{self.claimant_id} claimed {won} tasks but re-read {len(held)}")

            succeeded = [task.id for task in held if self._process(task, process_fn)]
            result.failed += len(held) - len(succeeded)

            if succeeded:
                completed = self.store.conditional_bulk_update(
                    {"$and": [{ID_FIELD: {"$in": succeeded}}, policy.held_by(token)]},
                    policy.complete_update()
                )
                if completed < len(succeeded):
                    logger.warning(
                        f"{self.claimant_id} lost the lease on {len(succeeded) - completed} "
                        f"tasks before completing them"
                    )
                result.completed += completed

        logger.info(f"{self.claimant_id} bulk cycle total: {result.completed} "
                    f"(claimed {result.claimed}, failed {result.failed}, rounds {result.rounds})")
        return result

    def run_single(self, lease_timeout: LeaseTimeout = DEFAULT_LEASE_TIMEOUT,
                   process_fn: Optional[ProcessFn] = None,
                   max_tasks: Optional[int] = None) -> CycleResult:
        """
        Run the single-item variant until no eligible task remains.

        Args:
            lease_timeout: Lease duration (timedelta or seconds)
            process_fn: Callback invoked for each claimed task
            max_tasks: Stop once this many tasks have been claimed

        Returns:
            Cycle result; `completed` counts tasks transitioned to done
        """
        if process_fn is None:
            raise ValueError("A processing callback is required")

        policy = self._policy(lease_timeout)
        result = CycleResult()

        while max_tasks is None or result.claimed < max_tasks:
            now = policy.now()
            token = self._claim_token()

            # Match and write happen as one step in the store
            task = self.store.atomic_find_and_modify(
                policy.eligibility_filter(now),
                policy.claim_update(now, token),
                self._sort()
            )
            if task is None:
                break

            result.rounds += 1
            result.claimed += 1
            logger.debug(f"{self.claimant_id} claimed task {task.id}")

            if not self._process(task, process_fn):
                # Left in processing; lease expiry drives the retry
                result.failed += 1
                continue

            completed = self.store.conditional_bulk_update(
                {"$and": [{ID_FIELD: task.id}, policy.held_by(token)]},
                policy.complete_update()
            )
            if completed == 0:
                logger.warning(f"{self.claimant_id} lost the lease on task {task.id} before completing it")
            result.completed += completed

        logger.info(f"{self.claimant_id} single cycle total: {result.completed} "
                    f"(claimed {result.claimed}, failed {result.failed})")
        return result

    def run_bulk_cycle(self, batch_size: int, lease_timeout: LeaseTimeout,
                       process_fn: ProcessFn) -> int:
        """Bulk cycle returning the number of tasks completed."""
        return self.run_bulk(batch_size, lease_timeout, process_fn).completed

    def run_single_cycle(self, lease_timeout: LeaseTimeout, process_fn: ProcessFn) -> int:
        """Single-item cycle returning the number of tasks completed."""
        return self.run_single(lease_timeout, process_fn).completed


def run_bulk_cycle(store: AtomicTaskStore, batch_size: int, lease_timeout: LeaseTimeout,
                   process_fn: ProcessFn, **engine_options) -> int:
    """Run one bulk cycle with a throwaway engine."""
    return ClaimEngine(store, **engine_options).run_bulk_cycle(batch_size, lease_timeout, process_fn)


def run_single_cycle(store: AtomicTaskStore, lease_timeout: LeaseTimeout,
                     process_fn: ProcessFn, **engine_options) -> int:
    """Run one single-item cycle with a throwaway engine."""
    return ClaimEngine(store, **engine_options).run_single_cycle(lease_timeout, process_fn)
