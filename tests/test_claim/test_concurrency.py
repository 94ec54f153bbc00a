"""
Concurrent claimants against one store: every task is processed exactly once.
"""

import threading
import time
from collections import Counter

import pytest

from task_lease.claim.engine import ClaimEngine

WORKERS = 6
TASKS = 120


def run_claimants(store, modes, processor, batch_size=7):
    """Start one thread per mode, released together by a barrier."""
    barrier = threading.Barrier(len(modes))
    completed = [0] * len(modes)
    errors = []

    def claimant(index, mode):
        engine = ClaimEngine(store, claimant_id=f"worker-{index}")
        barrier.wait()
        try:
            if mode == "bulk":
                completed[index] = engine.run_bulk_cycle(batch_size, 300, processor)
            else:
                completed[index] = engine.run_single_cycle(300, processor)
        except Exception as e:
            errors.append(e)

    threads = [
        threading.Thread(target=claimant, args=(i, mode))
        for i, mode in enumerate(modes)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(30)

    assert not errors
    return completed


def slow(task):
    time.sleep(0.0005)


@pytest.mark.parametrize("modes", [
    ["bulk"] * WORKERS,
    ["single"] * WORKERS,
    ["bulk", "single"] * (WORKERS // 2),
], ids=["bulk", "single", "mixed"])
def test_each_task_processed_exactly_once(store, seed, recorder, modes):
    seed(TASKS)
    processor = recorder(on_task=slow)

    completed = run_claimants(store, modes, processor)

    assert sum(completed) == TASKS
    assert sorted(processor.seen) == list(range(1, TASKS + 1))
    assert max(Counter(processor.seen).values()) == 1
    assert store.count_by_status() == {"done": TASKS}


def test_concurrent_repeat_after_drain_does_nothing(store, seed, recorder):
    seed(20)
    run_claimants(store, ["bulk"] * 3, recorder())
    mutations = store.mutations

    again = recorder()
    completed = run_claimants(store, ["bulk", "single", "bulk"], again)

    assert sum(completed) == 0
    assert again.seen == []
    assert store.mutations == mutations
