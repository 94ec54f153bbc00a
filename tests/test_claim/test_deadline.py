"""
Tests for the processing deadline wrapper.
"""

import threading
import time

import pytest

from task_lease.claim.deadline import call_with_deadline
from task_lease.errors import ProcessingTimeoutError, TaskLeaseError
from task_lease.models import Task


@pytest.fixture
def task():
    return Task(id=42)


def test_no_timeout_calls_inline(task):
    caller = []

    def fn(t):
        caller.append(threading.current_thread())
        return "ok"

    assert call_with_deadline(fn, task, None) == "ok"
    assert caller == [threading.current_thread()]


def test_result_returned_within_deadline(task):
    assert call_with_deadline(lambda t: t.id * 2, task, 1.0) == 84


def test_false_result_passed_through(task):
    assert call_with_deadline(lambda t: False, task, 1.0) is False


def test_exceeding_deadline_raises(task):
    release = threading.Event()

    def stuck(t):
        release.wait(5)

    started = time.monotonic()
    with pytest.raises(ProcessingTimeoutError) as exc_info:
        call_with_deadline(stuck, task, 0.05)
    release.set()

    assert time.monotonic() - started < 2
    assert "42" in str(exc_info.value)
    assert isinstance(exc_info.value, TaskLeaseError)


def test_exception_propagates(task):
    def boom(t):
        raise KeyError("missing")

    with pytest.raises(KeyError):
        call_with_deadline(boom, task, 1.0)
