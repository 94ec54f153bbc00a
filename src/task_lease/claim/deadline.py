"""
Deadline wrapper for the processing callback.
"""

import logging
import threading
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from typing import Any, Callable, Optional

from ..errors import ProcessingTimeoutError
from ..models import Task

logger = logging.getLogger(__name__)


def call_with_deadline(fn: Callable[[Task], Any], task: Task, timeout: Optional[float]) -> Any:
    """
    Call fn(task), giving up after `timeout` seconds.

    The call runs on a daemon thread. On expiry the thread is abandoned, not
    killed: it may still finish in the background, but its result is ignored
    and the caller sees a ProcessingTimeoutError.

    Args:
        fn: Processing callback
        task: Task to process
        timeout: Seconds to wait, or None to call inline with no deadline

    Returns:
        Whatever fn returned

    Raises:
        ProcessingTimeoutError: If fn did not finish in time
        Exception: Anything fn raised
    """
    if timeout is None:
        return fn(task)

    future: Future = Future()

    def runner():
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(fn(task))
        except BaseException as e:
            future.set_exception(e)

    thread = threading.Thread(target=runner, name=f"process-{task.id}", daemon=True)
    thread.start()

    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        logger.warning(f"Processing of task {task.id} exceeded {timeout}s deadline; abandoning")
        raise ProcessingTimeoutError(f"Task {task.id} not processed within {timeout}s") from None
