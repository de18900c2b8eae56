import logging
import threading
from concurrent.futures import wait
from typing import Any, Callable, List

from gradfn.config import get_config, get_executor

logger = logging.getLogger(__name__)

# Marks the threads of the shared pool while they run a task
_worker = threading.local()


def _run_in_worker(task: Callable[[], Any]) -> Any:
    _worker.active = True
    try:
        return task()
    finally:
        _worker.active = False


def fork_join(*tasks: Callable[[], Any]) -> List[Any]:
    """
    Run independent tasks concurrently and block until every one of them has completed.

    The tasks are submitted to the worker pool shared by the whole package (see
    :func:`gradfn.config.get_executor`) and the call waits on every submitted future, so no
    task outlives it. If any task raises, the exception of the first failing task (in
    submission order) is re-raised once all of them are done.

    A fork-join started from inside a pool task runs its tasks in the calling thread. A bounded
    pool whose workers all wait on nested tasks would otherwise never make progress.

    NumPy releases the GIL inside its BLAS-backed routines, so matrix products computed
    by different tasks do overlap.

    Args:
        *tasks (Callable[[], Any]): Zero-argument callables.

    Returns:
        List[Any]: The result of each task, in submission order.

    Examples:
        >>> fork_join(lambda: 1, lambda: 2)
        [1, 2]
    """
    if not tasks:
        return []
    config = get_config()
    if len(tasks) == 1 or not config.parallel_backward or getattr(_worker, "active", False):
        return [task() for task in tasks]

    logger.debug(f"fork_join: {len(tasks)} tasks")
    executor = get_executor()
    futures = [executor.submit(_run_in_worker, task) for task in tasks]
    wait(futures)

    errors = [f.exception() for f in futures if f.exception() is not None]
    if errors:
        raise errors[0]
    return [f.result() for f in futures]
