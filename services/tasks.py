# ondc_relay/services/tasks.py
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Set

from config import WORKER_THREADS
from logger import get_logger

log = get_logger("tasks")


class TaskRunner:
    """
    Runs the asynchronous half of a request (decide, build, deliver) after the
    synchronous ACK has gone out. Each unit of work is supervised: failures that
    escape the pipeline are logged, never dropped.
    """

    def __init__(self, max_workers: int = WORKER_THREADS):
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="relay")
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def spawn(self, name: str, fn: Callable, *args, **kwargs) -> Future:
        fut = self._pool.submit(fn, *args, **kwargs)
        with self._lock:
            self._pending.add(fut)
        fut.add_done_callback(lambda f: self._finished(name, f))
        log.debug(f"Spawned task {name}")
        return fut

    def _finished(self, name: str, fut: Future) -> None:
        with self._lock:
            self._pending.discard(fut)
        if fut.cancelled():
            log.warning(f"Task {name} was cancelled before it ran")
            return
        exc = fut.exception()
        if exc is not None:
            log.error(f"Task {name} failed: {exc!r}", exc_info=exc)

    def join(self, timeout: float | None = None) -> bool:
        """Wait until every spawned task (including ones spawned meanwhile) finished."""
        while True:
            with self._lock:
                pending = set(self._pending)
            if not pending:
                return True
            done, not_done = wait(pending, timeout=timeout)
            if not_done:
                return False

    def shutdown(self, wait_for_tasks: bool = True) -> None:
        self._pool.shutdown(wait=wait_for_tasks)
