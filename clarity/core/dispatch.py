"""
Bounded background dispatch for best-effort side effects.

Metric emission and event publication run here, off the caller's path.
A fixed pool of worker threads drains a bounded queue. When the queue is
full the oldest pending task is dropped so producers never block.
"""

import logging
import queue
import threading
from typing import Callable, List, Tuple

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 2
DEFAULT_QUEUE_SIZE = 1000

_STOP = object()


class SideEffectDispatcher:
    """Fixed-size worker pool fed by a bounded drop-oldest queue.

    Delivery is at-most-once: a task that fails is logged and discarded, a
    task pushed out by backpressure is counted in ``dropped``.
    """

    def __init__(self, workers: int = DEFAULT_WORKERS, queue_size: int = DEFAULT_QUEUE_SIZE):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        if queue_size < 1:
            raise ValueError("queue_size must be >= 1")
        self._queue: "queue.Queue" = queue.Queue(maxsize=queue_size)
        self._lock = threading.Lock()
        self._closed = False
        self.dropped = 0
        self.failed = 0
        self._threads: List[threading.Thread] = []
        for i in range(workers):
            thread = threading.Thread(target=self._run, name=f"clarity-dispatch-{i}", daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.debug("Dispatcher started (workers=%d, queue_size=%d)", workers, queue_size)

    def submit(self, task: Callable[[], None], description: str = "side effect") -> bool:
        """Queue a task without blocking.

        Returns:
            False if the dispatcher is shut down, True otherwise
        """
        item: Tuple[Callable[[], None], str] = (task, description)
        with self._lock:
            if self._closed:
                logger.warning("Dispatcher is shut down, discarding %s", description)
                return False
            while True:
                try:
                    self._queue.put_nowait(item)
                    return True
                except queue.Full:
                    pass
                try:
                    _, dropped_description = self._queue.get_nowait()
                except queue.Empty:
                    continue
                self._queue.task_done()
                self.dropped += 1
                logger.warning("Dispatch queue full, dropped oldest task: %s", dropped_description)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                task, description = item
                try:
                    task()
                except Exception:
                    with self._lock:
                        self.failed += 1
                    logger.warning("Side effect failed: %s", description, exc_info=True)
            finally:
                self._queue.task_done()

    def join(self) -> None:
        """Block until every queued task has been processed."""
        self._queue.join()

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting tasks and stop the workers after the queue drains."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        # Outside the lock: put() may block while workers still need it
        for _ in self._threads:
            self._queue.put(_STOP)
        if wait:
            for thread in self._threads:
                thread.join()

    def __enter__(self) -> "SideEffectDispatcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown(wait=True)
