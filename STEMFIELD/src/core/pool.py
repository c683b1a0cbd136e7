"""Fixed-size worker pool with a cap on tasks in flight."""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

HARDWARE_CONCURRENCY = -1


def resolve_concurrency(concurrency: Optional[int]) -> int:
    if concurrency is None or concurrency == HARDWARE_CONCURRENCY:
        return os.cpu_count() or 1
    if concurrency < 1:
        raise ValueError(f"Invalid concurrency: {concurrency}")
    return int(concurrency)


class WorkerPool:
    """
    Runs submitted callables on a fixed set of threads.

    ``submit`` blocks the caller while ``max_pending`` tasks are queued or running,
    so a fast producer cannot pile up unprocessed work.
    """

    def __init__(self, concurrency: Optional[int] = HARDWARE_CONCURRENCY, max_pending: int = 0):
        self.concurrency = resolve_concurrency(concurrency)
        self.max_pending = int(max_pending) if max_pending and max_pending > 0 else 2 * self.concurrency
        self._slots = threading.BoundedSemaphore(self.max_pending)
        self._executor = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="stem-worker")
        logger.debug("Worker pool: %d threads, %d tasks in flight", self.concurrency, self.max_pending)

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        self._slots.acquire()
        try:
            future = self._executor.submit(fn, *args)
        except BaseException:
            self._slots.release()
            raise
        future.add_done_callback(self._on_done)
        return future

    def _on_done(self, _future: Future) -> None:
        self._slots.release()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown(wait=True)
