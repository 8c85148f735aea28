"""Bounded worker pools for browser tabs and renderer calls."""
from __future__ import annotations

import logging
import os
import queue
import threading
from concurrent.futures import Future
from typing import Callable, Dict, Optional, TypeVar

from .errors import OperationCancelled, PoolClosedError

logger = logging.getLogger(__name__)

BROWSER = "browser"
RENDERER = "renderer"

T = TypeVar("T")
Work = Callable[[], None]


class _Worker(threading.Thread):
    """Pulls work from the shared queue and runs it synchronously."""

    def __init__(self, name: str, work_queue: "queue.Queue[Work]", running: threading.Event) -> None:
        super().__init__(name=name, daemon=True)
        self._queue = work_queue
        self._running = running

    def run(self) -> None:
        while True:
            try:
                work = self._queue.get(timeout=0.1)
            except queue.Empty:
                if not self._running.is_set():
                    break
                continue
            try:
                work()
            except Exception:
                logger.exception("unhandled error in %s", self.name)
            finally:
                self._queue.task_done()


class WorkerPool:
    """Fixed set of workers reading from a queue of the same size.

    ``do`` blocks while the queue is full and never drops work. After
    ``shutdown`` no new work is accepted but queued and running work
    completes.
    """

    def __init__(self, max_workers: int = 0, name: str = "pool") -> None:
        if max_workers <= 0:
            max_workers = os.cpu_count() or 1
        self.name = name
        self.max_workers = max_workers
        self._queue: "queue.Queue[Work]" = queue.Queue(maxsize=max_workers)
        self._running = threading.Event()
        self._running.set()
        self._lock = threading.Lock()
        self._workers = [
            _Worker(f"{name}-worker-{index}", self._queue, self._running) for index in range(max_workers)
        ]
        for worker in self._workers:
            worker.start()

    @property
    def closed(self) -> bool:
        return not self._running.is_set()

    def do(self, work: Work, cancel: Optional[threading.Event] = None) -> None:
        """Enqueue ``work``, waiting for a free slot if the queue is full."""

        while True:
            # shutdown takes the lock, so no work lands after the workers stopped
            with self._lock:
                if self.closed:
                    raise PoolClosedError(f"{self.name} pool is closed")
                try:
                    self._queue.put(work, timeout=0.05)
                    return
                except queue.Full:
                    pass
            if cancel is not None and cancel.is_set():
                raise OperationCancelled(f"submission to {self.name} pool cancelled")

    def submit(self, fn: Callable[[], T], cancel: Optional[threading.Event] = None) -> "Future[T]":
        """Run ``fn`` on the pool and return a future for its result."""

        future: "Future[T]" = Future()

        def work() -> None:
            if not future.set_running_or_notify_cancel():
                return
            if cancel is not None and cancel.is_set():
                future.set_exception(OperationCancelled("request cancelled before work started"))
                return
            try:
                future.set_result(fn())
            except Exception as exc:
                future.set_exception(exc)

        self.do(work, cancel)
        return future

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        with self._lock:
            self._running.clear()
        if wait:
            for worker in self._workers:
                worker.join(timeout)

    done = shutdown

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()


Pools = Dict[str, WorkerPool]


def new_pools(max_browser_workers: int, max_render_workers: int) -> Pools:
    return {
        BROWSER: WorkerPool(max_browser_workers, name=BROWSER),
        RENDERER: WorkerPool(max_render_workers, name=RENDERER),
    }


__all__ = ["BROWSER", "RENDERER", "Pools", "WorkerPool", "new_pools"]
