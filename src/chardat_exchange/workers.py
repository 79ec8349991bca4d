"""
Execution contexts for snapshot pipelines.

* :class:`WorkerPool`: bounded thread pool for CPU-bound work that never touches
  scene resources (serialization, compression, PNG decoding).
* :class:`GraphicsContext`: a single thread that owns every scene mutation and
  texture readback. Work reaches it through a single-consumer queue; each queued
  task is one step, so long operations are naturally interleaved with other
  tasks posted by the frame loop.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from queue import Empty, Full, Queue
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WorkerPool:
    """Thin wrapper over :class:`ThreadPoolExecutor` with blocking helpers."""

    def __init__(self, max_workers: int = 4, name: str = "chardat-worker") -> None:
        if max_workers <= 0:
            raise ValueError("max_workers must be positive")
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix=name
        )

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> Future[T]:
        return self._executor.submit(fn, *args, **kwargs)

    def run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run *fn* on a worker and wait for its result."""
        return self.submit(fn, *args, **kwargs).result()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class GraphicsContext:
    """Dedicated thread that executes every graphics-bound task in FIFO order."""

    def __init__(self, queue_maxsize: int = 1000, name: str = "GraphicsThread") -> None:
        self._queue: Queue = Queue(maxsize=queue_maxsize)
        self._name = name
        self._thread: threading.Thread | None = None
        self._running = False
        self._lock = threading.Lock()
        self.tasks_completed = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def is_current(self) -> bool:
        """True when called from the graphics thread itself."""
        return self._thread is not None and threading.current_thread() is self._thread

    def start(self) -> GraphicsContext:
        with self._lock:
            if self._running:
                return self
            self._running = True
            self._thread = threading.Thread(
                target=self._loop, name=self._name, daemon=True
            )
            self._thread.start()
            logger.debug(f"{self._name} started")
        return self

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            try:
                self._queue.put_nowait(None)  # sentinel
            except Full:
                pass
        if self._thread is not None:
            self._thread.join(timeout=5.0)
        logger.debug(f"{self._name} stopped after {self.tasks_completed} tasks")

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> Future[T]:
        """Queue *fn* for the graphics thread."""
        future: Future[T] = Future()
        # Held across the put so nothing is queued behind the stop sentinel
        with self._lock:
            if not self._running:
                raise RuntimeError(f"{self._name} is not running")
            self._queue.put((future, fn, args, kwargs))
        return future

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run *fn* on the graphics thread and wait for its result.

        Calls issued from the graphics thread run inline instead of deadlocking
        on their own queue.
        """
        if self.is_current():
            return fn(*args, **kwargs)
        return self.submit(fn, *args, **kwargs).result()

    def _loop(self) -> None:
        while self._running or not self._queue.empty():
            try:
                item = self._queue.get(timeout=0.05)
            except Empty:
                continue
            if item is None:
                break

            future, fn, args, kwargs = item
            if not future.set_running_or_notify_cancel():
                continue
            try:
                result = fn(*args, **kwargs)
            except BaseException as exc:
                future.set_exception(exc)
            else:
                future.set_result(result)
            self.tasks_completed += 1

        # Fail whatever is left so waiters are released
        while True:
            try:
                item = self._queue.get_nowait()
            except Empty:
                break
            if item is not None:
                item[0].set_exception(RuntimeError(f"{self._name} stopped"))


def run_on(graphics: GraphicsContext | None, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run *fn* on *graphics* when given, otherwise on the calling thread."""
    if graphics is None:
        return fn(*args, **kwargs)
    return graphics.call(fn, *args, **kwargs)


def run_in(workers: WorkerPool | None, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run *fn* on *workers* when given, otherwise on the calling thread."""
    if workers is None:
        return fn(*args, **kwargs)
    return workers.run(fn, *args, **kwargs)
