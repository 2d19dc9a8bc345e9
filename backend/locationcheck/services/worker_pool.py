"""Bounded worker pool for CPU-bound work (key derivation).

The event loop must never run PBKDF2 inline: a telemetry write touches up to
six fields and each derivation is 100k iterations. Work is submitted to a
fixed-size thread pool; an asyncio.Semaphore caps the number of jobs that are
running or queued. When the cap is reached callers wait for a slot instead of
being dropped, and the total wait plus run time is bounded by a timeout.
"""
import asyncio
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, Optional, TypeVar

from ..errors import WorkerPoolTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WorkerPool:
    """Thread pool with a bounded backlog and per-call timeout."""

    def __init__(self, workers: int = 4, queue_size: int = 32, timeout: float = 30.0):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.workers = workers
        self.capacity = workers + max(queue_size, 0)
        self.timeout = timeout
        self._executor: Optional[ThreadPoolExecutor] = None
        self._slots: Optional[asyncio.Semaphore] = None

    def start(self):
        """Create the executor. Idempotent."""
        if self._executor is not None:
            return
        self._executor = ThreadPoolExecutor(
            max_workers=self.workers,
            thread_name_prefix="cipher",
        )
        self._slots = asyncio.Semaphore(self.capacity)
        logger.info(f"Worker pool started ({self.workers} workers, capacity {self.capacity})")

    def shutdown(self):
        if self._executor is None:
            return
        self._executor.shutdown(wait=True)
        self._executor = None
        self._slots = None
        logger.info("Worker pool stopped")

    async def run(self, func: Callable[..., T], *args: Any, timeout: Optional[float] = None) -> T:
        """Run func(*args) on the pool and await its result.

        The slot taken here is held until the job itself finishes, not until
        the caller stops waiting, so abandoned jobs still count against the
        backlog. A job that times out before a worker picks it up is dropped.

        Raises:
            WorkerPoolTimeout: if no slot frees up, or the job does not
                finish, within the timeout.
        """
        if self._executor is None:
            self.start()
        limit = self.timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + limit
        slots = self._slots

        try:
            await asyncio.wait_for(slots.acquire(), timeout=limit)
        except asyncio.TimeoutError as e:
            logger.warning(f"No worker pool slot within {limit}s")
            raise WorkerPoolTimeout() from e

        job = self._executor.submit(func, *args)
        job.add_done_callback(partial(self._release, loop, slots))
        try:
            return await asyncio.wait_for(asyncio.wrap_future(job), timeout=max(deadline - loop.time(), 0))
        except asyncio.TimeoutError as e:
            if job.cancel():
                logger.warning(f"Worker pool job dropped before starting after {limit}s")
            else:
                logger.warning(f"Worker pool job timed out after {limit}s")
            raise WorkerPoolTimeout() from e

    @staticmethod
    def _release(loop: asyncio.AbstractEventLoop, slots: asyncio.Semaphore, job: Future):
        # Runs on the worker thread, or inline when the job is cancelled
        try:
            loop.call_soon_threadsafe(slots.release)
        except RuntimeError:
            logger.debug("Event loop closed before a worker pool slot was released")
