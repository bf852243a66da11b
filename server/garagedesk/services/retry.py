"""
Background retry queue for fire-and-forget side effects.

Audit writes and deferred space releases go through here so the entry and
exit paths never wait on them.
"""

import logging
import threading
from dataclasses import dataclass
from queue import Empty, Full, Queue
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class RetryJob:
    name: str
    func: Callable[[], None]
    max_attempts: int


class RetryQueue:
    """Bounded queue drained by a daemon worker with exponential backoff."""

    def __init__(
        self,
        name: str = "retry",
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        maxsize: int = 1000
    ):
        self.name = name
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds

        self._queue: Queue = Queue(maxsize=maxsize)
        self._stop = threading.Event()
        self._worker: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._stats = {
            'submitted': 0,
            'succeeded': 0,
            'retried': 0,
            'failed': 0,
            'dropped': 0
        }

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self):
        """Start the background worker."""
        if self.running:
            return
        self._stop.clear()
        self._worker = threading.Thread(
            target=self._run_loop,
            name=f"{self.name}-worker",
            daemon=True
        )
        self._worker.start()
        logger.info(f"Retry queue '{self.name}' started")

    def stop(self, timeout: float = 5.0):
        """Stop the worker and run whatever is still queued."""
        self._stop.set()
        if self._worker:
            self._worker.join(timeout=timeout)
            self._worker = None
        flushed = self.drain()
        logger.info(f"Retry queue '{self.name}' stopped ({flushed} jobs flushed)")

    def submit(self, func: Callable[[], None], name: str = "job", max_attempts: Optional[int] = None) -> bool:
        """
        Queue a job without blocking.

        Returns:
            False if the queue was full and the job was dropped
        """
        job = RetryJob(name=name, func=func, max_attempts=max_attempts or self.max_attempts)
        try:
            self._queue.put_nowait(job)
        except Full:
            self._count('dropped')
            logger.error(f"Retry queue '{self.name}' full, dropped job {name}")
            return False
        self._count('submitted')
        return True

    def drain(self) -> int:
        """Run all queued jobs in the calling thread. Returns how many ran."""
        processed = 0
        while True:
            try:
                job = self._queue.get_nowait()
            except Empty:
                return processed
            self._execute(job)
            processed += 1

    def get_stats(self) -> dict:
        with self._lock:
            stats = dict(self._stats)
        return {
            **stats,
            'pending': self._queue.qsize(),
            'running': self.running
        }

    def _run_loop(self):
        while not self._stop.is_set():
            try:
                job = self._queue.get(timeout=1.0)
            except Empty:
                continue
            self._execute(job)

    def _execute(self, job: RetryJob):
        for attempt in range(1, job.max_attempts + 1):
            try:
                job.func()
                self._count('succeeded')
                return
            except Exception as e:
                if attempt == job.max_attempts:
                    self._count('failed')
                    logger.error(
                        f"Job {job.name} failed after {attempt} attempts, giving up: {e}"
                    )
                    return
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                self._count('retried')
                logger.warning(
                    f"Job {job.name} attempt {attempt}/{job.max_attempts} failed: {e}, "
                    f"retrying in {delay:.1f}s"
                )
                if delay > 0:
                    self._stop.wait(delay)

    def _count(self, key: str):
        with self._lock:
            self._stats[key] += 1
