"""
Worker runtime: thread pools that drain JobQueue kinds.

Each registered kind gets its own Worker with its own threads, so a backlog of
long transcriptions never starves extraction. A handler returning normally
completes the job; raising records a failed attempt and the queue decides
between a delayed retry and terminal failure.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional

from domain.models import Job, JobKind
from services.job_queue import JobQueue
from shared_utils.constants import Defaults, LogScope
from shared_utils.error_handler import AppException
from shared_utils.logging_utils import get_scoped_logger

logger = get_scoped_logger(LogScope.WORKER)


class JobContext:
    """What a handler sees: the reserved job and a progress reporter."""

    def __init__(self, job: Job, queue: JobQueue) -> None:
        self.job = job
        self._queue = queue

    @property
    def payload(self) -> Dict[str, Any]:
        return self.job.payload

    @property
    def lease_expired(self) -> bool:
        """True when this attempt took over from a worker that stopped reporting."""
        return self.job.lease_expired

    def progress(self, pct: int) -> None:
        self.job = self._queue.report_progress(self.job, pct)


JobHandler = Callable[[JobContext], Optional[Dict[str, Any]]]


class Worker:
    """Runs ``handler`` for jobs of one kind on ``concurrency`` threads."""

    def __init__(
        self,
        queue: JobQueue,
        kind: JobKind,
        handler: JobHandler,
        concurrency: int = Defaults.WORKER_CONCURRENCY,
        poll_interval: float = Defaults.WORKER_POLL_INTERVAL,
    ) -> None:
        self.queue = queue
        self.kind = kind
        self.handler = handler
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def is_running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def run_once(self) -> Optional[Job]:
        """Reserve and run one job. Returns the finished job, or None if idle."""
        job = self.queue.reserve(self.kind)
        if job is None:
            return None

        context = JobContext(job, self.queue)
        try:
            result = self.handler(context)
        except Exception as exc:
            message = exc.message if isinstance(exc, AppException) else str(exc)
            logger.error(
                "job_handler_failed",
                job_id=job.id,
                kind=self.kind.value,
                attempt=job.attempts_made,
                error_type=type(exc).__name__,
                error=message,
            )
            return self.queue.fail(context.job, message)
        return self.queue.complete(context.job, result)

    def run_until_empty(self, max_jobs: Optional[int] = None) -> int:
        """Process due jobs on the calling thread until none are left."""
        processed = 0
        while max_jobs is None or processed < max_jobs:
            if self.run_once() is None:
                break
            processed += 1
        return processed

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._threads = [
            threading.Thread(
                target=self._loop,
                name=f"worker-{self.kind.value}-{i}",
                daemon=True,
            )
            for i in range(self.concurrency)
        ]
        for thread in self._threads:
            thread.start()
        logger.info("worker_started", kind=self.kind.value, concurrency=self.concurrency)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal threads to exit after their current job and wait for them."""
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout)
        logger.info("worker_stopped", kind=self.kind.value)

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                job = self.run_once()
            except AppException as exc:
                # Queue store unavailable; back off and poll again
                logger.error("worker_poll_failed", kind=self.kind.value, error=exc.message)
                job = None
            if job is None:
                self._stop.wait(self.poll_interval)


class WorkerPool:
    """One Worker per registered job kind."""

    def __init__(self, queue: JobQueue, poll_interval: float = Defaults.WORKER_POLL_INTERVAL) -> None:
        self._queue = queue
        self._poll_interval = poll_interval
        self.workers: Dict[JobKind, Worker] = {}

    def register(
        self,
        kind: JobKind,
        handler: JobHandler,
        concurrency: int = Defaults.WORKER_CONCURRENCY,
    ) -> Worker:
        worker = Worker(
            self._queue,
            kind,
            handler,
            concurrency=concurrency,
            poll_interval=self._poll_interval,
        )
        self.workers[kind] = worker
        return worker

    def start(self) -> None:
        for worker in self.workers.values():
            worker.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        for worker in self.workers.values():
            worker.stop(timeout)

    def drain(self) -> Dict[str, int]:
        """Synchronously run every due job, kind by kind, until all are idle.

        Extraction jobs queued by transcription are picked up in a later pass.
        """
        totals = {kind.value: 0 for kind in self.workers}
        while True:
            processed = 0
            for kind, worker in self.workers.items():
                count = worker.run_until_empty()
                totals[kind.value] += count
                processed += count
            if not processed:
                return totals
