"""Bounded queue + fixed set of worker threads feeding the ``EmailProcessor``."""

from __future__ import annotations

import queue
import threading
import time
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Literal, Optional

from loguru import logger

from inbox_triage.errors import PoolClosed
from inbox_triage.models import Email
from inbox_triage.pipeline.orchestrator import EmailProcessor, JobOutcome

JobSource = Literal["backlog", "notification"]

# How often blocked submitters and idle workers re-check the cancellation token.
_POLL_SECONDS = 0.1


@dataclass(frozen=True)
class Job:
    message_id: str
    # Pre-fetched content; when None the worker fetches the message itself.
    email: Optional[Email] = None
    source: JobSource = "backlog"


_STOP = object()


class WorkerPool:
    """Fixed pool of worker threads draining one bounded queue.

    ``submit`` blocks while the queue is full. Each worker pauses
    ``throttle_seconds`` after every job, so aggregate throughput stays near
    ``workers / throttle_seconds`` against the classifier's rate limit.

    Shutdown order: stop intake, then either drain the queue
    (``shutdown(drain=True)``) or cancel (``drain=False``: queued jobs are
    abandoned and in-flight ones stop before the classifier call), then join.
    """

    def __init__(
        self,
        processor: EmailProcessor,
        *,
        workers: int = 5,
        capacity: int = 100,
        throttle_seconds: float = 0.2,
        cancel: Optional[threading.Event] = None,
    ):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._processor = processor
        self._workers = workers
        self._throttle = throttle_seconds
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=capacity)
        self._cancel = cancel or threading.Event()
        self._accepting = False
        self._lock = threading.Lock()
        # Held across the accepting check and the put, so no job lands behind a stop sentinel.
        self._intake = threading.Lock()
        self._threads: List[threading.Thread] = []
        self._outcomes: Counter = Counter()

    @property
    def capacity(self) -> int:
        return self._queue.maxsize

    def start(self) -> None:
        with self._lock:
            if self._threads:
                raise RuntimeError("WorkerPool already started")
            self._accepting = True
            for worker_id in range(self._workers):
                thread = threading.Thread(
                    target=self._run_worker,
                    args=(worker_id,),
                    name=f"triage-worker-{worker_id}",
                    daemon=True,
                )
                self._threads.append(thread)
                thread.start()
        logger.info(f"Worker pool started with {self._workers} workers (queue capacity {self.capacity})")

    def submit(self, job: Job) -> None:
        """Queue a job, blocking while the queue is full."""
        while True:
            # Released between attempts so shutdown can close intake while the queue is full.
            with self._intake:
                if not self._accepting or self._cancel.is_set():
                    raise PoolClosed(f"pool is not accepting jobs ({job.message_id})")
                try:
                    self._queue.put(job, timeout=_POLL_SECONDS)
                    return
                except queue.Full:
                    pass

    def shutdown(self, *, drain: bool = True, timeout: Optional[float] = None) -> bool:
        """Stop intake and wait for the workers; returns True once all of them exited."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._intake:
            self._accepting = False
        if drain:
            # Sentinels queue up behind the pending jobs, so every job is still claimed.
            for _ in self._threads:
                if not self._put_sentinel(deadline):
                    break
        else:
            self._cancel.set()
        remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
        stopped = self.join(remaining)
        if stopped:
            logger.info("Worker pool shut down")
        else:
            logger.warning("Worker pool did not stop within the timeout")
        return stopped

    def _put_sentinel(self, deadline: Optional[float]) -> bool:
        while not self._cancel.is_set():
            if deadline is not None and time.monotonic() >= deadline:
                return False
            try:
                self._queue.put(_STOP, timeout=_POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    def join(self, timeout: Optional[float] = None) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in self._threads:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)
        return not any(thread.is_alive() for thread in self._threads)

    def pending(self) -> int:
        return self._queue.qsize()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            counts = {outcome.value: self._outcomes.get(outcome, 0) for outcome in JobOutcome}
        counts["pending"] = self.pending()
        return counts

    def _run_worker(self, worker_id: int) -> None:
        while not self._cancel.is_set():
            try:
                item = self._queue.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                continue

            if item is _STOP:
                self._queue.task_done()
                break

            job = item
            try:
                outcome = self._processor.process(
                    job.message_id,
                    job.email,
                    cancel=self._cancel,
                    worker_id=worker_id,
                )
            except Exception as exc:
                logger.exception(f"[worker {worker_id}] Unexpected error processing {job.message_id}: {exc}")
                outcome = JobOutcome.FAILED
            finally:
                self._queue.task_done()

            with self._lock:
                self._outcomes[outcome] += 1

            # Fixed per-worker throttle against the classifier's rate limit.
            if self._cancel.wait(self._throttle):
                break
        logger.debug(f"[worker {worker_id}] exiting")
