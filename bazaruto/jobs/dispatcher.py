"""
Background job dispatcher.

Jobs are submitted to named queues. Each queue has its own worker pool and a
priority queue ordered by (priority desc, enqueue order). A failed attempt is
re-queued after a backoff delay until the job's retry budget is spent; the job
is then dead-lettered into the job store.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import traceback
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from bazaruto.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

DEFAULT_QUEUES: Dict[str, int] = {
    "default": 2,
    "mailers": 1,
    "processing": 2,
    "heavy": 1,
    "payments": 1,
    "notifications": 2,
    "claims": 1,
}

MAX_BACKOFF_SECONDS = 300.0


class Job:
    """
    Base class for background jobs.

    Subclasses override the class attributes and implement ``perform``.
    ``backoff`` is ``"exponential"`` (delay doubles per attempt) or ``"linear"``.
    """

    queue_name = "default"
    max_retries = 3
    retry_backoff = 1.0
    backoff = "exponential"
    priority = 0
    timeout: Optional[float] = None

    def __init__(self) -> None:
        self.id = str(uuid.uuid4())
        self.attempts = 0

    async def perform(self) -> None:
        raise NotImplementedError

    def payload(self) -> Dict[str, Any]:
        """Arguments recorded with dead-lettered jobs."""
        return {}

    def backoff_delay(self, attempt: int) -> float:
        if self.backoff == "linear":
            delay = self.retry_backoff * attempt
        else:
            delay = self.retry_backoff * (2 ** (attempt - 1))
        return min(delay, MAX_BACKOFF_SECONDS)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id} queue={self.queue_name}>"


class JobCancelled(Exception):
    pass


@dataclass(order=True)
class _Entry:
    sort_key: tuple
    job: Job = field(compare=False)
    cancel_event: Optional[asyncio.Event] = field(default=None, compare=False)


@dataclass
class _QueueStats:
    enqueued: int = 0
    processed: int = 0
    failed: int = 0
    retried: int = 0
    dead: int = 0
    cancelled: int = 0
    running: int = 0


class JobDispatcher:
    def __init__(
        self,
        store=None,
        queues: Optional[Dict[str, int]] = None,
        default_timeout: float = 300.0,
        default_concurrency: int = 1,
    ) -> None:
        self._store = store
        self._concurrency = dict(DEFAULT_QUEUES if queues is None else queues)
        self._default_timeout = default_timeout
        self._default_concurrency = default_concurrency
        self._seq = itertools.count()
        self._queues: Dict[str, asyncio.PriorityQueue] = {}
        self._workers: Dict[str, List[asyncio.Task]] = {}
        self._delayed: set = set()
        self._stats: Dict[str, _QueueStats] = {}
        self._outstanding = 0
        self._idle: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._closed = False

    # ------------------------------------------------------------------ #
    # Submission
    # ------------------------------------------------------------------ #
    async def perform(self, job: Job) -> str:
        """Enqueue ``job`` and return its id without waiting for it to run."""
        return self._submit(job, None)

    async def perform_with_context(self, job: Job, cancel_event: asyncio.Event) -> str:
        """Enqueue ``job``; setting ``cancel_event`` drops it or cancels the running attempt."""
        return self._submit(job, cancel_event)

    def _submit(self, job: Job, cancel_event: Optional[asyncio.Event]) -> str:
        if self._closed:
            raise RuntimeError("job dispatcher is closed")
        self._ensure_started()
        self._outstanding += 1
        self._idle.clear()
        self._stats_for(job.queue_name).enqueued += 1
        self._push(_Entry((-job.priority, next(self._seq)), job, cancel_event))
        logger.debug("Enqueued %r priority=%s", job, job.priority)
        return job.id

    def _push(self, entry: _Entry) -> None:
        name = entry.job.queue_name
        if name not in self._queues:
            self._start_queue(name)
        self._queues[name].put_nowait(entry)

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #
    def dead_jobs(self, queue: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        if self._store is None:
            return []
        return self._store.dead_jobs(queue, limit)

    def stats(self) -> Dict[str, Dict[str, int]]:
        out: Dict[str, Dict[str, int]] = {}
        for name, st in sorted(self._stats.items()):
            q = self._queues.get(name)
            out[name] = dict(st.__dict__, pending=q.qsize() if q is not None else 0)
        return out

    async def join(self, timeout: Optional[float] = None) -> None:
        """Wait until no job is queued, running or waiting for a retry."""
        if self._idle is None or self._loop is not asyncio.get_running_loop():
            return
        await asyncio.wait_for(self._idle.wait(), timeout)

    async def close(self, timeout: Optional[float] = 10.0) -> None:
        """Drain outstanding work within ``timeout`` seconds, then stop the workers."""
        if self._closed:
            return
        self._closed = True
        try:
            await self.join(timeout)
        except asyncio.TimeoutError:
            logger.warning("Job dispatcher closing with %d outstanding job(s)", self._outstanding)
        tasks = [t for ts in self._workers.values() for t in ts] + list(self._delayed)
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers.clear()
        self._delayed.clear()

    # ------------------------------------------------------------------ #
    # Workers
    # ------------------------------------------------------------------ #
    def _stats_for(self, queue: str) -> _QueueStats:
        return self._stats.setdefault(queue, _QueueStats())

    def _ensure_started(self) -> None:
        loop = asyncio.get_running_loop()
        if self._loop is loop:
            return
        if self._loop is not None:
            logger.debug("Event loop changed; restarting job workers")
        self._loop = loop
        self._queues = {}
        self._workers = {}
        self._delayed = set()
        self._outstanding = 0
        self._idle = asyncio.Event()
        self._idle.set()
        for name in self._concurrency:
            self._start_queue(name)

    def _start_queue(self, name: str) -> None:
        if name not in self._concurrency:
            logger.info("Creating job queue %s on demand", name)
        count = max(1, self._concurrency.get(name, self._default_concurrency))
        q: asyncio.PriorityQueue = asyncio.PriorityQueue()
        self._queues[name] = q
        self._workers[name] = [
            self._loop.create_task(self._worker(name, q), name=f"job-worker:{name}:{i}") for i in range(count)
        ]

    async def _worker(self, name: str, q: asyncio.PriorityQueue) -> None:
        while True:
            entry = await q.get()
            try:
                await self._execute(entry)
            finally:
                q.task_done()

    async def _execute(self, entry: _Entry) -> None:
        job = entry.job
        st = self._stats_for(job.queue_name)
        if entry.cancel_event is not None and entry.cancel_event.is_set():
            st.cancelled += 1
            logger.info("Dropping cancelled job %r", job)
            self._finish()
            return

        job.attempts += 1
        st.running += 1
        try:
            await self._run_attempt(entry)
        except JobCancelled:
            st.cancelled += 1
            logger.info("Job %r cancelled during attempt %d", job, job.attempts)
            self._finish()
        except Exception as e:
            st.failed += 1
            self._handle_failure(entry, e)
        else:
            st.processed += 1
            self._finish()
        finally:
            st.running -= 1

    async def _run_attempt(self, entry: _Entry) -> None:
        timeout = entry.job.timeout or self._default_timeout
        task = asyncio.ensure_future(asyncio.wait_for(entry.job.perform(), timeout))
        if entry.cancel_event is None:
            await task
            return
        waiter = asyncio.ensure_future(entry.cancel_event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise
        if task in done:
            waiter.cancel()
            task.result()
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise JobCancelled()

    def _handle_failure(self, entry: _Entry, error: Exception) -> None:
        job = entry.job
        st = self._stats_for(job.queue_name)
        reason = "timed out" if isinstance(error, asyncio.TimeoutError) else str(error) or type(error).__name__
        if job.attempts > job.max_retries:
            st.dead += 1
            logger.error("Job %r dead after %d attempt(s): %s", job, job.attempts, reason)
            self._record_dead(job, reason, error)
            self._finish()
            return
        delay = job.backoff_delay(job.attempts)
        st.retried += 1
        logger.warning("Job %r failed (attempt %d): %s; retrying in %.2fs", job, job.attempts, reason, delay)
        task = self._loop.create_task(self._requeue_later(entry, delay))
        self._delayed.add(task)
        task.add_done_callback(self._delayed.discard)

    async def _requeue_later(self, entry: _Entry, delay: float) -> None:
        await asyncio.sleep(delay)
        if entry.cancel_event is not None and entry.cancel_event.is_set():
            self._stats_for(entry.job.queue_name).cancelled += 1
            self._finish()
            return
        self._push(_Entry((-entry.job.priority, next(self._seq)), entry.job, entry.cancel_event))

    def _record_dead(self, job: Job, reason: str, error: Exception) -> None:
        if self._store is None:
            return
        record = {
            "job_id": job.id,
            "job_class": type(job).__name__,
            "queue": job.queue_name,
            "attempts": job.attempts,
            "error": reason,
            "traceback": "".join(traceback.format_exception(type(error), error, error.__traceback__))[-2000:],
            "payload": job.payload(),
            "failed_at": utcnow().isoformat(),
        }
        try:
            self._store.record_dead_job(record)
        except Exception as e:
            logger.error("Failed to record dead job %s: %s", job.id, e, exc_info=True)

    def _finish(self) -> None:
        self._outstanding -= 1
        if self._outstanding <= 0:
            self._outstanding = 0
            self._idle.set()


async def dispatch_safely(dispatcher: Optional[JobDispatcher], job: Job) -> Optional[str]:
    """Submit ``job``; failures are logged and never raised."""
    if dispatcher is None:
        return None
    try:
        return await dispatcher.perform(job)
    except Exception as e:
        logger.warning("Failed to dispatch %r: %s", job, e)
        return None
