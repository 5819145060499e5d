"""Delay-aware per-store job queue with exponential retry.

A job moves through ``pending -> running -> succeeded`` or, on failure,
``running -> retry_scheduled -> running`` until its attempts run out and it
ends ``failed``. Each terminal job emits exactly one status event.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from app.utils.broadcast import StatusBroadcaster, get_broadcaster

logger = logging.getLogger(__name__)

Handler = Callable[[str], Awaitable[Any]]


def job_workers() -> int:
    return int(os.environ.get("JOB_WORKERS", "2"))


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    attempts: int = 3
    base_delay: float = 10.0

    @classmethod
    def from_env(cls) -> RetryPolicy:
        return cls(
            attempts=int(os.environ.get("JOB_ATTEMPTS", "3")),
            base_delay=float(os.environ.get("JOB_BACKOFF_SECONDS", "10")),
        )

    def delay_for(self, attempt: int) -> float:
        """Delay before the retry that follows failed attempt number ``attempt``."""
        return self.base_delay * 2 ** (attempt - 1)

    def delays(self) -> list[float]:
        return [self.delay_for(attempt) for attempt in range(1, self.attempts)]


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"


TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.PENDING: frozenset({JobState.RUNNING}),
    JobState.RUNNING: frozenset({JobState.SUCCEEDED, JobState.RETRY_SCHEDULED, JobState.FAILED}),
    JobState.RETRY_SCHEDULED: frozenset({JobState.RUNNING}),
    JobState.SUCCEEDED: frozenset(),
    JobState.FAILED: frozenset(),
}


class InvalidTransition(RuntimeError):
    pass


@dataclass(slots=True)
class Job:
    store_id: str
    kind: str
    run_at: float
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: JobState = JobState.PENDING
    attempt: int = 0
    next_at: float | None = None
    started_at: float | None = None
    result: Any = None
    error: BaseException | None = None
    retry_delays: list[float] = field(default_factory=list)
    history: list[JobState] = field(default_factory=lambda: [JobState.PENDING])

    @property
    def terminal(self) -> bool:
        return self.state in (JobState.SUCCEEDED, JobState.FAILED)

    def _move(self, state: JobState) -> None:
        if state not in TRANSITIONS[self.state]:
            raise InvalidTransition(f"Job {self.id}: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def start(self, now: float) -> None:
        self._move(JobState.RUNNING)
        self.attempt += 1
        self.next_at = None
        if self.started_at is None:
            self.started_at = now

    def succeed(self, result: Any) -> None:
        self._move(JobState.SUCCEEDED)
        self.result = result

    def schedule_retry(self, now: float, delay: float, error: BaseException) -> None:
        self._move(JobState.RETRY_SCHEDULED)
        self.next_at = now + delay
        self.retry_delays.append(delay)
        self.error = error

    def fail(self, error: BaseException) -> None:
        self._move(JobState.FAILED)
        self.error = error


def report_success(broadcaster: StatusBroadcaster, kind: str, store_id: str, result: Any, elapsed: float) -> None:
    broadcaster.success(
        f"Completed {kind} processing for store {store_id}\n{result.summary()}\nTime: {round(elapsed)} seconds"
    )


def report_failure(broadcaster: StatusBroadcaster, kind: str, store_id: str, attempts: int, error: BaseException) -> None:
    broadcaster.error(f"Failed {kind} processing for store {store_id} after {attempts} attempts: {error}")


@dataclass(slots=True)
class PassSummary:
    kind: str
    results: dict[str, Any] = field(default_factory=dict)
    failed_stores: dict[str, str] = field(default_factory=dict)

    @property
    def stores(self) -> int:
        return len(self.results) + len(self.failed_stores)

    def as_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "stores": self.stores,
            "succeeded": len(self.results),
            "failed": len(self.failed_stores),
            "results": {store_id: result.as_dict() for store_id, result in self.results.items()},
            "errors": dict(self.failed_stores),
        }


async def run_pass(
    store_ids: list[str],
    handler: Handler,
    *,
    kind: str,
    broadcaster: StatusBroadcaster | None = None,
) -> PassSummary:
    """Run ``handler`` for each store in turn, without queueing or retries."""
    broadcaster = broadcaster or get_broadcaster()
    summary = PassSummary(kind=kind)
    if not store_ids:
        broadcaster.info("No active stores found to process")
        return summary
    broadcaster.info(f"Manual {kind} processing started for {len(store_ids)} stores")
    for store_id in store_ids:
        started = time.monotonic()
        try:
            result = await handler(store_id)
        except Exception as exc:
            logger.exception("Manual %s processing failed for store %s", kind, store_id)
            report_failure(broadcaster, kind, store_id, 1, exc)
            summary.failed_stores[store_id] = str(exc)
            continue
        report_success(broadcaster, kind, store_id, result, time.monotonic() - started)
        summary.results[store_id] = result
    broadcaster.success(
        f"Completed {kind} processing for all stores: {len(summary.results)}/{summary.stores} succeeded"
    )
    return summary


class JobQueue:
    """In-process queue: timers release delayed jobs to a pool of worker tasks."""

    def __init__(
        self,
        handler: Handler,
        *,
        kind: str = "order",
        policy: RetryPolicy | None = None,
        workers: int | None = None,
        broadcaster: StatusBroadcaster | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_completed: Callable[[Job, Any], Any] | None = None,
        on_failed: Callable[[Job, BaseException], Any] | None = None,
    ) -> None:
        self._handler = handler
        self.kind = kind
        self.policy = policy or RetryPolicy.from_env()
        self.worker_count = workers or job_workers()
        self.broadcaster = broadcaster or get_broadcaster()
        self._clock = clock
        self._on_completed = on_completed
        self._on_failed = on_failed
        self._ready: asyncio.Queue[Job] = asyncio.Queue()
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._workers: list[asyncio.Task] = []
        self._idle = asyncio.Event()
        self._idle.set()
        self.active: dict[str, Job] = {}

    def enqueue(self, store_id: str, *, delay: float = 0.0) -> Job:
        """Schedule a job to run no earlier than ``delay`` seconds from now."""
        job = Job(store_id=store_id, kind=self.kind, run_at=self._clock() + delay)
        self.active[job.id] = job
        self._idle.clear()
        self._schedule(job, delay)
        logger.debug("Enqueued %s job %s for store %s (delay %ss)", self.kind, job.id, store_id, delay)
        return job

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [asyncio.create_task(self._work()) for _ in range(self.worker_count)]

    async def join(self) -> None:
        """Wait until every enqueued job is terminal."""
        await self._idle.wait()

    async def close(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

    async def execute(self, job: Job) -> Any:
        """Run one attempt of ``job``; the handler's error is re-raised after bookkeeping."""
        job.start(self._clock())
        try:
            result = await self._handler(job.store_id)
        except Exception as exc:
            if job.attempt < self.policy.attempts:
                delay = self.policy.delay_for(job.attempt)
                job.schedule_retry(self._clock(), delay, exc)
                logger.warning(
                    "%s job for store %s failed (attempt %s/%s), retrying in %ss: %s",
                    self.kind, job.store_id, job.attempt, self.policy.attempts, delay, exc,
                )
                self._schedule(job, delay)
            else:
                job.fail(exc)
                logger.error("%s job for store %s failed terminally", self.kind, job.store_id, exc_info=exc)
                report_failure(self.broadcaster, self.kind, job.store_id, job.attempt, exc)
                self._finish(job, self._on_failed, exc)
            raise
        job.succeed(result)
        report_success(self.broadcaster, self.kind, job.store_id, result, self._clock() - (job.started_at or 0.0))
        self._finish(job, self._on_completed, result)
        return result

    def _schedule(self, job: Job, delay: float) -> None:
        if delay <= 0:
            self._ready.put_nowait(job)
            return
        loop = asyncio.get_running_loop()
        self._timers[job.id] = loop.call_later(delay, self._release, job)

    def _release(self, job: Job) -> None:
        self._timers.pop(job.id, None)
        self._ready.put_nowait(job)

    def _finish(self, job: Job, callback: Callable[[Job, Any], Any] | None, value: Any) -> None:
        self.active.pop(job.id, None)
        if callback is not None:
            try:
                callback(job, value)
            except Exception as exc:
                logger.warning("Job callback for %s failed: %s", job.id, exc)
        if not self.active:
            self._idle.set()

    async def _work(self) -> None:
        while True:
            job = await self._ready.get()
            try:
                await self.execute(job)
            except Exception as exc:
                logger.debug("Attempt %s of job %s ended with %r", job.attempt, job.id, exc)
            finally:
                self._ready.task_done()
