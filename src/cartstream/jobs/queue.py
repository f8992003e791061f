"""In-process job queue with per-partition FIFO ordering.

Each partition key (a user id for cart mutations) gets at most one worker
task. A worker drains its partition strictly in submission order and exits
once the partition is empty; the next ``enqueue`` for that key starts a fresh
worker. Partitions never wait on each other.

Nothing is persisted: jobs still queued when the process stops are lost.
"""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import structlog

logger = structlog.get_logger(__name__)

JobHandler = Callable[..., Awaitable[Any]]
SuccessCallback = Callable[["Job", Any], Awaitable[None]]
FailureCallback = Callable[["Job", Exception], Awaitable[None]]


@dataclass
class Job:
    operation: str
    payload: dict
    partition_key: str
    mutation_id: str = field(default_factory=lambda: uuid4().hex)
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class _Partition:
    jobs: deque = field(default_factory=deque)
    worker: asyncio.Task | None = None


class JobQueue:
    def __init__(
        self,
        on_success: SuccessCallback | None = None,
        on_failure: FailureCallback | None = None,
    ):
        self._handlers: dict[str, JobHandler] = {}
        self._partitions: dict[str, _Partition] = {}
        self.on_success = on_success
        self.on_failure = on_failure
        self._closed = False

    def register(self, operation: str, handler: JobHandler) -> None:
        self._handlers[operation] = handler

    def enqueue(self, operation: str, payload: dict, partition_key: str, mutation_id: str | None = None) -> Job:
        """Schedule ``operation`` for ``partition_key``; returns without waiting."""
        if self._closed:
            raise RuntimeError("Job queue is closed")
        if operation not in self._handlers:
            raise ValueError(f"No handler registered for operation {operation!r}")

        job = Job(operation=operation, payload=dict(payload), partition_key=str(partition_key))
        if mutation_id:
            job.mutation_id = mutation_id

        partition = self._partitions.get(job.partition_key)
        if partition is None:
            partition = _Partition()
            self._partitions[job.partition_key] = partition
        partition.jobs.append(job)
        if partition.worker is None:
            partition.worker = asyncio.get_running_loop().create_task(
                self._drain(job.partition_key, partition), name=f"cart-jobs:{job.partition_key}"
            )

        logger.debug(
            "Job enqueued",
            operation=operation,
            partition_key=job.partition_key,
            mutation_id=job.mutation_id,
            depth=len(partition.jobs),
        )
        return job

    def pending(self, partition_key: str | None = None) -> int:
        """Number of jobs not yet started (for one partition, or overall)."""
        if partition_key is not None:
            partition = self._partitions.get(str(partition_key))
            return len(partition.jobs) if partition else 0
        return sum(len(p.jobs) for p in self._partitions.values())

    async def join(self) -> None:
        """Wait until every partition has drained, including work enqueued meanwhile."""
        while True:
            workers = [p.worker for p in self._partitions.values() if p.worker is not None]
            if not workers:
                return
            await asyncio.gather(*workers, return_exceptions=True)

    async def close(self) -> None:
        """Stop accepting work and cancel the workers; queued jobs are dropped."""
        self._closed = True
        workers = [p.worker for p in self._partitions.values() if p.worker is not None]
        dropped = self.pending()
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        self._partitions.clear()
        if dropped:
            logger.warning("Job queue closed with pending jobs", dropped=dropped)

    async def _drain(self, partition_key: str, partition: _Partition) -> None:
        try:
            while partition.jobs:
                job = partition.jobs.popleft()
                await self._run(job)
        finally:
            partition.worker = None
            if not partition.jobs and self._partitions.get(partition_key) is partition:
                del self._partitions[partition_key]

    async def _run(self, job: Job) -> None:
        handler = self._handlers[job.operation]
        try:
            result = await handler(**job.payload)
        except Exception as exc:
            logger.warning(
                "Job failed, dropping",
                operation=job.operation,
                partition_key=job.partition_key,
                mutation_id=job.mutation_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            await self._notify(self.on_failure, job, exc)
            return

        logger.debug("Job applied", operation=job.operation, partition_key=job.partition_key, mutation_id=job.mutation_id)
        await self._notify(self.on_success, job, result)

    async def _notify(self, callback, job: Job, value) -> None:
        if callback is None:
            return
        try:
            await callback(job, value)
        except Exception:
            logger.exception("Job callback failed", operation=job.operation, mutation_id=job.mutation_id)
