import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Set

from .utils.nanoid import nanoid

logger = logging.getLogger(__name__)

OutboxJobKind = Literal["memory.embed", "aggregate.daily"]
JobHandler = Callable[[Dict[str, Any]], Awaitable[Any]]

DEFAULT_POLL_SECONDS = 1.0


@dataclass
class OutboxJob:
    id: str
    kind: OutboxJobKind
    payload: Dict[str, Any]
    createdAt: int
    attempts: int = 0
    lastError: Optional[str] = None


@dataclass
class Outbox:
    """At-least-once background job queue.

    A job leaves the queue only once its handler returns; failures are retried
    on later drains until ``max_attempts`` and then parked in ``dead_letters``.
    """

    max_attempts: int = 3
    _jobs: List[OutboxJob] = field(default_factory=list)
    dead_letters: List[OutboxJob] = field(default_factory=list)
    _handlers: Dict[str, JobHandler] = field(default_factory=dict)
    _in_flight: Set[str] = field(default_factory=set)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    _wakeup: asyncio.Event = field(default_factory=asyncio.Event)
    _worker: Optional["asyncio.Task[None]"] = None

    def register(self, kind: OutboxJobKind, handler: JobHandler) -> None:
        self._handlers[kind] = handler

    async def queue(self, kind: OutboxJobKind, payload: Dict[str, Any], job_id: Optional[str] = None) -> OutboxJob:
        async with self._lock:
            job = OutboxJob(
                id=job_id or nanoid("job"),
                kind=kind,
                payload=dict(payload),
                createdAt=int(time.time() * 1000),
            )
            self._jobs.append(job)
        self._wakeup.set()
        return job

    async def list(self) -> List[OutboxJob]:
        async with self._lock:
            return list(self._jobs)

    async def _claim(self) -> List[OutboxJob]:
        async with self._lock:
            claimed = [job for job in self._jobs if job.id not in self._in_flight]
            self._in_flight.update(job.id for job in claimed)
            return claimed

    async def _settle(self, job: OutboxJob, keep: bool) -> None:
        async with self._lock:
            self._jobs = [pending for pending in self._jobs if pending.id != job.id]
            if keep:
                self._jobs.append(job)

    async def _run_job(self, job: OutboxJob) -> bool:
        handler = self._handlers.get(job.kind)
        try:
            if handler is None:
                raise LookupError(f"No handler registered for {job.kind}")
            await handler(job.payload)
        except Exception as error:  # pylint: disable=broad-except
            job.attempts += 1
            job.lastError = str(error)
            if job.attempts >= self.max_attempts:
                logger.error("Outbox job %s (%s) dead-lettered after %d attempts: %s", job.id, job.kind, job.attempts, error)
                self.dead_letters.append(job)
                await self._settle(job, keep=False)
            else:
                logger.warning("Outbox job %s (%s) failed on attempt %d: %s", job.id, job.kind, job.attempts, error)
                await self._settle(job, keep=True)
            return False
        job.attempts += 1
        await self._settle(job, keep=False)
        return True

    async def drain(self) -> int:
        """Run every job pending at call time once. Returns how many succeeded.

        Jobs stay queued while their handler runs, so a cancelled drain leaves
        the in-flight job and everything after it for the next one.
        """
        claimed = await self._claim()
        succeeded = 0
        try:
            for job in claimed:
                if await self._run_job(job):
                    succeeded += 1
        finally:
            self._in_flight.difference_update(job.id for job in claimed)
        return succeeded

    async def _run(self, poll_seconds: float) -> None:
        while True:
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=poll_seconds)
            except asyncio.TimeoutError:
                pass
            self._wakeup.clear()
            await self.drain()

    def start(self, poll_seconds: float = DEFAULT_POLL_SECONDS) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(poll_seconds))

    async def stop(self) -> None:
        worker, self._worker = self._worker, None
        if worker is None:
            return
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass
        await self.drain()
