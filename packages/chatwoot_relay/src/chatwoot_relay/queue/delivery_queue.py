"""
Delivery Queue

Redis-backed job queue with priorities, delays, retries and bounded
retention.

Layout (prefix ``relay:queue:<name>``):
- ``:jobs``              hash   job_id -> job JSON
- ``:waiting:<kind>``    zset   job_id -> priority/FIFO score (ZPOPMIN claims)
- ``:delayed:<kind>``    zset   job_id -> ready-at epoch ms
- ``:active``            hash   job_id -> claimed-at epoch ms
- ``:completed``         list   most recent completed job ids (trimmed)
- ``:failed``            list   most recent terminally failed job ids (trimmed)
- ``:paused``            string set while claiming is paused
- ``:seq``               counter ordering jobs of equal priority
"""

import logging
import time
from typing import Any, Callable

import redis.asyncio as aioredis

from chatwoot_relay.contracts.envelope import DeliveryJob, utcnow
from chatwoot_relay.contracts.job_types import JobKind, JobState

logger = logging.getLogger(__name__)

QUEUE_PREFIX = "relay:queue"

# Score = -priority * PRIORITY_WEIGHT + sequence: higher priority first, FIFO within a priority
PRIORITY_WEIGHT = 10**13


def now_ms() -> int:
    return int(time.time() * 1000)


class DeliveryQueue:
    """
    Named job queue.

    Jobs move queued -> active -> completed, or back to queued (delayed)
    for a retry, or to failed once attempts run out or the error is not
    retryable.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        name: str = "z-api-messages",
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        keep_completed: int = 20,
        keep_failed: int = 50,
        clock: Callable[[], int] = now_ms,
    ):
        self.redis = redis_client
        self.name = name
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.keep_completed = keep_completed
        self.keep_failed = keep_failed
        self._clock = clock
        self.prefix = f"{QUEUE_PREFIX}:{name}"

    # --- keys ---------------------------------------------------------------

    @property
    def jobs_key(self) -> str:
        return f"{self.prefix}:jobs"

    @property
    def active_key(self) -> str:
        return f"{self.prefix}:active"

    @property
    def completed_key(self) -> str:
        return f"{self.prefix}:completed"

    @property
    def failed_key(self) -> str:
        return f"{self.prefix}:failed"

    @property
    def paused_key(self) -> str:
        return f"{self.prefix}:paused"

    def waiting_key(self, kind: JobKind | str) -> str:
        return f"{self.prefix}:waiting:{kind}"

    def delayed_key(self, kind: JobKind | str) -> str:
        return f"{self.prefix}:delayed:{kind}"

    @property
    def sequence_key(self) -> str:
        return f"{self.prefix}:seq"

    async def _score(self, job: DeliveryJob) -> float:
        sequence = await self.redis.incr(self.sequence_key)
        return -job.priority * PRIORITY_WEIGHT + sequence

    def backoff_ms(self, attempts_made: int) -> int:
        """Exponential backoff before the next attempt."""
        return int(self.backoff_seconds * 1000 * (2 ** max(attempts_made - 1, 0)))

    # --- jobs ---------------------------------------------------------------

    async def _save(self, job: DeliveryJob) -> None:
        await self.redis.hset(self.jobs_key, job.job_id, job.to_json())

    async def get_job(self, job_id: str) -> DeliveryJob | None:
        raw = await self.redis.hget(self.jobs_key, job_id)
        return DeliveryJob.from_json(raw) if raw else None

    async def enqueue(
        self,
        kind: JobKind | str,
        payload: dict[str, Any],
        correlation_id: str,
        priority: int = 0,
        delay_ms: int = 0,
        max_attempts: int | None = None,
    ) -> DeliveryJob:
        """
        Add a job.

        Args:
            kind: Job kind (selects the worker pool)
            payload: Envelope snapshot
            correlation_id: Carried into the worker's logs
            priority: Larger is claimed first
            delay_ms: Keep the job delayed this long before it can be claimed
            max_attempts: Overrides the queue default
        """
        job = DeliveryJob.create(
            kind=kind,
            payload=payload,
            correlation_id=correlation_id,
            priority=priority,
            delay_ms=delay_ms,
            max_attempts=max_attempts or self.max_attempts,
        )
        await self._save(job)
        if delay_ms > 0:
            await self.redis.zadd(self.delayed_key(job.kind), {job.job_id: self._clock() + delay_ms})
        else:
            await self.redis.zadd(self.waiting_key(job.kind), {job.job_id: await self._score(job)})

        logger.debug(
            f"Enqueued {job.kind} job {job.job_id}",
            extra={"job_id": job.job_id, "priority": priority, "delay_ms": delay_ms},
        )
        return job

    async def promote_due(self, kind: JobKind | str) -> int:
        """Move delayed jobs whose time has come into the waiting set."""
        due = await self.redis.zrangebyscore(self.delayed_key(kind), "-inf", self._clock())
        promoted = 0
        for job_id in due:
            # zrem decides which caller owns the promotion
            if not await self.redis.zrem(self.delayed_key(kind), job_id):
                continue
            job = await self.get_job(job_id)
            if job is None:
                continue
            job.state = JobState.QUEUED.value
            await self._save(job)
            await self.redis.zadd(self.waiting_key(kind), {job_id: await self._score(job)})
            promoted += 1
        return promoted

    async def claim(self, kind: JobKind | str) -> DeliveryJob | None:
        """Take the highest-priority waiting job of a kind, or None."""
        if await self.is_paused():
            return None

        await self.promote_due(kind)
        while True:
            popped = await self.redis.zpopmin(self.waiting_key(kind), 1)
            if not popped:
                return None
            job_id = popped[0][0]
            job = await self.get_job(job_id)
            if job is None:
                logger.warning(f"Dropping waiting entry for missing job {job_id}")
                continue

            job.state = JobState.ACTIVE.value
            job.attempts_made += 1
            await self._save(job)
            await self.redis.hset(self.active_key, job_id, self._clock())
            return job

    async def complete(self, job: DeliveryJob, result: dict[str, Any] | None = None) -> None:
        """Mark an active job completed."""
        job.state = JobState.COMPLETED.value
        job.finished_at = utcnow()
        job.result = result
        await self._save(job)
        await self.redis.hdel(self.active_key, job.job_id)
        await self.redis.lpush(self.completed_key, job.job_id)
        await self._trim(self.completed_key, self.keep_completed)

    async def fail(self, job: DeliveryJob, error: Exception | str, retryable: bool = True) -> str:
        """
        Record a failed attempt.

        Returns:
            "retrying" if the job was scheduled again, "failed" if terminal
        """
        job.last_error = str(error)
        await self.redis.hdel(self.active_key, job.job_id)

        if retryable and job.attempts_made < job.max_attempts:
            delay = self.backoff_ms(job.attempts_made)
            job.state = JobState.DELAYED.value
            await self._save(job)
            await self.redis.zadd(self.delayed_key(job.kind), {job.job_id: self._clock() + delay})
            logger.info(
                f"Job {job.job_id} will retry in {delay}ms "
                f"(attempt {job.attempts_made}/{job.max_attempts})",
                extra={"job_id": job.job_id, "error": job.last_error},
            )
            return "retrying"

        job.state = JobState.FAILED.value
        job.failed_reason = job.last_error
        job.finished_at = utcnow()
        await self._save(job)
        await self.redis.lpush(self.failed_key, job.job_id)
        await self._trim(self.failed_key, self.keep_failed)
        logger.error(
            f"Job {job.job_id} failed after {job.attempts_made} attempt(s): {job.last_error}",
            extra={"job_id": job.job_id, "kind": job.kind, "retryable": retryable},
        )
        return "failed"

    async def _trim(self, list_key: str, keep: int) -> None:
        """Keep the newest ``keep`` ids of a list and drop the older job records."""
        dropped = await self.redis.lrange(list_key, keep, -1)
        if not dropped:
            return
        await self.redis.ltrim(list_key, 0, keep - 1)
        await self.redis.hdel(self.jobs_key, *dropped)

    # --- operations ---------------------------------------------------------

    async def failed_jobs(self, limit: int = 50) -> list[DeliveryJob]:
        """Most recent terminally failed jobs, newest first."""
        return await self._jobs_from_list(self.failed_key, limit)

    async def completed_jobs(self, limit: int = 20) -> list[DeliveryJob]:
        return await self._jobs_from_list(self.completed_key, limit)

    async def _jobs_from_list(self, list_key: str, limit: int) -> list[DeliveryJob]:
        jobs = []
        for job_id in await self.redis.lrange(list_key, 0, max(limit, 1) - 1):
            job = await self.get_job(job_id)
            if job is not None:
                jobs.append(job)
        return jobs

    async def retry_failed(self, job_id: str) -> DeliveryJob | None:
        """Put a terminally failed job back in the queue with fresh attempts."""
        job = await self.get_job(job_id)
        if job is None or job.state != JobState.FAILED.value:
            return None

        await self.redis.lrem(self.failed_key, 0, job_id)
        job.state = JobState.QUEUED.value
        job.attempts_made = 0
        job.failed_reason = None
        job.finished_at = None
        await self._save(job)
        await self.redis.zadd(self.waiting_key(job.kind), {job.job_id: await self._score(job)})
        logger.info(f"Failed job {job_id} re-queued", extra={"job_id": job_id})
        return job

    async def clean_completed(self) -> int:
        """Drop all retained completed jobs."""
        job_ids = await self.redis.lrange(self.completed_key, 0, -1)
        if job_ids:
            await self.redis.hdel(self.jobs_key, *job_ids)
        await self.redis.delete(self.completed_key)
        return len(job_ids)

    async def reclaim_stalled(self, min_idle_ms: int = 300000) -> list[str]:
        """
        Re-queue jobs left active by a worker that went away.

        A stalled attempt counts as used; a job with no attempts left is
        failed terminally instead.
        """
        now = self._clock()
        reclaimed = []
        for job_id, claimed_at in (await self.redis.hgetall(self.active_key)).items():
            if now - int(claimed_at) < min_idle_ms:
                continue
            if not await self.redis.hdel(self.active_key, job_id):
                continue
            job = await self.get_job(job_id)
            if job is None:
                continue

            if job.attempts_made >= job.max_attempts:
                await self.fail(job, "stalled: worker stopped before finishing", retryable=False)
                continue

            job.state = JobState.QUEUED.value
            job.last_error = "stalled"
            await self._save(job)
            await self.redis.zadd(self.waiting_key(job.kind), {job_id: await self._score(job)})
            reclaimed.append(job_id)

        if reclaimed:
            logger.info(f"Reclaimed {len(reclaimed)} stalled jobs")
        return reclaimed

    async def pause(self) -> None:
        await self.redis.set(self.paused_key, "1")

    async def resume(self) -> None:
        await self.redis.delete(self.paused_key)

    async def is_paused(self) -> bool:
        return bool(await self.redis.exists(self.paused_key))

    async def stats(self) -> dict[str, Any]:
        """Job counts per state."""
        waiting = 0
        delayed = 0
        by_kind: dict[str, dict[str, int]] = {}
        for kind in JobKind:
            kind_waiting = await self.redis.zcard(self.waiting_key(kind))
            kind_delayed = await self.redis.zcard(self.delayed_key(kind))
            by_kind[kind.value] = {"waiting": kind_waiting, "delayed": kind_delayed}
            waiting += kind_waiting
            delayed += kind_delayed

        return {
            "queue": self.name,
            "waiting": waiting,
            "delayed": delayed,
            "active": await self.redis.hlen(self.active_key),
            "completed": await self.redis.llen(self.completed_key),
            "failed": await self.redis.llen(self.failed_key),
            "paused": await self.is_paused(),
            "by_kind": by_kind,
        }
