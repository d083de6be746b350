"""
Queue Workers

Bounded pools of asyncio tasks pulling jobs of one kind from the delivery
queue. A handler's outcome becomes a queue transition:

- returns            -> completed
- retryable error    -> delayed retry (until attempts run out)
- other errors       -> failed terminally
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from redis.exceptions import RedisError

from basecore.correlation import reset_correlation_id, set_correlation_id

from chatwoot_relay.contracts.envelope import DeliveryJob
from chatwoot_relay.contracts.job_types import JobKind
from chatwoot_relay.errors import RelayError
from chatwoot_relay.queue.delivery_queue import DeliveryQueue

logger = logging.getLogger(__name__)

JobHandler = Callable[[DeliveryJob], Awaitable[dict[str, Any] | None]]


def is_retryable(error: BaseException) -> bool:
    """Relay errors declare it; anything else is assumed transient."""
    if isinstance(error, RelayError):
        return error.retryable
    return True


class WorkerPool:
    """
    Fixed-size pool of workers for one job kind.

    Stopping lets in-flight jobs finish within a grace period; workers
    still busy after it are cancelled and their jobs are picked up later
    by the stalled-job reclaim.
    """

    def __init__(
        self,
        queue: DeliveryQueue,
        kind: JobKind,
        handler: JobHandler,
        concurrency: int,
        poll_interval: float = 0.5,
    ):
        self.queue = queue
        self.kind = kind
        self.handler = handler
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self._stopping = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self.processed = 0

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def start(self) -> None:
        """Spawn the worker tasks."""
        self._stopping.clear()
        self._tasks = [
            asyncio.create_task(self._run(slot), name=f"{self.kind}-worker-{slot}")
            for slot in range(self.concurrency)
        ]
        logger.info(f"Started {self.concurrency} {self.kind} workers")

    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            return

    async def _run(self, slot: int) -> None:
        while not self._stopping.is_set():
            try:
                job = await self.queue.claim(self.kind)
            except RedisError as e:
                logger.error(f"{self.kind} worker {slot} could not claim a job: {e}")
                await self._idle()
                continue

            if job is None:
                await self._idle()
                continue

            try:
                await self.process(job)
            except Exception as e:
                # the job stays active until the stalled-job reclaim picks it up
                logger.error(
                    f"{self.kind} worker {slot} could not record job {job.job_id}: {e}",
                    extra={"job_id": job.job_id},
                    exc_info=True,
                )
                await self._idle()

    async def process(self, job: DeliveryJob) -> str:
        """
        Run the handler for one claimed job and record the outcome.

        Returns:
            "completed", "retrying" or "failed"
        """
        token = set_correlation_id(job.correlation_id)
        try:
            try:
                result = await self.handler(job)
            except Exception as e:
                retryable = is_retryable(e)
                logger.error(
                    f"Job {job.job_id} ({job.kind}) attempt {job.attempts_made} failed: {e}",
                    extra={"job_id": job.job_id, "retryable": retryable},
                    exc_info=not retryable,
                )
                return await self.queue.fail(job, e, retryable=retryable)

            await self.queue.complete(job, result)
            self.processed += 1
            logger.debug(f"Job {job.job_id} completed", extra={"job_id": job.job_id, "result": result})
            return "completed"
        finally:
            reset_correlation_id(token)

    async def stop(self, grace_seconds: float = 30.0) -> None:
        """Stop claiming, wait for in-flight jobs, cancel what is left."""
        self._stopping.set()
        if not self._tasks:
            return

        done, pending = await asyncio.wait(self._tasks, timeout=grace_seconds)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Cancelled {len(pending)} {self.kind} workers still busy after {grace_seconds}s")
            await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.error(f"{self.kind} worker exited with error: {task.exception()}")
        self._tasks = []
        logger.info(f"Stopped {self.kind} workers")
