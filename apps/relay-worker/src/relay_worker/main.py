"""
Relay Worker Service

Consumes delivery jobs from the Redis queue and relays them to Chatwoot.

Features:
- Separate worker pools for messages and delivery statuses
- Stalled-job reclaim loop
- Graceful shutdown (in-flight jobs finish within the grace period)
"""

import asyncio
import logging
import signal

from redis.exceptions import RedisError

from basecore.logging import setup_logging
from basecore.redaction import redact_secret
from basecore.redis import close_redis_client, get_redis_client
from basecore.settings import Settings, get_settings

from chatwoot_relay.contracts.job_types import JobKind
from chatwoot_relay.queue.delivery_queue import DeliveryQueue
from chatwoot_relay.queue.worker import WorkerPool
from chatwoot_relay.runtime import RelayRuntime

setup_logging()
logger = logging.getLogger(__name__)


async def run_reclaim_loop(
    queue: DeliveryQueue,
    stop: asyncio.Event,
    interval: float,
    min_idle_ms: int,
) -> None:
    """Background task re-queueing jobs left active by a dead worker."""
    logger.info(f"Starting stalled-job reclaim loop (interval={interval}s, idle_threshold={min_idle_ms}ms)")

    while not stop.is_set():
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
            return
        except asyncio.TimeoutError:
            pass

        try:
            await queue.reclaim_stalled(min_idle_ms=min_idle_ms)
        except RedisError as e:
            logger.error(f"Error in reclaim loop: {e}", exc_info=True)


def build_pools(runtime: RelayRuntime, settings: Settings) -> list[WorkerPool]:
    return [
        WorkerPool(
            runtime.queue,
            JobKind.PROCESS_MESSAGE,
            runtime.inbound.handle_job,
            concurrency=settings.message_concurrency,
            poll_interval=settings.worker_poll_interval,
        ),
        WorkerPool(
            runtime.queue,
            JobKind.PROCESS_STATUS,
            runtime.status.handle_job,
            concurrency=settings.status_concurrency,
            poll_interval=settings.worker_poll_interval,
        ),
    ]


async def main_loop() -> None:
    """Run the worker pools until SIGTERM/SIGINT."""
    settings = get_settings()
    runtime = RelayRuntime.from_settings(settings, get_redis_client())

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signum, stop.set)

    pools = build_pools(runtime, settings)
    logger.info(
        f"Starting relay worker (queue={settings.queue_name}, "
        f"messages={settings.message_concurrency}, statuses={settings.status_concurrency})",
        extra={
            "chatwoot_url": settings.chatwoot_url,
            "chatwoot_account_id": settings.chatwoot_account_id,
            "chatwoot_api_key": redact_secret(settings.chatwoot_api_key),
        },
    )
    for pool in pools:
        pool.start()

    reclaim_task = asyncio.create_task(
        run_reclaim_loop(runtime.queue, stop, settings.worker_reclaim_interval, settings.worker_reclaim_idle_ms)
    )

    await stop.wait()
    logger.info("Shutdown requested, draining in-flight jobs...")

    await asyncio.gather(*(pool.stop(settings.worker_shutdown_grace_seconds) for pool in pools))
    await reclaim_task
    await runtime.close()
    await close_redis_client()

    logger.info("Relay worker shut down gracefully")


def main():
    """Entry point."""
    logger.info("Relay worker starting...")
    asyncio.run(main_loop())


if __name__ == "__main__":
    main()
