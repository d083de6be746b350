"""
Relay runtime wiring.

Builds the relay components from settings and a Redis client. The
webhook app, the worker and the CLI all construct their collaborators
here so each process has one Chatwoot client and one Redis pool.
"""

from dataclasses import dataclass

import redis.asyncio as aioredis

from basecore.settings import Settings

from chatwoot_relay.platform.chatwoot.client import ChatwootClient
from chatwoot_relay.queue.delivery_queue import DeliveryQueue
from chatwoot_relay.routing.identity_cache import IdentityCache
from chatwoot_relay.routing.identity_resolver import IdentityResolver
from chatwoot_relay.routing.locks import ParticipantLock
from chatwoot_relay.service.inbound_handler import InboundHandler
from chatwoot_relay.service.status_handler import StatusHandler


def build_queue(settings: Settings, redis_client: aioredis.Redis) -> DeliveryQueue:
    return DeliveryQueue(
        redis_client,
        name=settings.queue_name,
        max_attempts=settings.queue_max_attempts,
        backoff_seconds=settings.queue_backoff_seconds,
        keep_completed=settings.queue_keep_completed,
        keep_failed=settings.queue_keep_failed,
    )


def build_cache(settings: Settings, redis_client: aioredis.Redis) -> IdentityCache:
    return IdentityCache(
        redis_client,
        namespace=settings.cache_namespace,
        ttl_seconds=settings.cache_ttl_seconds,
    )


@dataclass
class RelayRuntime:
    """Everything a worker needs to process jobs."""

    redis: aioredis.Redis
    queue: DeliveryQueue
    cache: IdentityCache
    lock: ParticipantLock
    platform: ChatwootClient
    resolver: IdentityResolver
    inbound: InboundHandler
    status: StatusHandler

    @classmethod
    def from_settings(cls, settings: Settings, redis_client: aioredis.Redis) -> "RelayRuntime":
        cache = build_cache(settings, redis_client)
        lock = ParticipantLock(
            redis_client,
            lease_ms=settings.lock_lease_ms,
            wait_seconds=settings.lock_wait_seconds,
        )
        platform = ChatwootClient.from_settings(settings)
        resolver = IdentityResolver(platform, cache, lock)
        return cls(
            redis=redis_client,
            queue=build_queue(settings, redis_client),
            cache=cache,
            lock=lock,
            platform=platform,
            resolver=resolver,
            inbound=InboundHandler(
                redis_client,
                platform,
                resolver,
                lock,
                dedupe_ttl_seconds=settings.dedupe_ttl_seconds,
            ),
            status=StatusHandler(redis_client, ttl_seconds=settings.dedupe_ttl_seconds),
        )

    async def close(self) -> None:
        await self.platform.close()
