"""
Identity Cache

Redis-backed store of IdentityMapping records, one per participant,
shared by every webhook and worker process.

Keys are ``<namespace>:<digits-only phone>``; values are JSON. Each write
sets a Redis TTL and records ``expires_at`` so a mapping is served for
exactly the configured window after its last write.

Redis errors surface as CacheUnavailable; callers treat that as a miss.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable

import redis.asyncio as aioredis
from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from basecore.redaction import mask_phone

from chatwoot_relay.contracts.envelope import normalize_participant_id, utcnow
from chatwoot_relay.contracts.payloads import IdentityMapping
from chatwoot_relay.errors import CacheUnavailable

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "wauac:mapping"
DEFAULT_TTL_SECONDS = 7 * 24 * 3600


class IdentityCache:
    """
    Shared identity mapping cache.

    Writes are last-writer-wins per key; callers serialize the
    read-modify-write sequences with the participant lock.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        namespace: str = DEFAULT_NAMESPACE,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.redis = redis_client
        self.namespace = namespace
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def key(self, participant_id: str) -> str:
        return f"{self.namespace}:{normalize_participant_id(participant_id)}"

    async def get(self, participant_id: str) -> IdentityMapping | None:
        """
        Get the mapping for a participant.

        Returns None on a miss, on an expired record and on an unreadable one.

        Raises:
            CacheUnavailable: Redis could not be reached
        """
        key = self.key(participant_id)
        try:
            raw = await self.redis.get(key)
        except RedisError as e:
            raise CacheUnavailable(f"Cache read failed for {key}: {e}") from e

        if raw is None:
            return None

        try:
            mapping = IdentityMapping.model_validate_json(raw)
        except PydanticValidationError as e:
            logger.warning(
                f"Discarding unreadable identity mapping: {e.error_count()} errors",
                extra={"phone": mask_phone(participant_id)},
            )
            return None

        if mapping.expires_at is not None and self._clock() >= mapping.expires_at:
            return None
        return mapping

    async def set(self, mapping: IdentityMapping) -> IdentityMapping:
        """
        Write a mapping and restart its TTL.

        Raises:
            CacheUnavailable: Redis could not be reached
        """
        now = self._clock()
        stored = mapping.model_copy(
            update={
                "updated_at": now,
                "expires_at": now + timedelta(seconds=self.ttl_seconds),
            }
        )
        key = self.key(stored.participant_id)
        try:
            await self.redis.set(key, stored.model_dump_json(), ex=self.ttl_seconds)
        except RedisError as e:
            raise CacheUnavailable(f"Cache write failed for {key}: {e}") from e

        logger.debug(
            "Identity mapping cached",
            extra={
                "phone": mask_phone(stored.participant_id),
                "contact_id": stored.platform_contact_id,
                "conversation_id": stored.platform_conversation_id,
            },
        )
        return stored

    async def touch(self, participant_id: str, at: datetime | None = None) -> IdentityMapping | None:
        """
        Advance last_message_at and restart the TTL.

        ``created_at`` is preserved. Returns None if there is no mapping.
        """
        mapping = await self.get(participant_id)
        if mapping is None:
            return None

        at = at or self._clock()
        if at > mapping.last_message_at:
            mapping = mapping.model_copy(update={"last_message_at": at})
        return await self.set(mapping)

    async def delete(self, participant_id: str) -> bool:
        """Remove a mapping. Returns True if one existed."""
        key = self.key(participant_id)
        try:
            return bool(await self.redis.delete(key))
        except RedisError as e:
            raise CacheUnavailable(f"Cache delete failed for {key}: {e}") from e

    async def list_mappings(self, limit: int = 100) -> list[IdentityMapping]:
        """List stored mappings (SCAN, unordered)."""
        mappings: list[IdentityMapping] = []
        try:
            async for key in self.redis.scan_iter(match=f"{self.namespace}:*", count=100):
                raw = await self.redis.get(key)
                if raw is None:
                    continue
                try:
                    mappings.append(IdentityMapping.model_validate_json(raw))
                except PydanticValidationError:
                    logger.warning(f"Skipping unreadable identity mapping at {key}")
                    continue
                if len(mappings) >= limit:
                    break
        except RedisError as e:
            raise CacheUnavailable(f"Cache scan failed: {e}") from e
        return mappings

    async def stats(self) -> dict[str, Any]:
        """Number of stored mappings and cache configuration."""
        count = 0
        try:
            async for _key in self.redis.scan_iter(match=f"{self.namespace}:*", count=500):
                count += 1
        except RedisError as e:
            raise CacheUnavailable(f"Cache scan failed: {e}") from e
        return {
            "namespace": self.namespace,
            "ttl_seconds": self.ttl_seconds,
            "mappings": count,
        }
