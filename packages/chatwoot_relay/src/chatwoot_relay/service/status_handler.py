"""
Status Handler

Records the last delivery status Z-API reported for each message
(SENT, RECEIVED, READ, PLAYED, ...). Status events arrive after the
message they describe, so the webhook queues them with a short delay.
"""

import json
import logging
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from basecore.redaction import mask_phone

from chatwoot_relay.contracts.envelope import DeliveryJob, InboundEnvelope, utcnow
from chatwoot_relay.errors import CacheUnavailable, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "relay"
DEFAULT_TTL_SECONDS = 7 * 24 * 3600


class StatusHandler:
    """Stores and reads per-message delivery status."""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        namespace: str = DEFAULT_NAMESPACE,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ):
        self.redis = redis_client
        self.namespace = namespace
        self.ttl_seconds = ttl_seconds

    def status_key(self, message_id: str) -> str:
        return f"{self.namespace}:status:{message_id}"

    async def handle_job(self, job: DeliveryJob) -> dict[str, Any]:
        """Worker entry point for process-status jobs."""
        return await self.handle_envelope(InboundEnvelope.from_payload(job.payload))

    async def handle_envelope(self, envelope: InboundEnvelope) -> dict[str, Any]:
        """
        Store the status carried by a status event.

        Raises:
            ValidationError: the event has no message id or status
            CacheUnavailable: Redis could not be reached (the job is retried)
        """
        if not envelope.message_id or not envelope.status:
            raise ValidationError(
                "Status event has no message id or status",
                errors=[{"field": "messageId/status", "message": "required", "type": "missing"}],
            )

        record = {
            "message_id": envelope.message_id,
            "status": str(envelope.status).upper(),
            "phone": envelope.participant_id,
            "instance_id": envelope.instance_id,
            "moment": envelope.moment,
            "is_group": envelope.is_group,
            "updated_at": utcnow().isoformat(),
        }
        key = self.status_key(envelope.message_id)
        try:
            await self.redis.set(key, json.dumps(record), ex=self.ttl_seconds)
        except RedisError as e:
            raise CacheUnavailable(f"Status write failed for {key}: {e}") from e

        logger.info(
            f"Message {envelope.message_id} status {record['status']}",
            extra={"message_id": envelope.message_id, "phone": mask_phone(envelope.participant_id)},
        )
        return {"status": "recorded", "message_id": envelope.message_id, "delivery_status": record["status"]}

    async def get_status(self, message_id: str) -> dict[str, Any] | None:
        """Last stored status record for a message, or None."""
        key = self.status_key(message_id)
        try:
            raw = await self.redis.get(key)
        except RedisError as e:
            raise CacheUnavailable(f"Status read failed for {key}: {e}") from e
        return json.loads(raw) if raw else None
