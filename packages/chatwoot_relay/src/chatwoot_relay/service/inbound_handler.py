"""
Inbound Message Handler

Processes one queued Z-API message:
1. Rebuilds the envelope from the job payload
2. Skips messages already delivered (provider message id)
3. Resolves the participant's contact and conversation
4. Translates and sends the message to Chatwoot
5. Marks the message delivered and records activity

Steps 2-5 run inside the participant lock.
"""

import logging
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from basecore.redaction import mask_phone

from chatwoot_relay.contracts.envelope import DeliveryJob, InboundEnvelope
from chatwoot_relay.errors import ValidationError
from chatwoot_relay.platform.chatwoot.client import ChatwootClient
from chatwoot_relay.routing.identity_resolver import IdentityResolver
from chatwoot_relay.routing.locks import ParticipantLock
from chatwoot_relay.translation.content import extract_sender_name, generate_message_preview
from chatwoot_relay.translation.translator import MessageTranslator, TranslationContext

logger = logging.getLogger(__name__)

DELIVERED_PREFIX = "relay:delivered"
DEFAULT_DEDUPE_TTL_SECONDS = 7 * 24 * 3600


class InboundHandler:
    """
    Relays inbound Z-API messages into Chatwoot.

    Responsibilities:
    - Idempotency per provider message id
    - Identity resolution
    - Translation and delivery
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        platform: ChatwootClient,
        resolver: IdentityResolver,
        lock: ParticipantLock,
        translator: MessageTranslator | None = None,
        dedupe_ttl_seconds: int = DEFAULT_DEDUPE_TTL_SECONDS,
    ):
        self.redis = redis_client
        self.platform = platform
        self.resolver = resolver
        self.lock = lock
        self.translator = translator or MessageTranslator()
        self.dedupe_ttl_seconds = dedupe_ttl_seconds

    def delivered_key(self, message_id: str) -> str:
        return f"{DELIVERED_PREFIX}:{message_id}"

    async def _already_delivered(self, message_id: str) -> bool:
        try:
            return bool(await self.redis.exists(self.delivered_key(message_id)))
        except RedisError as e:
            logger.warning(f"Could not check delivery marker for {message_id}: {e}")
            return False

    async def _mark_delivered(self, message_id: str, platform_message_id: Any) -> None:
        try:
            await self.redis.set(
                self.delivered_key(message_id),
                str(platform_message_id or ""),
                ex=self.dedupe_ttl_seconds,
            )
        except RedisError as e:
            logger.warning(f"Could not store delivery marker for {message_id}: {e}")

    async def handle_job(self, job: DeliveryJob) -> dict[str, Any]:
        """Worker entry point for process-message jobs."""
        envelope = InboundEnvelope.from_payload(job.payload)
        return await self.handle_envelope(envelope, job.correlation_id)

    async def handle_envelope(
        self,
        envelope: InboundEnvelope,
        correlation_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Deliver one inbound message.

        Args:
            envelope: Parsed Z-API event
            correlation_id: Correlation id of the originating webhook

        Returns:
            Processing result dict

        Raises:
            ValidationError: the envelope has no message id or participant
            TranslationError: content could not be translated
            PlatformUnavailable / PlatformRequestError: Chatwoot failed
        """
        if envelope.from_me:
            return {"status": "skipped", "reason": "from_me", "message_id": envelope.message_id}

        if not envelope.message_id or not envelope.participant_id:
            raise ValidationError(
                "Message has no message id or phone",
                errors=[{"field": "messageId/phone", "message": "required", "type": "missing"}],
            )

        phone = mask_phone(envelope.participant_id)
        async with self.lock.hold(envelope.participant_id):
            if await self._already_delivered(envelope.message_id):
                logger.debug(f"Message {envelope.message_id} already delivered, skipping")
                return {
                    "status": "skipped",
                    "reason": "already_delivered",
                    "message_id": envelope.message_id,
                }

            mapping = await self.resolver.resolve(
                envelope.participant_id,
                extract_sender_name(envelope),
            )

            outbound = self.translator.to_platform(
                envelope,
                TranslationContext(
                    correlation_id=correlation_id,
                    phone=envelope.phone,
                    instance_id=envelope.instance_id,
                    conversation_id=mapping.platform_conversation_id,
                ),
            )
            sent = await self.platform.send_message(mapping.platform_conversation_id, outbound)

            await self._mark_delivered(envelope.message_id, sent.get("id"))
            await self.resolver.record_activity(envelope.participant_id, envelope.timestamp)

        logger.info(
            f"Delivered message to conversation {mapping.platform_conversation_id}: "
            f"{generate_message_preview(envelope, max_length=50)}",
            extra={
                "message_id": envelope.message_id,
                "phone": phone,
                "is_group": envelope.is_group,
            },
        )
        return {
            "status": "sent",
            "message_id": envelope.message_id,
            "conversation_id": mapping.platform_conversation_id,
            "platform_message_id": sent.get("id"),
        }
