"""
Identity Resolver

Maps a Z-API participant (phone number) to a Chatwoot contact and an open
conversation, going to Chatwoot only on a cache miss.

Resolution for one participant is serialized by the participant lock so
concurrent first messages cannot create duplicate contacts or
conversations.
"""

import logging
from datetime import datetime
from typing import Callable

from basecore.redaction import mask_phone

from chatwoot_relay.contracts.envelope import normalize_participant_id, utcnow
from chatwoot_relay.contracts.payloads import IdentityMapping
from chatwoot_relay.errors import CacheUnavailable, ValidationError
from chatwoot_relay.platform.chatwoot.client import ChatwootClient
from chatwoot_relay.routing.identity_cache import IdentityCache
from chatwoot_relay.routing.locks import ParticipantLock

logger = logging.getLogger(__name__)


class IdentityResolver:
    """
    Resolves participants to Chatwoot identities.

    Provides methods to:
    - Resolve (cache hit, or find/create contact and open conversation)
    - Record inbound activity on the cached mapping
    - Forget a mapping (conversation closed)
    """

    def __init__(
        self,
        platform: ChatwootClient,
        cache: IdentityCache,
        lock: ParticipantLock,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.platform = platform
        self.cache = cache
        self.lock = lock
        self._clock = clock

    async def _cached(self, participant_id: str) -> IdentityMapping | None:
        try:
            return await self.cache.get(participant_id)
        except CacheUnavailable as e:
            logger.warning(f"Identity cache unavailable, resolving against Chatwoot: {e}")
            return None

    async def _store(self, mapping: IdentityMapping) -> IdentityMapping:
        try:
            return await self.cache.set(mapping)
        except CacheUnavailable as e:
            logger.warning(f"Identity cache unavailable, mapping not cached: {e}")
            return mapping

    async def resolve(self, participant_id: str, display_name_hint: str | None = None) -> IdentityMapping:
        """
        Resolve a participant to its contact and open conversation.

        Args:
            participant_id: Phone number in any format
            display_name_hint: Name to use if the contact has to be created

        Returns:
            The identity mapping (from cache or freshly resolved)

        Raises:
            ValidationError: participant_id has no digits
            PlatformUnavailable / PlatformRequestError: Chatwoot failed; nothing is cached
        """
        participant_id = normalize_participant_id(participant_id)
        if not participant_id:
            raise ValidationError("Participant id must contain digits")

        async with self.lock.hold(participant_id):
            cached = await self._cached(participant_id)
            if cached is not None:
                logger.debug(
                    "Identity cache hit",
                    extra={"phone": mask_phone(participant_id), "conversation_id": cached.platform_conversation_id},
                )
                return cached

            contact, contact_created = await self.platform.find_or_create_contact(participant_id, display_name_hint)
            conversation, conversation_created = await self.platform.find_or_create_conversation(contact)

            now = self._clock()
            mapping = IdentityMapping(
                participant_id=participant_id,
                platform_contact_id=int(contact["id"]),
                platform_conversation_id=int(conversation["id"]),
                display_name=display_name_hint or contact.get("name"),
                last_message_at=now,
                created_at=now,
                updated_at=now,
            )
            mapping = await self._store(mapping)

            logger.info(
                "Resolved participant identity",
                extra={
                    "phone": mask_phone(participant_id),
                    "contact_id": mapping.platform_contact_id,
                    "conversation_id": mapping.platform_conversation_id,
                    "contact_created": contact_created,
                    "conversation_created": conversation_created,
                },
            )
            return mapping

    async def record_activity(self, participant_id: str, at: datetime | None = None) -> IdentityMapping | None:
        """Advance last_message_at for a participant's cached mapping."""
        participant_id = normalize_participant_id(participant_id)
        async with self.lock.hold(participant_id):
            try:
                return await self.cache.touch(participant_id, at)
            except CacheUnavailable as e:
                logger.warning(f"Identity cache unavailable, activity not recorded: {e}")
                return None

    async def forget(self, participant_id: str) -> bool:
        """Drop a participant's mapping so the next message re-resolves."""
        participant_id = normalize_participant_id(participant_id)
        async with self.lock.hold(participant_id):
            try:
                return await self.cache.delete(participant_id)
            except CacheUnavailable as e:
                logger.warning(f"Identity cache unavailable, mapping not removed: {e}")
                return False
