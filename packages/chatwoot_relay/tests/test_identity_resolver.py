"""
Tests for participant -> Chatwoot identity resolution.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from chatwoot_relay.errors import PlatformUnavailable, ValidationError
from chatwoot_relay.routing.identity_cache import IdentityCache
from chatwoot_relay.routing.identity_resolver import IdentityResolver
from chatwoot_relay.routing.locks import ParticipantLock

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def cache(redis_client):
    return IdentityCache(redis_client, clock=lambda: T0)


@pytest.fixture
def resolver(chatwoot, cache, redis_client):
    return IdentityResolver(chatwoot.client(), cache, ParticipantLock(redis_client), clock=lambda: T0)


class TestResolve:
    """Tests for resolve()."""

    @pytest.mark.asyncio
    async def test_new_participant(self, resolver, chatwoot, cache):
        """A new participant gets one contact and one conversation, then is cached."""
        mapping = await resolver.resolve("5511999999999", "Maria")

        assert len(chatwoot.contact_creates) == 1
        assert len(chatwoot.conversation_creates) == 1
        assert mapping.platform_contact_id == chatwoot.contacts[0]["id"]
        assert mapping.platform_conversation_id == chatwoot.conversations[0]["id"]
        assert mapping.display_name == "Maria"

        cached = await cache.get("5511999999999")
        assert cached.platform_conversation_id == mapping.platform_conversation_id

    @pytest.mark.asyncio
    async def test_cache_hit_makes_no_platform_calls(self, resolver, chatwoot):
        """The second resolve is served from cache."""
        first = await resolver.resolve("5511999999999", "Maria")
        chatwoot.requests.clear()

        second = await resolver.resolve("5511999999999", "Maria")

        assert chatwoot.requests == []
        assert second.platform_conversation_id == first.platform_conversation_id

    @pytest.mark.asyncio
    async def test_existing_contact_and_conversation_reused(self, resolver, chatwoot):
        """Cold cache with known contact reuses Chatwoot records."""
        contact = chatwoot.add_contact("5511999999999")
        conversation = chatwoot.add_conversation(contact["id"])

        mapping = await resolver.resolve("5511999999999")

        assert mapping.platform_contact_id == contact["id"]
        assert mapping.platform_conversation_id == conversation["id"]
        assert chatwoot.contact_creates == []
        assert chatwoot.conversation_creates == []

    @pytest.mark.asyncio
    async def test_concurrent_first_messages_create_once(self, resolver, chatwoot):
        """Concurrent resolves of one participant create one contact."""
        mappings = await asyncio.gather(*(resolver.resolve("5511999999999", "Maria") for _ in range(5)))

        assert len(chatwoot.contact_creates) == 1
        assert len(chatwoot.conversation_creates) == 1
        assert len({m.platform_conversation_id for m in mappings}) == 1

    @pytest.mark.asyncio
    async def test_platform_failure_caches_nothing(self, resolver, chatwoot, cache):
        """A failed resolution leaves no mapping behind."""
        chatwoot.fail_next = [503, 503, 503]

        with pytest.raises(PlatformUnavailable):
            await resolver.resolve("5511999999999")

        assert await cache.get("5511999999999") is None

    @pytest.mark.asyncio
    async def test_cache_down_still_resolves(self, chatwoot, redis_client):
        """An unreachable cache is a miss, not an error."""
        redis_client.fail = True
        resolver = IdentityResolver(
            chatwoot.client(),
            IdentityCache(redis_client),
            ParticipantLock(redis_client),
        )

        mapping = await resolver.resolve("5511999999999")

        assert mapping.platform_contact_id == chatwoot.contacts[0]["id"]

    @pytest.mark.asyncio
    async def test_empty_participant_rejected(self, resolver):
        """Ids without digits are invalid."""
        with pytest.raises(ValidationError):
            await resolver.resolve("not-a-phone")


class TestActivity:
    """Tests for record_activity() and forget()."""

    @pytest.mark.asyncio
    async def test_record_activity(self, resolver, cache):
        """last_message_at advances after the second message."""
        await resolver.resolve("5511999999999")
        later = T0 + timedelta(minutes=1)

        await resolver.record_activity("5511999999999", later)

        assert (await cache.get("5511999999999")).last_message_at == later

    @pytest.mark.asyncio
    async def test_forget(self, resolver, chatwoot, cache):
        """A forgotten participant is resolved against Chatwoot again."""
        await resolver.resolve("5511999999999")

        assert await resolver.forget("5511999999999")
        assert await cache.get("5511999999999") is None
