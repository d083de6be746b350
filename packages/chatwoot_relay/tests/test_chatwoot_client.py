"""
Tests for the Chatwoot platform client.
"""

import httpx
import pytest

from chatwoot_relay.contracts.payloads import OutboundMessage
from chatwoot_relay.errors import PlatformRequestError, PlatformUnavailable
from chatwoot_relay.platform.chatwoot.client import ChatwootClient
from chatwoot_relay.platform.chatwoot.retry import RetryPolicy

from chatwoot_stub import INBOX_ID


class TestRetryPolicy:
    """Tests for delays between attempts."""

    def test_exponential_backoff(self):
        """1s then 2s then 4s."""
        policy = RetryPolicy()

        assert [policy.backoff_delay(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]

    def test_backoff_capped(self):
        """Delays never exceed max_delay."""
        policy = RetryPolicy(max_delay=3.0)

        assert policy.backoff_delay(10) == 3.0

    def test_rate_limit_delay(self):
        """429 uses Retry-After when numeric, the cooldown otherwise."""
        policy = RetryPolicy(rate_limit_cooldown=5.0)

        assert policy.rate_limit_delay(httpx.Response(429, headers={"Retry-After": "7"})) == 7.0
        assert policy.rate_limit_delay(httpx.Response(429, headers={"Retry-After": "soon"})) == 5.0
        assert policy.rate_limit_delay(httpx.Response(429)) == 5.0

    def test_retryable_statuses(self):
        """5xx and 429 are retried, other 4xx are not."""
        policy = RetryPolicy()

        assert policy.is_retryable_status(429)
        assert policy.is_retryable_status(503)
        assert not policy.is_retryable_status(404)
        assert not policy.is_retryable_status(422)


class TestRequestRetries:
    """Tests for the attempt loop."""

    @pytest.mark.asyncio
    async def test_fails_twice_then_succeeds(self, chatwoot):
        """Two 5xx then success: three calls, waits of 1s then 2s."""
        chatwoot.fail_next = [500, 502]
        client = chatwoot.client()

        result = await client.search_contacts("5511999999999")

        assert result == []
        assert len(chatwoot.requests) == 3
        assert chatwoot.sleeps == [1.0, 2.0]
        assert sum(chatwoot.sleeps) == pytest.approx(3.0)

    @pytest.mark.asyncio
    async def test_exhausted_attempts_raise_unavailable(self, chatwoot):
        """Three failures raise PlatformUnavailable; no wait after the last."""
        chatwoot.fail_next = [503, 503, 503]
        client = chatwoot.client()

        with pytest.raises(PlatformUnavailable) as exc_info:
            await client.search_contacts("5511999999999")

        assert exc_info.value.attempts == 3
        assert exc_info.value.status_code == 503
        assert exc_info.value.retryable
        assert len(chatwoot.requests) == 3
        assert chatwoot.sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_rate_limit_cooldown(self, chatwoot):
        """A 429 waits the cooldown instead of the backoff."""
        chatwoot.fail_next = [429]
        client = chatwoot.client(rate_limit_cooldown=5.0)

        await client.search_contacts("5511999999999")

        assert chatwoot.sleeps == [5.0]
        assert len(chatwoot.requests) == 2

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, chatwoot):
        """4xx other than 429 fails immediately."""
        chatwoot.fail_next = [422]
        client = chatwoot.client()

        with pytest.raises(PlatformRequestError) as exc_info:
            await client.search_contacts("5511999999999")

        assert exc_info.value.status_code == 422
        assert not exc_info.value.retryable
        assert len(chatwoot.requests) == 1
        assert chatwoot.sleeps == []

    @pytest.mark.asyncio
    async def test_transport_error_retried(self):
        """Connection errors count as failed attempts."""
        calls = []
        sleeps = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"payload": []})

        async def sleep(delay):
            sleeps.append(delay)

        client = ChatwootClient(
            base_url="https://chatwoot.test",
            api_key="k",
            account_id=1,
            inbox_id=1,
            sleep=sleep,
            transport=httpx.MockTransport(handler),
        )

        assert await client.search_contacts("55") == []
        assert len(calls) == 2
        assert sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_auth_header(self, chatwoot):
        """Requests carry the api_access_token header."""
        client = chatwoot.client()

        await client.search_contacts("55")

        assert chatwoot.requests[0].headers["api_access_token"] == "secret-token"


class TestContacts:
    """Tests for contact lookup and creation."""

    @pytest.mark.asyncio
    async def test_find_or_create_creates(self, chatwoot):
        """Unknown participants get a contact with an E.164 phone number."""
        client = chatwoot.client()

        contact, is_new = await client.find_or_create_contact("5511999999999", "Maria")

        assert is_new
        assert contact["phone_number"] == "+5511999999999"
        assert contact["name"] == "Maria"
        assert contact["contact_inboxes"][0]["inbox"]["id"] == INBOX_ID

    @pytest.mark.asyncio
    async def test_find_or_create_finds(self, chatwoot):
        """An existing contact is reused."""
        existing = chatwoot.add_contact("5511999999999")
        client = chatwoot.client()

        contact, is_new = await client.find_or_create_contact("+55 11 99999-9999")

        assert not is_new
        assert contact["id"] == existing["id"]
        assert chatwoot.contact_creates == []

    @pytest.mark.asyncio
    async def test_partial_match_is_not_a_match(self, chatwoot):
        """Search hits for a longer number are not this participant."""
        chatwoot.add_contact("55119999999990")
        client = chatwoot.client()

        assert await client.find_contact("5511999999999") is None

    @pytest.mark.asyncio
    async def test_group_id_stored_as_identifier(self, chatwoot):
        """Group ids are too long for a phone number."""
        client = chatwoot.client()

        contact = await client.create_contact("120363025555555555", "Family")

        assert contact["identifier"] == "120363025555555555"
        assert contact["phone_number"] is None


class TestConversations:
    """Tests for conversation handling."""

    @pytest.mark.asyncio
    async def test_reuses_open_conversation(self, chatwoot):
        """The latest open conversation in the inbox is reused."""
        contact = chatwoot.add_contact("5511999999999")
        chatwoot.add_conversation(contact["id"], status="resolved")
        older = chatwoot.add_conversation(contact["id"])
        newer = chatwoot.add_conversation(contact["id"])
        chatwoot.add_conversation(contact["id"], inbox_id=INBOX_ID + 1)
        client = chatwoot.client()

        conversation, is_new = await client.find_or_create_conversation(contact)

        assert not is_new
        assert conversation["id"] == newer["id"] != older["id"]

    @pytest.mark.asyncio
    async def test_resolved_conversation_not_reused(self, chatwoot):
        """Only resolved conversations means a new one is opened."""
        contact = chatwoot.add_contact("5511999999999")
        chatwoot.add_conversation(contact["id"], status="resolved")
        client = chatwoot.client()

        conversation, is_new = await client.find_or_create_conversation(contact)

        assert is_new
        assert conversation["status"] == "open"
        body = chatwoot.conversation_creates[0].read()
        assert b'"source_id":"src-5511999999999"' in body.replace(b" ", b"")

    @pytest.mark.asyncio
    async def test_update_status(self, chatwoot):
        """toggle_status is called only when the status changes."""
        contact = chatwoot.add_contact("5511999999999")
        conversation = chatwoot.add_conversation(contact["id"])
        client = chatwoot.client()

        await client.update_conversation_status(conversation["id"], "open")
        assert chatwoot.calls("POST", "/toggle_status") == []

        updated = await client.update_conversation_status(conversation["id"], "resolved")
        assert updated["status"] == "resolved"
        assert len(chatwoot.calls("POST", "/toggle_status")) == 1

    @pytest.mark.asyncio
    async def test_update_status_rejects_unknown(self, chatwoot):
        """Unknown statuses are rejected before any call."""
        client = chatwoot.client()

        with pytest.raises(ValueError):
            await client.update_conversation_status(1, "archived")
        assert chatwoot.requests == []


class TestSendMessage:
    """Tests for message creation."""

    @pytest.mark.asyncio
    async def test_send_message(self, chatwoot):
        """The outbound message is posted to the conversation."""
        client = chatwoot.client()

        sent = await client.send_message(
            42,
            OutboundMessage(content="hi", metadata={"source": "z-api"}, dedupe_token="M1"),
        )

        assert sent["conversation_id"] == 42
        assert sent["content"] == "hi"
        assert sent["message_type"] == "incoming"
        assert sent["echo_id"] == "M1"
        assert sent["content_attributes"] == {"source": "z-api"}
