"""
Chatwoot Platform Client

Async client for the Chatwoot application API (contacts, conversations,
messages) scoped to one account and one API inbox.

Every call goes through the retry policy: transport errors, 5xx and 429
are retried, other 4xx fail immediately, and running out of attempts
raises PlatformUnavailable.

Documentation: https://www.chatwoot.com/developers/api/
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

import httpx

from basecore.correlation import CORRELATION_ID_HEADER, get_correlation_id
from basecore.redaction import mask_phone, redact_headers

from chatwoot_relay.contracts.envelope import normalize_participant_id
from chatwoot_relay.contracts.payloads import OutboundMessage
from chatwoot_relay.errors import PlatformRequestError, PlatformUnavailable
from chatwoot_relay.platform.chatwoot.retry import RetryPolicy

logger = logging.getLogger(__name__)

CONVERSATION_OPEN = "open"
CONVERSATION_STATUSES = ("open", "resolved", "pending", "snoozed")

# E.164 numbers are at most 15 digits; longer ids are WhatsApp groups
MAX_PHONE_DIGITS = 15


class ChatwootClient:
    """
    Chatwoot API client.

    One instance per process; the underlying httpx.AsyncClient pools
    connections and is reused across jobs.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        account_id: int,
        inbox_id: int,
        timeout: float = 10.0,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the Chatwoot client.

        Args:
            base_url: Chatwoot base URL (e.g., "https://chat.example.com")
            api_key: api_access_token of an agent or agent bot
            account_id: Account all calls are scoped to
            inbox_id: API inbox conversations are created in
            timeout: HTTP request timeout
            retry_policy: Attempts and delays
            sleep: Awaitable used between attempts
            transport: Optional httpx transport (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.account_id = account_id
        self.inbox_id = inbox_id
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings) -> "ChatwootClient":
        """Build a client from basecore settings."""
        return cls(
            base_url=settings.chatwoot_url,
            api_key=settings.chatwoot_api_key,
            account_id=settings.chatwoot_account_id,
            inbox_id=settings.chatwoot_inbox_id,
            timeout=settings.chatwoot_timeout,
            retry_policy=RetryPolicy(
                max_attempts=settings.chatwoot_max_attempts,
                base_delay=settings.chatwoot_backoff_seconds,
                rate_limit_cooldown=settings.chatwoot_rate_limit_cooldown,
            ),
        )

    @property
    def account_path(self) -> str:
        return f"/api/v1/accounts/{self.account_id}"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={
                    "Content-Type": "application/json",
                    "api_access_token": self.api_key,
                },
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json_data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Make an authenticated API request with retries.

        Raises:
            PlatformRequestError: Chatwoot rejected the request (4xx, not 429)
            PlatformUnavailable: all attempts failed
        """
        client = await self._get_client()
        policy = self.retry_policy
        headers = {}
        correlation_id = get_correlation_id()
        if correlation_id:
            headers[CORRELATION_ID_HEADER] = correlation_id

        last_error = ""
        last_status: int | None = None

        for attempt in range(1, policy.max_attempts + 1):
            logger.debug(
                f"Chatwoot request {method} {path}",
                extra={
                    "attempt": attempt,
                    "params": params,
                    "headers": redact_headers({**client.headers, **headers}),
                },
            )
            started = time.monotonic()
            response: httpx.Response | None = None
            try:
                response = await client.request(method, path, json=json_data, params=params, headers=headers)
            except httpx.RequestError as e:
                last_error = f"HTTP request failed: {e}"
                last_status = None
                logger.warning(
                    f"Chatwoot request {method} {path} failed (attempt {attempt}/{policy.max_attempts}): {e}"
                )
            else:
                elapsed_ms = int((time.monotonic() - started) * 1000)
                logger.debug(
                    f"Chatwoot response {response.status_code} for {method} {path}",
                    extra={"status_code": response.status_code, "elapsed_ms": elapsed_ms},
                )
                if response.status_code < 400:
                    return self._parse(response)

                last_status = response.status_code
                last_error = self._error_message(response)
                if not policy.is_retryable_status(response.status_code):
                    raise PlatformRequestError(
                        f"Chatwoot rejected {method} {path}: {last_error}",
                        status_code=response.status_code,
                        details=self._error_details(response),
                    )
                logger.warning(
                    f"Chatwoot returned {response.status_code} for {method} {path} "
                    f"(attempt {attempt}/{policy.max_attempts})"
                )

            if attempt == policy.max_attempts:
                break

            if response is not None and response.status_code == 429:
                delay = policy.rate_limit_delay(response)
            else:
                delay = policy.backoff_delay(attempt)
            await self._sleep(delay)

        raise PlatformUnavailable(
            f"Chatwoot {method} {path} failed after {policy.max_attempts} attempts: {last_error}",
            attempts=policy.max_attempts,
            status_code=last_status,
        )

    @staticmethod
    def _parse(response: httpx.Response) -> dict[str, Any]:
        if not response.content:
            return {}
        data = response.json()
        if isinstance(data, list):
            return {"payload": data}
        return data

    @staticmethod
    def _error_details(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {"body": response.text[:500]}
        return data if isinstance(data, dict) else {"body": data}

    @classmethod
    def _error_message(cls, response: httpx.Response) -> str:
        details = cls._error_details(response)
        return str(details.get("message") or details.get("error") or details.get("body") or response.reason_phrase)

    # --- contacts -----------------------------------------------------------

    async def search_contacts(self, query: str) -> list[dict[str, Any]]:
        """Search contacts by name, phone, email or identifier."""
        data = await self._request("GET", f"{self.account_path}/contacts/search", params={"q": query})
        return data.get("payload") or []

    async def create_contact(self, participant_id: str, name: str | None = None) -> dict[str, Any]:
        """
        Create a contact in the configured inbox.

        Phone-shaped ids are stored as phone_number; group ids (too long
        for E.164) are stored as identifier.
        """
        body: dict[str, Any] = {
            "inbox_id": self.inbox_id,
            "name": name or participant_id,
        }
        if len(participant_id) <= MAX_PHONE_DIGITS:
            body["phone_number"] = f"+{participant_id}"
        else:
            body["identifier"] = participant_id

        data = await self._request("POST", f"{self.account_path}/contacts", json_data=body)
        payload = data.get("payload", data)
        contact = payload.get("contact", payload) if isinstance(payload, dict) else {}
        if isinstance(payload, dict) and payload.get("contact_inbox") and "contact_inboxes" not in contact:
            contact = {**contact, "contact_inboxes": [payload["contact_inbox"]]}
        return contact

    @staticmethod
    def _contact_matches(contact: dict[str, Any], participant_id: str) -> bool:
        return participant_id in (
            normalize_participant_id(contact.get("phone_number")),
            normalize_participant_id(contact.get("identifier")),
        )

    async def find_contact(self, participant_id: str) -> dict[str, Any] | None:
        """Find the contact whose phone number or identifier is this participant."""
        for contact in await self.search_contacts(participant_id):
            if self._contact_matches(contact, participant_id):
                return contact
        return None

    async def find_or_create_contact(
        self,
        participant_id: str,
        name: str | None = None,
    ) -> tuple[dict[str, Any], bool]:
        """
        Get or create the contact for a participant.

        Returns:
            Tuple of (contact, is_new)
        """
        participant_id = normalize_participant_id(participant_id)
        contact = await self.find_contact(participant_id)
        if contact is not None:
            return contact, False

        contact = await self.create_contact(participant_id, name)
        logger.info(
            f"Created Chatwoot contact {contact.get('id')}",
            extra={"contact_id": contact.get("id"), "phone": mask_phone(participant_id)},
        )
        return contact, True

    # --- conversations ------------------------------------------------------

    async def list_contact_conversations(self, contact_id: int) -> list[dict[str, Any]]:
        data = await self._request("GET", f"{self.account_path}/contacts/{contact_id}/conversations")
        return data.get("payload") or []

    async def get_conversation(self, conversation_id: int) -> dict[str, Any]:
        return await self._request("GET", f"{self.account_path}/conversations/{conversation_id}")

    async def create_conversation(
        self,
        contact_id: int,
        source_id: str | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "contact_id": contact_id,
            "inbox_id": self.inbox_id,
            "status": CONVERSATION_OPEN,
        }
        if source_id:
            body["source_id"] = source_id
        return await self._request("POST", f"{self.account_path}/conversations", json_data=body)

    def _source_id_for_inbox(self, contact: dict[str, Any]) -> str | None:
        for contact_inbox in contact.get("contact_inboxes") or []:
            inbox = contact_inbox.get("inbox") or {}
            if inbox.get("id") == self.inbox_id or contact_inbox.get("inbox_id") == self.inbox_id:
                return contact_inbox.get("source_id")
        return None

    async def find_open_conversation(self, contact_id: int) -> dict[str, Any] | None:
        """Most recent open conversation of the contact in the configured inbox."""
        conversations = [
            c
            for c in await self.list_contact_conversations(contact_id)
            if c.get("inbox_id") == self.inbox_id and c.get("status") == CONVERSATION_OPEN
        ]
        if not conversations:
            return None
        return max(conversations, key=lambda c: c.get("id") or 0)

    async def find_or_create_conversation(
        self,
        contact: dict[str, Any],
    ) -> tuple[dict[str, Any], bool]:
        """
        Get the contact's open conversation or start a new one.

        Resolved, pending or snoozed conversations are never reused.

        Returns:
            Tuple of (conversation, is_new)
        """
        contact_id = int(contact["id"])
        conversation = await self.find_open_conversation(contact_id)
        if conversation is not None:
            return conversation, False

        conversation = await self.create_conversation(contact_id, self._source_id_for_inbox(contact))
        logger.info(
            f"Created Chatwoot conversation {conversation.get('id')}",
            extra={"contact_id": contact_id, "conversation_id": conversation.get("id")},
        )
        return conversation, True

    async def update_conversation_status(self, conversation_id: int, status: str) -> dict[str, Any]:
        """
        Set a conversation's status if it differs from the current one.

        Returns:
            The conversation as Chatwoot reports it after the update
        """
        if status not in CONVERSATION_STATUSES:
            raise ValueError(f"Unknown conversation status: {status}")

        conversation = await self.get_conversation(conversation_id)
        if conversation.get("status") == status:
            return conversation

        await self._request(
            "POST",
            f"{self.account_path}/conversations/{conversation_id}/toggle_status",
            json_data={"status": status},
        )
        logger.info(
            f"Conversation {conversation_id} status changed",
            extra={"conversation_id": conversation_id, "from": conversation.get("status"), "to": status},
        )
        return {**conversation, "status": status}

    # --- messages -----------------------------------------------------------

    async def send_message(self, conversation_id: int, message: OutboundMessage) -> dict[str, Any]:
        """Create a message in a conversation."""
        return await self._request(
            "POST",
            f"{self.account_path}/conversations/{conversation_id}/messages",
            json_data=message.to_platform_payload(),
        )
