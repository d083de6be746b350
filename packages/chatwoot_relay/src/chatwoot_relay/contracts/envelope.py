"""
Relay Envelopes

InboundEnvelope wraps one Z-API webhook event: a typed core of the fields
every event carries plus a side-channel map holding everything else
(content payloads, reply metadata, fields we do not know about yet).

DeliveryJob is the unit of work stored in the delivery queue.
"""

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from chatwoot_relay.contracts.job_types import JobKind, JobState

_NON_DIGITS = re.compile(r"\D")

# Provider field name -> envelope attribute
CORE_FIELDS = {
    "phone": "phone",
    "messageId": "message_id",
    "instanceId": "instance_id",
    "type": "type",
    "fromMe": "from_me",
    "isGroup": "is_group",
    "momment": "moment",
    "senderName": "sender_name",
    "chatName": "chat_name",
    "senderPhoto": "sender_photo",
    "status": "status",
}


def normalize_participant_id(phone: str | None) -> str:
    """Strip everything but digits from a phone number or chat id."""
    return _NON_DIGITS.sub("", phone or "")


def as_bool(value: Any) -> bool:
    """Z-API sends flags as booleans or as "true"/"1"/"yes" strings."""
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _moment_to_datetime(moment: Any) -> datetime | None:
    """Z-API sends ``momment`` as epoch milliseconds."""
    if moment is None or isinstance(moment, bool):
        return None
    try:
        value = float(moment)
    except (TypeError, ValueError):
        return None
    if value > 1e11:
        value = value / 1000
    return datetime.fromtimestamp(value, tz=timezone.utc)


@dataclass
class InboundEnvelope:
    """
    One inbound Z-API event.

    Attributes:
        participant_id: Digits-only phone number (identity key)
        phone: Phone number exactly as the provider sent it
        message_id: Provider message id (dedupe token downstream)
        instance_id: Z-API instance that received the event
        type: Provider type discriminator
        from_me: True for messages sent from the connected number itself
        is_group: True for group chats
        moment: Provider timestamp (epoch ms)
        fields: Every other top-level field of the payload
    """

    participant_id: str
    phone: str
    message_id: str
    instance_id: str | None = None
    type: str | None = None
    from_me: bool = False
    is_group: bool = False
    moment: int | None = None
    sender_name: str | None = None
    chat_name: str | None = None
    sender_photo: str | None = None
    status: str | None = None
    fields: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "InboundEnvelope":
        """Split a provider payload into typed core and extras."""
        core: dict[str, Any] = {}
        extras: dict[str, Any] = {}
        for key, value in payload.items():
            if key in CORE_FIELDS:
                core[CORE_FIELDS[key]] = value
            else:
                extras[key] = value

        phone = str(core.pop("phone", "") or "")
        return cls(
            participant_id=normalize_participant_id(phone),
            phone=phone,
            message_id=str(core.pop("message_id", "") or ""),
            instance_id=core.pop("instance_id", None),
            type=core.pop("type", None),
            from_me=as_bool(core.pop("from_me", False)),
            is_group=as_bool(core.pop("is_group", False)),
            moment=core.pop("moment", None),
            fields=extras,
            **core,
        )

    @property
    def timestamp(self) -> datetime | None:
        return _moment_to_datetime(self.moment)

    def get(self, name: str, default: Any = None) -> Any:
        """Read an extra (non-core) field."""
        return self.fields.get(name, default)

    def to_payload(self) -> dict[str, Any]:
        """Rebuild the provider-native payload (queue snapshot)."""
        payload: dict[str, Any] = dict(self.fields)
        for provider_key, attr in CORE_FIELDS.items():
            value = getattr(self, attr)
            if value is not None:
                payload[provider_key] = value
        return payload


@dataclass
class DeliveryJob:
    """
    Queued unit of work.

    Created at intake, claimed by exactly one worker at a time, kept for a
    bounded time after it completes or fails terminally.
    """

    job_id: str
    kind: str
    payload: dict[str, Any]
    correlation_id: str
    enqueued_at: datetime
    priority: int = 0
    delay_ms: int = 0
    attempts_made: int = 0
    max_attempts: int = 3
    state: str = JobState.QUEUED.value
    last_error: str | None = None
    failed_reason: str | None = None
    finished_at: datetime | None = None
    result: dict[str, Any] | None = None

    @classmethod
    def create(
        cls,
        kind: JobKind | str,
        payload: dict[str, Any],
        correlation_id: str,
        priority: int = 0,
        delay_ms: int = 0,
        max_attempts: int = 3,
    ) -> "DeliveryJob":
        """Create a new job with a generated id and enqueue timestamp."""
        return cls(
            job_id=str(uuid4()),
            kind=str(kind),
            payload=payload,
            correlation_id=correlation_id,
            enqueued_at=utcnow(),
            priority=priority,
            delay_ms=delay_ms,
            max_attempts=max_attempts,
            state=JobState.DELAYED.value if delay_ms > 0 else JobState.QUEUED.value,
        )

    @property
    def attempts_left(self) -> int:
        return max(self.max_attempts - self.attempts_made, 0)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeliveryJob":
        """Create a job from a dictionary (e.g., read back from Redis)."""
        finished_at = data.get("finished_at")
        return cls(
            job_id=data["job_id"],
            kind=data["kind"],
            payload=data.get("payload", {}),
            correlation_id=data.get("correlation_id", ""),
            enqueued_at=datetime.fromisoformat(data["enqueued_at"]),
            priority=int(data.get("priority", 0)),
            delay_ms=int(data.get("delay_ms", 0)),
            attempts_made=int(data.get("attempts_made", 0)),
            max_attempts=int(data.get("max_attempts", 3)),
            state=data.get("state", JobState.QUEUED.value),
            last_error=data.get("last_error"),
            failed_reason=data.get("failed_reason"),
            finished_at=datetime.fromisoformat(finished_at) if finished_at else None,
            result=data.get("result"),
        )

    @classmethod
    def from_json(cls, raw: str) -> "DeliveryJob":
        return cls.from_dict(json.loads(raw))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "job_id": self.job_id,
            "kind": self.kind,
            "payload": self.payload,
            "correlation_id": self.correlation_id,
            "enqueued_at": self.enqueued_at.isoformat(),
            "priority": self.priority,
            "delay_ms": self.delay_ms,
            "attempts_made": self.attempts_made,
            "max_attempts": self.max_attempts,
            "state": self.state,
            "last_error": self.last_error,
            "failed_reason": self.failed_reason,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "result": self.result,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)
