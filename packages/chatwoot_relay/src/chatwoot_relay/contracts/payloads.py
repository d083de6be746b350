"""
Relay Payload Models

Pydantic models for what the relay stores and sends: the cached identity
mapping, the Chatwoot-bound message, and the Z-API send request produced
by the reverse translation.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Direction(str, Enum):
    """Chatwoot message_type."""

    INCOMING = "incoming"
    OUTGOING = "outgoing"


class ContentKind(str, Enum):
    """Content variants of a Z-API message, in classification order."""

    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    DOCUMENT = "document"
    LOCATION = "location"
    CONTACT = "contact"
    STICKER = "sticker"
    POLL = "poll"
    REACTION = "reaction"
    BUTTON_REPLY = "button_reply"
    LIST_REPLY = "list_reply"
    UNSUPPORTED = "unsupported"


class AttachmentKind(str, Enum):
    """Kinds of media attachment."""

    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    DOCUMENT = "document"
    STICKER = "sticker"


# Chatwoot attachment file_type per attachment kind
PLATFORM_FILE_TYPES = {
    AttachmentKind.IMAGE: "image",
    AttachmentKind.AUDIO: "audio",
    AttachmentKind.VIDEO: "video",
    AttachmentKind.DOCUMENT: "file",
    AttachmentKind.STICKER: "image",
}

# Reverse mapping for messages coming from Chatwoot
FILE_TYPE_TO_KIND = {
    "image": AttachmentKind.IMAGE,
    "audio": AttachmentKind.AUDIO,
    "video": AttachmentKind.VIDEO,
    "file": AttachmentKind.DOCUMENT,
    "document": AttachmentKind.DOCUMENT,
    "sticker": AttachmentKind.STICKER,
}


class IdentityMapping(BaseModel):
    """
    Link between a Z-API participant and its Chatwoot contact/conversation.

    Stored in the identity cache under ``<namespace>:<participant_id>``.
    """

    participant_id: str = Field(..., description="Digits-only phone number")
    platform_contact_id: int = Field(..., description="Chatwoot contact id")
    platform_conversation_id: int = Field(..., description="Chatwoot conversation id (open when cached)")
    display_name: str | None = Field(None, description="Name shown for the contact")
    last_message_at: datetime = Field(..., description="Last inbound message seen for this participant")
    created_at: datetime = Field(..., description="First time the mapping was written")
    updated_at: datetime = Field(..., description="Last write")
    expires_at: datetime | None = Field(None, description="When the mapping stops being served")


class Attachment(BaseModel):
    """Media attachment on an outbound message."""

    kind: AttachmentKind
    url: str
    thumbnail_url: str | None = None
    file_name: str | None = None
    mime_type: str | None = None

    def to_platform(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "file_type": PLATFORM_FILE_TYPES[self.kind],
            "data_url": self.url,
        }
        if self.thumbnail_url:
            data["thumb_url"] = self.thumbnail_url
        if self.file_name:
            data["file_name"] = self.file_name
        return data


class OutboundMessage(BaseModel):
    """
    Chatwoot-bound message produced by the translator.

    ``metadata`` carries provenance (source system, original ids, per-kind
    extracted fields) and is sent as Chatwoot ``content_attributes``.
    """

    content: str = Field(..., description="Human readable content")
    direction: Direction = Field(Direction.INCOMING, description="Chatwoot message_type")
    content_type: ContentKind = Field(ContentKind.TEXT, description="Classified content kind")
    attachments: list[Attachment] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    dedupe_token: str | None = Field(None, description="Original provider message id")

    def to_platform_payload(self) -> dict[str, Any]:
        """Body for POST /conversations/{id}/messages."""
        payload: dict[str, Any] = {
            "content": self.content,
            "message_type": self.direction.value,
            "private": False,
            "content_type": "text",
            "content_attributes": self.metadata,
        }
        if self.dedupe_token:
            payload["echo_id"] = self.dedupe_token
        if self.attachments:
            payload["attachments"] = [a.to_platform() for a in self.attachments]
        return payload


class PlatformMessage(BaseModel):
    """A message as Chatwoot reports it (outgoing agent replies)."""

    id: int | None = None
    content: str | None = None
    message_type: str = "outgoing"
    content_type: str = "text"
    content_attributes: dict[str, Any] = Field(default_factory=dict)
    attachments: list[dict[str, Any]] = Field(default_factory=list)


class ProviderSendRequest(BaseModel):
    """Z-API send call: endpoint path relative to the instance plus JSON body."""

    path: str = Field(..., description="e.g. send-text, send-image, send-document/pdf")
    body: dict[str, Any] = Field(default_factory=dict)
