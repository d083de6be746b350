"""
Z-API Webhook Schemas

Pydantic models for Z-API "on-message-received" and "on-message-status"
webhooks. Every model allows extra fields: Z-API adds fields without
notice and ingestion must keep working when it does.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _ZApiModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class TextContent(_ZApiModel):
    message: str


class ImageContent(_ZApiModel):
    imageUrl: str | None = None
    caption: str | None = None
    thumbnailUrl: str | None = None
    mimeType: str | None = None


class AudioContent(_ZApiModel):
    audioUrl: str | None = None
    mimeType: str | None = None
    ptt: bool | None = None


class VideoContent(_ZApiModel):
    videoUrl: str | None = None
    caption: str | None = None
    mimeType: str | None = None


class DocumentContent(_ZApiModel):
    documentUrl: str | None = None
    url: str | None = None
    fileName: str | None = None
    documentName: str | None = None
    title: str | None = None
    caption: str | None = None
    documentCaption: str | None = None
    mimeType: str | None = None
    documentMimeType: str | None = None
    pageCount: int | None = None


class LocationContent(_ZApiModel):
    latitude: float
    longitude: float
    address: str | None = None
    name: str | None = None
    description: str | None = None
    url: str | None = None


class ContactContent(_ZApiModel):
    displayName: str | None = None
    vCard: str | None = None
    vcard: str | None = None


class PollContent(_ZApiModel):
    name: str | None = None
    question: str | None = None
    options: list[Any] | None = None
    choices: list[Any] | None = None


class StickerContent(_ZApiModel):
    stickerUrl: str | None = None
    url: str | None = None
    mimeType: str | None = None


class ReactionContent(_ZApiModel):
    messageId: str | None = None
    emoji: str | None = None


class ZApiMessageSchema(_ZApiModel):
    """
    Strict schema for received messages.

    Requires the discriminating fields (phone, messageId, type, fromMe)
    and types the known content objects. Unknown fields pass through.
    """

    phone: str = Field(..., description="Participant phone or group id")
    messageId: str = Field(..., description="Provider message id")
    type: str = Field(..., description="Event type discriminator")
    fromMe: bool = Field(..., description="Sent by the connected number itself")

    instanceId: str | None = None
    momment: int | None = None
    status: str | None = None
    chatName: str | None = None
    senderName: str | None = None
    senderPhoto: str | None = None
    isGroup: bool | None = None

    referenceMessageId: str | None = None
    quotedMessage: dict[str, Any] | None = None
    replyMessage: dict[str, Any] | None = None
    quotedMsg: dict[str, Any] | None = None
    contextInfo: dict[str, Any] | None = None

    text: TextContent | None = None
    image: ImageContent | None = None
    audio: AudioContent | None = None
    video: VideoContent | None = None
    document: DocumentContent | None = None
    location: LocationContent | None = None
    contact: ContactContent | None = None
    vcard: ContactContent | None = None
    poll: PollContent | None = None
    sticker: StickerContent | None = None
    reaction: ReactionContent | None = None
    buttonResponse: dict[str, Any] | None = None
    listResponse: dict[str, Any] | None = None


class ZApiMinimalSchema(_ZApiModel):
    """Permissive fallback: four required fields, anything else allowed."""

    instanceId: str
    messageId: str
    phone: str
    fromMe: bool


class ZApiStatusSchema(_ZApiModel):
    """Message status webhook (SENT, RECEIVED, READ, PLAYED...)."""

    messageId: str
    phone: str
    status: str
    instanceId: str | None = None
    momment: int | None = None
    isGroup: bool | None = None
