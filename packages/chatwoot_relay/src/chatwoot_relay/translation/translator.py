"""
Message Translator

Translates between Z-API webhook messages and Chatwoot messages.

- to_platform: InboundEnvelope -> OutboundMessage (Chatwoot-bound)
- to_provider: Chatwoot message -> ProviderSendRequest (Z-API send call)

Both directions are pure: no I/O, nothing shared is mutated.
"""

import logging
import posixpath
from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import urlparse

from basecore.redaction import redact_phones

from chatwoot_relay.contracts.envelope import InboundEnvelope
from chatwoot_relay.contracts.payloads import (
    FILE_TYPE_TO_KIND,
    Attachment,
    AttachmentKind,
    ContentKind,
    Direction,
    OutboundMessage,
    PlatformMessage,
    ProviderSendRequest,
)
from chatwoot_relay.errors import TranslationError
from chatwoot_relay.translation.content import (
    ClassifiedContent,
    classify_content,
    unrecognized_fields,
)
from chatwoot_relay.translation.replies import detect_reply

logger = logging.getLogger(__name__)

SOURCE_TAG = "z-api"
DEFAULT_DOCUMENT_NAME = "document"
EMPTY_MESSAGE = "[Empty message]"
GOOGLE_MAPS_URL = "https://www.google.com/maps?q={lat},{lng}"

# Alias paths per logical value
TEXT_BODY = (("message",), ("text",), ("body",))
CAPTION = (("caption",),)
MIME_TYPE = (("mimeType",),)
IMAGE_URL = (("imageUrl",), ("url",))
AUDIO_URL = (("audioUrl",), ("url",))
VIDEO_URL = (("videoUrl",), ("url",))
DOCUMENT_URL = (("documentUrl",), ("url",))
DOCUMENT_NAME = (("fileName",), ("documentName",), ("title",))
DOCUMENT_CAPTION = (("caption",), ("documentCaption",))
DOCUMENT_MIME = (("mimeType",), ("documentMimeType",))
STICKER_URL = (("stickerUrl",), ("url",))
CONTACT_NAME = (("displayName",), ("name",))
CONTACT_VCARD = (("vCard",), ("vcard",))
POLL_QUESTION = (("name",), ("question",))
POLL_OPTIONS = (("options",), ("choices",))
BUTTON_TEXT = (("buttonText",), ("message",), ("text",))
BUTTON_ID = (("buttonId",), ("selectedButtonId",))
LIST_TITLE = (("response", "title"), ("title",), ("message",))
LIST_ID = (("response", "id"), ("selectedRowId",))
LIST_DESCRIPTION = (("response", "description"), ("description",))

# Chatwoot attachment kind -> Z-API send endpoint
PROVIDER_SEND_PATHS = {
    AttachmentKind.IMAGE: "send-image",
    AttachmentKind.AUDIO: "send-audio",
    AttachmentKind.VIDEO: "send-video",
    AttachmentKind.DOCUMENT: "send-document",
}


@dataclass
class TranslationContext:
    """Context for one translation."""

    correlation_id: str | None = None
    phone: str | None = None
    instance_id: str | None = None
    conversation_id: int | None = None


@dataclass
class _Translated:
    """What a content handler contributes."""

    content: str
    attachment: Attachment | None = None
    info_key: str | None = None
    info: dict[str, Any] | None = None


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


def _vcard_phones(vcard: str | None) -> list[str]:
    """Phone numbers from TEL lines of a vCard."""
    if not vcard:
        return []
    phones = []
    for line in vcard.splitlines():
        if line.upper().startswith("TEL") and ":" in line:
            phones.append(line.split(":", 1)[1].strip())
    return phones


def _option_label(option: Any) -> str:
    if isinstance(option, dict):
        return str(option.get("name") or option.get("optionName") or option.get("title") or "")
    return str(option)


# --- content handlers -------------------------------------------------------


def _text(content: ClassifiedContent) -> _Translated:
    body = content.lookup(TEXT_BODY, "")
    return _Translated(content=str(body))


def _image(content: ClassifiedContent) -> _Translated:
    url = content.lookup(IMAGE_URL)
    caption = content.lookup(CAPTION)
    attachment = None
    if url:
        attachment = Attachment(
            kind=AttachmentKind.IMAGE,
            url=url,
            thumbnail_url=content.lookup((("thumbnailUrl",),)) or url,
            mime_type=content.lookup(MIME_TYPE),
        )
    return _Translated(
        content=caption or "[Image]",
        attachment=attachment,
        info_key="media_info",
        info=_drop_none({"mime_type": content.lookup(MIME_TYPE), "caption": caption}),
    )


def _audio(content: ClassifiedContent) -> _Translated:
    url = content.lookup(AUDIO_URL)
    attachment = None
    if url:
        attachment = Attachment(kind=AttachmentKind.AUDIO, url=url, mime_type=content.lookup(MIME_TYPE))
    return _Translated(
        content="[Audio Message]",
        attachment=attachment,
        info_key="media_info",
        info=_drop_none({
            "mime_type": content.lookup(MIME_TYPE),
            "ptt": content.data.get("ptt"),
            "seconds": content.data.get("seconds"),
        }),
    )


def _video(content: ClassifiedContent) -> _Translated:
    url = content.lookup(VIDEO_URL)
    caption = content.lookup(CAPTION)
    attachment = None
    if url:
        attachment = Attachment(
            kind=AttachmentKind.VIDEO,
            url=url,
            thumbnail_url=content.lookup((("thumbnailUrl",),)),
            mime_type=content.lookup(MIME_TYPE),
        )
    return _Translated(
        content=caption or "[Video]",
        attachment=attachment,
        info_key="media_info",
        info=_drop_none({"mime_type": content.lookup(MIME_TYPE), "caption": caption}),
    )


def _document(content: ClassifiedContent) -> _Translated:
    url = content.lookup(DOCUMENT_URL)
    # No extension is guessed for a missing name
    file_name = str(content.lookup(DOCUMENT_NAME, DEFAULT_DOCUMENT_NAME))
    caption = content.lookup(DOCUMENT_CAPTION)
    mime_type = content.lookup(DOCUMENT_MIME)
    attachment = None
    if url:
        attachment = Attachment(
            kind=AttachmentKind.DOCUMENT,
            url=url,
            file_name=file_name,
            mime_type=mime_type,
        )
    return _Translated(
        content=caption or f"[Document: {file_name}]",
        attachment=attachment,
        info_key="media_info",
        info=_drop_none({
            "file_name": file_name,
            "title": content.data.get("title"),
            "mime_type": mime_type,
            "page_count": content.data.get("pageCount"),
            "caption": caption,
        }),
    )


def _location(content: ClassifiedContent) -> _Translated:
    latitude = content.data.get("latitude")
    longitude = content.data.get("longitude")
    has_coordinates = latitude is not None and longitude is not None
    url = content.data.get("url") or None
    if url is None and has_coordinates:
        url = GOOGLE_MAPS_URL.format(lat=latitude, lng=longitude)

    lines = [
        content.lookup((("name",),)),
        content.data.get("description") or None,
        content.data.get("address") or None,
    ]
    if has_coordinates:
        lines.append(f"Latitude: {latitude}, Longitude: {longitude}")
    if url:
        lines.append(url)
    text = "\n".join(line for line in lines if line)

    return _Translated(
        content=text or "[Location Shared]",
        info_key="location_info",
        info=_drop_none({
            "latitude": latitude,
            "longitude": longitude,
            "name": content.data.get("name"),
            "address": content.data.get("address"),
            "description": content.data.get("description"),
            "map_url": url,
        }),
    )


def _contact(content: ClassifiedContent) -> _Translated:
    name = content.lookup(CONTACT_NAME, "Unknown")
    vcard = content.lookup(CONTACT_VCARD)
    phones = content.data.get("phones") or _vcard_phones(vcard)
    lines = [f"[Contact: {name}]"] + [str(p) for p in phones]
    return _Translated(
        content="\n".join(lines),
        info_key="contact_info",
        info=_drop_none({
            "display_name": name,
            "phones": phones or None,
            "emails": content.data.get("emails"),
            "vcard": vcard,
        }),
    )


def _sticker(content: ClassifiedContent) -> _Translated:
    url = content.lookup(STICKER_URL)
    attachment = None
    if url:
        attachment = Attachment(kind=AttachmentKind.STICKER, url=url, mime_type=content.lookup(MIME_TYPE))
    return _Translated(
        content="[Sticker]",
        attachment=attachment,
        info_key="media_info",
        info=_drop_none({
            "mime_type": content.lookup(MIME_TYPE),
            "animated": content.data.get("animated"),
            "pack_name": content.data.get("packName"),
        }),
    )


def _poll(content: ClassifiedContent) -> _Translated:
    question = content.lookup(POLL_QUESTION, "")
    options = [_option_label(o) for o in (content.lookup(POLL_OPTIONS) or [])]
    lines = [f"[Poll] {question}".rstrip()] + [f"- {o}" for o in options if o]
    return _Translated(
        content="\n".join(lines),
        info_key="poll_info",
        info=_drop_none({
            "question": question or None,
            "options": options,
            "selectable_options_count": content.data.get("selectableOptionsCount"),
        }),
    )


def _reaction(content: ClassifiedContent) -> _Translated:
    emoji = content.data.get("emoji") or content.data.get("value")
    target = content.lookup((("messageId",), ("referencedMessage", "messageId")))
    return _Translated(
        content=f"[Reaction: {emoji}]" if emoji else "[Reaction removed]",
        info_key="reaction_info",
        info=_drop_none({"emoji": emoji, "target_message_id": target}),
    )


def _button_reply(content: ClassifiedContent) -> _Translated:
    text = content.lookup(BUTTON_TEXT)
    button_id = content.lookup(BUTTON_ID)
    return _Translated(
        content=str(text) if text else f"[Button: {button_id or 'unknown'}]",
        info_key="button_info",
        info=_drop_none({"button_id": button_id, "button_text": text}),
    )


def _list_reply(content: ClassifiedContent) -> _Translated:
    title = content.lookup(LIST_TITLE)
    row_id = content.lookup(LIST_ID)
    description = content.lookup(LIST_DESCRIPTION)
    return _Translated(
        content=str(title) if title else "[List selection]",
        info_key="list_info",
        info=_drop_none({
            "row_id": row_id,
            "title": title,
            "description": description,
            "list_title": content.data.get("title") if content.data.get("response") else None,
        }),
    )


CONTENT_HANDLERS: dict[ContentKind, Callable[[ClassifiedContent], _Translated]] = {
    ContentKind.TEXT: _text,
    ContentKind.IMAGE: _image,
    ContentKind.AUDIO: _audio,
    ContentKind.VIDEO: _video,
    ContentKind.DOCUMENT: _document,
    ContentKind.LOCATION: _location,
    ContentKind.CONTACT: _contact,
    ContentKind.STICKER: _sticker,
    ContentKind.POLL: _poll,
    ContentKind.REACTION: _reaction,
    ContentKind.BUTTON_REPLY: _button_reply,
    ContentKind.LIST_REPLY: _list_reply,
}


def _document_extension(file_name: str | None, url: str | None) -> str | None:
    """Extension of the real file name (or URL path), lowercased, without dot."""
    for candidate in (file_name, urlparse(url).path if url else None):
        if candidate:
            ext = posixpath.splitext(candidate)[1]
            if ext and len(ext) > 1:
                return ext[1:].lower()
    return None


class MessageTranslator:
    """
    Bidirectional Z-API <-> Chatwoot translator.

    Stateless; one instance can be shared by every worker.
    """

    def to_platform(
        self,
        envelope: InboundEnvelope,
        context: TranslationContext | None = None,
    ) -> OutboundMessage:
        """
        Translate an inbound Z-API envelope into a Chatwoot message.

        Raises:
            TranslationError: a content handler failed on an unexpected shape
        """
        context = context or TranslationContext()
        content = classify_content(envelope)
        message_type = envelope.type or content.kind.value

        try:
            return self._build(envelope, content, context)
        except TranslationError:
            raise
        except Exception as e:
            logger.error(
                f"Failed to translate message {envelope.message_id}: {e}",
                extra={
                    "message_id": envelope.message_id,
                    "message_type": message_type,
                    "content_kind": content.kind.value,
                    "correlation_id": context.correlation_id,
                    "payload": redact_phones(envelope.to_payload()),
                },
                exc_info=True,
            )
            raise TranslationError(envelope.message_id, message_type, cause=e) from e

    def _build(
        self,
        envelope: InboundEnvelope,
        content: ClassifiedContent,
        context: TranslationContext,
    ) -> OutboundMessage:
        provenance: dict[str, Any] = _drop_none({
            "message_id": envelope.message_id,
            "instance_id": envelope.instance_id,
            "timestamp": envelope.moment,
            "phone": envelope.phone,
            "sender_name": envelope.sender_name,
            "chat_name": envelope.chat_name,
            "is_group": envelope.is_group,
            "content_kind": content.kind.value,
        })
        metadata: dict[str, Any] = {"source": SOURCE_TAG, "zapi": provenance}

        handler = CONTENT_HANDLERS.get(content.kind)
        if handler is None:
            unsupported_type = envelope.type or "unknown"
            logger.warning(
                f"Unsupported Z-API message type: {unsupported_type}",
                extra={"message_id": envelope.message_id, "correlation_id": context.correlation_id},
            )
            translated = _Translated(content=f"[Unsupported message type: {unsupported_type}]")
            provenance["unsupported_type"] = unsupported_type
            provenance["unrecognized_fields"] = unrecognized_fields(envelope)
        else:
            translated = handler(content)

        if translated.info_key and translated.info:
            provenance[translated.info_key] = translated.info

        text = translated.content
        reply = detect_reply(envelope)
        if reply is not None:
            metadata["in_reply_to_external_id"] = reply.external_id
            provenance["reply_source"] = reply.source
            if not text.strip():
                text = reply.prefix() or text

        if not text.strip():
            text = EMPTY_MESSAGE

        return OutboundMessage(
            content=text,
            direction=Direction.OUTGOING if envelope.from_me else Direction.INCOMING,
            content_type=content.kind,
            attachments=[translated.attachment] if translated.attachment else [],
            metadata=metadata,
            dedupe_token=envelope.message_id or None,
        )

    def to_provider(
        self,
        message: PlatformMessage,
        context: TranslationContext | None = None,
    ) -> ProviderSendRequest:
        """
        Translate a Chatwoot message into a Z-API send request.

        The first attachment decides the endpoint; without attachments the
        message goes out as text.
        """
        context = context or TranslationContext()
        body: dict[str, Any] = {}
        if context.phone:
            body["phone"] = context.phone
        reply_to = message.content_attributes.get("in_reply_to_external_id")
        if reply_to:
            body["messageId"] = reply_to

        content = message.content or ""
        if not message.attachments:
            return ProviderSendRequest(path="send-text", body={**body, "message": content or EMPTY_MESSAGE})

        attachment = message.attachments[0]
        file_type = str(attachment.get("file_type", ""))
        kind = FILE_TYPE_TO_KIND.get(file_type)
        url = attachment.get("data_url")
        path = PROVIDER_SEND_PATHS.get(kind) if kind else None

        if path is None or not url:
            logger.warning(
                f"Unsupported attachment type for Z-API: {file_type}",
                extra={"message_id": message.id, "correlation_id": context.correlation_id},
            )
            return ProviderSendRequest(path="send-text", body={**body, "message": content or EMPTY_MESSAGE})

        if kind == AttachmentKind.IMAGE:
            body["image"] = url
            if content:
                body["caption"] = content
        elif kind == AttachmentKind.AUDIO:
            body["audio"] = url
        elif kind == AttachmentKind.VIDEO:
            body["video"] = url
            if content:
                body["caption"] = content
        else:
            file_name = (
                message.content_attributes.get("filename")
                or attachment.get("file_name")
                or DEFAULT_DOCUMENT_NAME
            )
            body["document"] = url
            body["fileName"] = file_name
            if content:
                body["caption"] = content
            extension = _document_extension(file_name, url)
            if extension:
                path = f"{path}/{extension}"

        return ProviderSendRequest(path=path, body=body)
