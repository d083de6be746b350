"""
Content Classification

Turns an InboundEnvelope into a ClassifiedContent: which content variant
it carries and the raw object for that variant. Variants are checked in a
fixed order and the first populated one wins.

Field-name drift is handled with ordered alias paths: each logical value
lists the places Z-API has been seen to put it, most authoritative first.
"""

from dataclasses import dataclass, field
from typing import Any, Sequence

from chatwoot_relay.contracts.envelope import InboundEnvelope
from chatwoot_relay.contracts.payloads import ContentKind

FieldPath = tuple[str, ...]

# (kind, top-level field names carrying it), in classification order
CONTENT_VARIANTS: tuple[tuple[ContentKind, tuple[str, ...]], ...] = (
    (ContentKind.TEXT, ("text",)),
    (ContentKind.IMAGE, ("image",)),
    (ContentKind.AUDIO, ("audio",)),
    (ContentKind.VIDEO, ("video",)),
    (ContentKind.DOCUMENT, ("document",)),
    (ContentKind.LOCATION, ("location",)),
    (ContentKind.CONTACT, ("contact", "vcard")),
    (ContentKind.STICKER, ("sticker",)),
    (ContentKind.POLL, ("poll",)),
    (ContentKind.REACTION, ("reaction",)),
    (ContentKind.BUTTON_REPLY, ("buttonResponse", "buttonsResponseMessage")),
    (ContentKind.LIST_REPLY, ("listResponse", "listResponseMessage")),
)

CONTENT_FIELDS = frozenset(name for _, names in CONTENT_VARIANTS for name in names)

REPLY_FIELDS = frozenset({
    "referenceMessageId",
    "quotedMessage",
    "replyMessage",
    "quotedMsg",
    "contextInfo",
    "isReply",
})

# Top-level fields Z-API sends that carry no content of their own
KNOWN_METADATA_FIELDS = frozenset({
    "photo",
    "broadcast",
    "isNewsletter",
    "waitingMessage",
    "isEdit",
    "isStatusReply",
    "participantPhone",
    "participantLid",
    "connectedPhone",
    "chatLid",
    "senderLid",
    "forwarded",
    "fromApi",
    "messageExpirationSeconds",
})


@dataclass
class ClassifiedContent:
    """
    Tagged content of one envelope.

    Attributes:
        kind: Content variant
        source_field: Top-level field the content came from (None when unsupported)
        data: The content object itself
    """

    kind: ContentKind
    source_field: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def lookup(self, paths: Sequence[FieldPath], default: Any = None) -> Any:
        return resolve_alias(self.data, paths, default)


def get_path(data: Any, path: FieldPath) -> Any:
    """Walk nested dicts; None if any step is missing."""
    current = data
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def resolve_alias(data: Any, paths: Sequence[FieldPath], default: Any = None) -> Any:
    """Return the first non-empty value found along the ordered paths."""
    for path in paths:
        value = get_path(data, path)
        if value is not None and value != "":
            return value
    return default


def _as_content_object(value: Any) -> dict[str, Any] | None:
    """Content variants are objects; a bare string is treated as its text."""
    if isinstance(value, dict):
        return value if value else None
    if isinstance(value, str) and value:
        return {"message": value}
    return None


def classify_content(envelope: InboundEnvelope) -> ClassifiedContent:
    """Pick the first populated content variant of an envelope."""
    for kind, names in CONTENT_VARIANTS:
        for name in names:
            data = _as_content_object(envelope.get(name))
            if data is not None:
                return ClassifiedContent(kind=kind, source_field=name, data=data)
    return ClassifiedContent(kind=ContentKind.UNSUPPORTED)


def unrecognized_fields(envelope: InboundEnvelope) -> dict[str, Any]:
    """Extras that are neither content, reply metadata nor known Z-API fields."""
    known = CONTENT_FIELDS | REPLY_FIELDS | KNOWN_METADATA_FIELDS
    return {k: v for k, v in envelope.fields.items() if k not in known}


def extract_sender_name(envelope: InboundEnvelope) -> str | None:
    """
    Pick the name to show for the sender.

    Group chats use the sender's name; 1:1 chats prefer the chat name.
    """
    sender_name = envelope.sender_name or None
    chat_name = envelope.chat_name or None

    if envelope.is_group and sender_name:
        return sender_name
    if chat_name and not envelope.is_group:
        return chat_name
    return sender_name


def generate_message_preview(envelope: InboundEnvelope, max_length: int = 100) -> str:
    """Short one-line description of a message, for logs and listings."""
    content = classify_content(envelope)
    caption = content.lookup((("caption",),))

    if content.kind == ContentKind.TEXT:
        preview = content.lookup((("message",),)) or "[Empty text]"
    elif content.kind == ContentKind.IMAGE:
        preview = caption or "[Image]"
    elif content.kind == ContentKind.VIDEO:
        preview = caption or "[Video]"
    elif content.kind == ContentKind.AUDIO:
        preview = "[Audio message]"
    elif content.kind == ContentKind.DOCUMENT:
        name = content.lookup((("fileName",), ("documentName",), ("title",)), "Unknown")
        preview = f"[Document: {name}]"
    elif content.kind == ContentKind.LOCATION:
        preview = f"[Location: {content.lookup((('description',), ('name',)), 'Shared location')}]"
    elif content.kind == ContentKind.UNSUPPORTED:
        preview = f"[{envelope.type or 'unknown'}]"
    else:
        preview = f"[{content.kind.value}]"

    preview = str(preview)
    if len(preview) > max_length:
        preview = preview[: max_length - 3] + "..."
    return preview
