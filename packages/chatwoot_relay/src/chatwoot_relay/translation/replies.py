"""
Reply Detection

Z-API has reported quoted replies in several shapes over time. They are
checked in a fixed order; the first shape that yields a message id wins.
"""

from dataclasses import dataclass
from typing import Any

from chatwoot_relay.contracts.envelope import InboundEnvelope
from chatwoot_relay.translation.content import FieldPath, resolve_alias

# Structured reply shapes, after the bare referenceMessageId field
REPLY_SHAPES = ("quotedMessage", "replyMessage", "quotedMsg", "contextInfo")

REPLY_ID_PATHS: tuple[FieldPath, ...] = (
    ("messageId",),
    ("id",),
    ("stanzaId",),
    ("quotedMessageId",),
)

REPLY_TEXT_PATHS: tuple[FieldPath, ...] = (
    ("body",),
    ("message",),
    ("caption",),
    ("text",),
    ("conversation",),
    ("quotedMessage", "conversation"),
    ("quotedMessage", "extendedTextMessage", "text"),
)

REPLY_AUTHOR_PATHS: tuple[FieldPath, ...] = (
    ("senderName",),
    ("participant",),
    ("author",),
)


@dataclass
class ReplyInfo:
    """Reference to the message being replied to."""

    external_id: str
    source: str
    quoted_text: str | None = None
    quoted_author: str | None = None

    def prefix(self) -> str | None:
        """Human-readable quote line, when the quoted text is known."""
        if not self.quoted_text:
            return None
        who = self.quoted_author or "message"
        return f'In reply to {who}: "{self.quoted_text}"'


def _shape(envelope: InboundEnvelope, name: str) -> dict[str, Any] | None:
    value = envelope.get(name)
    return value if isinstance(value, dict) and value else None


def _quoted_details(envelope: InboundEnvelope) -> tuple[str | None, str | None]:
    """Quoted text and author from the first shape that has them."""
    for name in REPLY_SHAPES:
        shape = _shape(envelope, name)
        if shape is None:
            continue
        text = resolve_alias(shape, REPLY_TEXT_PATHS)
        if isinstance(text, str) and text:
            author = resolve_alias(shape, REPLY_AUTHOR_PATHS)
            return text, str(author) if author else None
    return None, None


def detect_reply(envelope: InboundEnvelope) -> ReplyInfo | None:
    """
    Find the message an envelope replies to.

    Order: referenceMessageId, quotedMessage, replyMessage, quotedMsg,
    contextInfo.
    """
    reference_id = envelope.get("referenceMessageId")
    if reference_id:
        text, author = _quoted_details(envelope)
        return ReplyInfo(
            external_id=str(reference_id),
            source="referenceMessageId",
            quoted_text=text,
            quoted_author=author,
        )

    for name in REPLY_SHAPES:
        shape = _shape(envelope, name)
        if shape is None:
            continue
        external_id = resolve_alias(shape, REPLY_ID_PATHS)
        if not external_id:
            continue
        text = resolve_alias(shape, REPLY_TEXT_PATHS)
        author = resolve_alias(shape, REPLY_AUTHOR_PATHS)
        return ReplyInfo(
            external_id=str(external_id),
            source=name,
            quoted_text=text if isinstance(text, str) and text else None,
            quoted_author=str(author) if author else None,
        )

    return None
