"""
Translation between Z-API and Chatwoot message formats.
"""

from chatwoot_relay.translation.content import (
    ClassifiedContent,
    classify_content,
    extract_sender_name,
    generate_message_preview,
)
from chatwoot_relay.translation.replies import ReplyInfo, detect_reply
from chatwoot_relay.translation.translator import MessageTranslator, TranslationContext

__all__ = [
    "ClassifiedContent",
    "classify_content",
    "extract_sender_name",
    "generate_message_preview",
    "ReplyInfo",
    "detect_reply",
    "MessageTranslator",
    "TranslationContext",
]
