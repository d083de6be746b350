"""
Z-API Provider

Webhook schemas, two-tier validation and webhook token checks for Z-API.
"""

from chatwoot_relay.providers.zapi.validation import (
    ValidationResult,
    ValidationTier,
    validate_received_message,
    validate_status_update,
)
from chatwoot_relay.providers.zapi.webhook import validate_webhook_token

__all__ = [
    "ValidationResult",
    "ValidationTier",
    "validate_received_message",
    "validate_status_update",
    "validate_webhook_token",
]
