"""Redaction helpers for safe logging of phone numbers and credentials."""

from typing import Any, Mapping

_REDACTED = "[REDACTED]"

SENSITIVE_HEADERS = frozenset({
    "api_access_token",
    "authorization",
    "client-token",
    "apikey",
})

PHONE_FIELDS = frozenset({"phone", "participantPhone", "connectedPhone"})


def mask_phone(phone: str | None) -> str:
    """Keep the first five characters of a phone number, mask the rest."""
    if not phone:
        return ""
    return f"{phone[:5]}***"


def redact_phones(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Return a shallow copy of a webhook payload with phone fields masked."""
    return {
        key: mask_phone(str(value)) if key in PHONE_FIELDS and value else value
        for key, value in payload.items()
    }


def redact_headers(headers: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of headers with credential values replaced."""
    return {
        key: _REDACTED if key.lower() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }


def redact_secret(value: str | None) -> str:
    """Show only the last four characters of a secret."""
    if not value:
        return ""
    if len(value) <= 4:
        return _REDACTED
    return f"{_REDACTED}{value[-4:]}"
