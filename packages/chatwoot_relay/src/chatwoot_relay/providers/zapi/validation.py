"""
Z-API Webhook Validation

Two-tier validation for received messages: the strict schema first, the
permissive fallback second. The outcome is returned as a ValidationResult
instead of being signalled with exceptions, so callers branch on it.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from chatwoot_relay.contracts.envelope import as_bool
from chatwoot_relay.errors import ValidationError
from chatwoot_relay.providers.zapi.schemas import (
    ZApiMessageSchema,
    ZApiMinimalSchema,
    ZApiStatusSchema,
)

logger = logging.getLogger(__name__)


class ValidationTier(str, Enum):
    STRICT = "strict"
    PERMISSIVE = "permissive"


@dataclass
class ValidationResult:
    """
    Outcome of validating a webhook body.

    Attributes:
        ok: True if any tier accepted the payload
        tier: Which tier accepted it (None when rejected)
        payload: The original payload, unchanged
        errors: Errors from the last tier tried
        strict_errors: Errors from the strict tier (kept for logging when the fallback accepts)
    """

    ok: bool
    payload: dict[str, Any]
    tier: ValidationTier | None = None
    errors: list[dict[str, Any]] = field(default_factory=list)
    strict_errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def from_me(self) -> bool:
        return as_bool(self.payload.get("fromMe"))

    def raise_for_errors(self) -> None:
        """Raise ValidationError if the payload was rejected."""
        if not self.ok:
            raise ValidationError(_summarize(self.errors), errors=self.errors)


def _schema_errors(schema: type[BaseModel], payload: Any) -> list[dict[str, Any]]:
    """Validate against one schema and return its errors (empty when valid)."""
    try:
        schema.model_validate(payload)
    except PydanticValidationError as e:
        return [
            {
                "field": ".".join(str(part) for part in err["loc"]),
                "message": err["msg"],
                "type": err["type"],
            }
            for err in e.errors()
        ]
    return []


def _summarize(errors: list[dict[str, Any]]) -> str:
    if not errors:
        return "Invalid payload"
    return "; ".join(f"{e['field'] or 'body'}: {e['message']}" for e in errors)


def validate_received_message(payload: Any) -> ValidationResult:
    """
    Validate an on-message-received webhook body.

    Strict schema first; if it rejects, the permissive schema. Only when
    both reject is the result not ok.
    """
    if not isinstance(payload, dict):
        return ValidationResult(
            ok=False,
            payload={},
            errors=[{"field": "", "message": "Body must be a JSON object", "type": "dict_type"}],
        )

    strict_errors = _schema_errors(ZApiMessageSchema, payload)
    if not strict_errors:
        return ValidationResult(ok=True, payload=payload, tier=ValidationTier.STRICT)

    permissive_errors = _schema_errors(ZApiMinimalSchema, payload)
    if not permissive_errors:
        logger.warning(
            "Strict validation failed, accepted by permissive schema",
            extra={
                "message_id": payload.get("messageId"),
                "errors": [e["field"] for e in strict_errors],
            },
        )
        return ValidationResult(
            ok=True,
            payload=payload,
            tier=ValidationTier.PERMISSIVE,
            strict_errors=strict_errors,
        )

    return ValidationResult(
        ok=False,
        payload=payload,
        errors=permissive_errors,
        strict_errors=strict_errors,
    )


def validate_status_update(payload: Any) -> ValidationResult:
    """Validate an on-message-status webhook body."""
    if not isinstance(payload, dict):
        return ValidationResult(
            ok=False,
            payload={},
            errors=[{"field": "", "message": "Body must be a JSON object", "type": "dict_type"}],
        )

    errors = _schema_errors(ZApiStatusSchema, payload)
    if errors:
        return ValidationResult(ok=False, payload=payload, errors=errors)
    return ValidationResult(ok=True, payload=payload, tier=ValidationTier.STRICT)
