"""
Relay Errors

Error types raised across the relay. Each carries a ``retryable`` flag
the delivery queue uses to decide between retrying a job and failing it
terminally.
"""

from typing import Any


class RelayError(Exception):
    """Base error for the relay."""

    retryable = False

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class ValidationError(RelayError):
    """Inbound payload failed even the permissive schema."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        super().__init__(message, code="VALIDATION_ERROR", details={"errors": errors or []})
        self.errors = errors or []


class TranslationError(RelayError):
    """A content handler raised while translating a message."""

    def __init__(self, message_id: str, message_type: str, cause: Exception | None = None):
        super().__init__(
            f"Failed to translate message {message_id} of type {message_type}: {cause}",
            code="TRANSLATION_ERROR",
            details={"message_id": message_id, "message_type": message_type},
        )
        self.message_id = message_id
        self.message_type = message_type
        self.__cause__ = cause


class PlatformError(RelayError):
    """Error talking to Chatwoot."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, code=str(status_code) if status_code else "PLATFORM_ERROR", details=details)
        self.status_code = status_code


class PlatformRequestError(PlatformError):
    """Chatwoot rejected the request (4xx other than 429). Retrying will not help."""


class PlatformUnavailable(PlatformError):
    """Chatwoot kept failing after all attempts."""

    retryable = True

    def __init__(
        self,
        message: str,
        attempts: int,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, status_code=status_code, details=details)
        self.attempts = attempts


class CacheUnavailable(RelayError):
    """Redis could not be reached. Callers treat this as a cache miss."""

    retryable = True


class LockTimeout(RelayError):
    """Could not acquire the per-participant lock in time."""

    retryable = True

    def __init__(self, key: str, waited: float):
        super().__init__(f"Timed out after {waited:.1f}s waiting for lock {key}", code="LOCK_TIMEOUT")
        self.key = key
        self.waited = waited
