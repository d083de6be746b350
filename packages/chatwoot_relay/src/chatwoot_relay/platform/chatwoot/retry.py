"""Retry policy for Chatwoot API calls."""

from dataclasses import dataclass

import httpx

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


@dataclass
class RetryPolicy:
    """
    Configuration for retry behavior.

    Attempt n (1-based) that fails is followed by a wait of
    ``base_delay * exponential_base ** (n - 1)`` seconds, except after the
    last attempt. A 429 waits ``rate_limit_cooldown`` (or the server's
    Retry-After, capped at ``max_delay``) instead.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    exponential_base: float = 2.0
    max_delay: float = 60.0
    rate_limit_cooldown: float = 5.0

    def backoff_delay(self, attempt: int) -> float:
        """Calculate exponential backoff delay."""
        delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        return min(delay, self.max_delay)

    def rate_limit_delay(self, response: httpx.Response | None = None) -> float:
        """Cooldown after a 429, honoring a numeric Retry-After header."""
        if response is not None:
            retry_after = response.headers.get("Retry-After")
            if retry_after and retry_after.strip().replace(".", "", 1).isdigit():
                return min(float(retry_after), self.max_delay)
        return self.rate_limit_cooldown

    def is_retryable_status(self, status_code: int) -> bool:
        return status_code in RETRYABLE_STATUS_CODES or status_code >= 500
