"""
Z-API Webhook Utilities

Helper functions for processing Z-API webhooks.
"""

import hmac


def validate_webhook_token(headers: dict[str, str], expected_token: str) -> bool:
    """
    Validate the shared secret on an incoming webhook.

    Z-API can be configured to send a ``client-token`` header; a bearer
    token in ``Authorization`` is accepted as well (reverse proxies).

    Args:
        headers: Request headers
        expected_token: Configured token

    Returns:
        True if a matching token is present
    """
    lowered = {k.lower(): v for k, v in headers.items()}

    token = lowered.get("client-token", "")
    if token and hmac.compare_digest(token, expected_token):
        return True

    auth_header = lowered.get("authorization", "")
    if auth_header.startswith("Bearer "):
        bearer = auth_header[7:]
        if hmac.compare_digest(bearer, expected_token):
            return True

    return False
