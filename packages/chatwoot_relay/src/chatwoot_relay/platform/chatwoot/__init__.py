"""
Chatwoot Platform

Async API client for Chatwoot contacts, conversations and messages.
"""

from chatwoot_relay.platform.chatwoot.client import ChatwootClient
from chatwoot_relay.platform.chatwoot.retry import RetryPolicy

__all__ = ["ChatwootClient", "RetryPolicy"]
