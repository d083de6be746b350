"""
Identity routing: participant -> Chatwoot contact and conversation.
"""

from chatwoot_relay.routing.identity_cache import IdentityCache
from chatwoot_relay.routing.identity_resolver import IdentityResolver
from chatwoot_relay.routing.locks import ParticipantLock

__all__ = ["IdentityCache", "IdentityResolver", "ParticipantLock"]
