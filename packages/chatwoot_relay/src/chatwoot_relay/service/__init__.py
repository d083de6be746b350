"""
Job handlers run by the relay worker.
"""

from chatwoot_relay.service.inbound_handler import InboundHandler
from chatwoot_relay.service.status_handler import StatusHandler

__all__ = ["InboundHandler", "StatusHandler"]
