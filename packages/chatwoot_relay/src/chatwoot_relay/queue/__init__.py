"""
Delivery queue and worker pools.
"""

from chatwoot_relay.queue.delivery_queue import DeliveryQueue
from chatwoot_relay.queue.worker import WorkerPool, is_retryable

__all__ = ["DeliveryQueue", "WorkerPool", "is_retryable"]
