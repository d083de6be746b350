"""
Delivery Job Types

Job kinds, job states and default priorities for the delivery queue.
"""

from enum import Enum


class JobKind(str, Enum):
    """
    Kinds of work the delivery queue carries.

    - PROCESS_MESSAGE: relay one inbound Z-API message into Chatwoot
    - PROCESS_STATUS: record a delivery status update for a sent message
    """

    PROCESS_MESSAGE = "process-message"
    PROCESS_STATUS = "process-status"

    def __str__(self) -> str:
        return self.value


class JobState(str, Enum):
    """Lifecycle states of a delivery job."""

    QUEUED = "queued"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


# Larger value is claimed first
PRIORITY_DIRECT_MESSAGE = 10
PRIORITY_GROUP_MESSAGE = 5
PRIORITY_STATUS = 3


def message_priority(is_group: bool) -> int:
    """Priority for a message job: 1:1 chats ahead of group chats."""
    return PRIORITY_GROUP_MESSAGE if is_group else PRIORITY_DIRECT_MESSAGE
