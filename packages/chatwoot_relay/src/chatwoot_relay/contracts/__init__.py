"""
Relay Contracts

Envelopes, job types and payload models shared by intake, worker and CLI.
"""

from chatwoot_relay.contracts.envelope import DeliveryJob, InboundEnvelope, normalize_participant_id
from chatwoot_relay.contracts.job_types import JobKind, JobState, message_priority
from chatwoot_relay.contracts.payloads import (
    Attachment,
    AttachmentKind,
    ContentKind,
    Direction,
    IdentityMapping,
    OutboundMessage,
    PlatformMessage,
    ProviderSendRequest,
)

__all__ = [
    "DeliveryJob",
    "InboundEnvelope",
    "normalize_participant_id",
    "JobKind",
    "JobState",
    "message_priority",
    "Attachment",
    "AttachmentKind",
    "ContentKind",
    "Direction",
    "IdentityMapping",
    "OutboundMessage",
    "PlatformMessage",
    "ProviderSendRequest",
]
