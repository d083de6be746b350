"""
Pytest fixtures for relay tests.
"""

import pytest

from chatwoot_stub import ChatwootStub
from memory_redis import InMemoryRedis


@pytest.fixture
def redis_client():
    """In-memory async Redis."""
    return InMemoryRedis()


@pytest.fixture
def chatwoot():
    """In-process Chatwoot API."""
    return ChatwootStub()


@pytest.fixture
def sample_phone():
    """Sample participant phone number."""
    return "5511999999999"


@pytest.fixture
def text_payload(sample_phone):
    """Z-API on-message-received webhook for a 1:1 text message."""
    return {
        "instanceId": "INSTANCE_1",
        "messageId": "M1",
        "phone": sample_phone,
        "fromMe": False,
        "momment": 1704067200000,
        "status": "RECEIVED",
        "chatName": "Maria Silva",
        "senderName": "Maria",
        "senderPhoto": None,
        "isGroup": False,
        "type": "ReceivedCallback",
        "text": {"message": "hi"},
    }


@pytest.fixture
def document_payload(sample_phone):
    """Document message without a file name."""
    return {
        "instanceId": "INSTANCE_1",
        "messageId": "M-DOC",
        "phone": sample_phone,
        "fromMe": False,
        "momment": 1704067200000,
        "isGroup": False,
        "type": "ReceivedCallback",
        "document": {"documentUrl": "https://files.example.com/download?id=abc"},
    }


@pytest.fixture
def status_payload(sample_phone):
    """Z-API on-message-status webhook."""
    return {
        "instanceId": "INSTANCE_1",
        "messageId": "M1",
        "phone": sample_phone,
        "status": "READ",
        "momment": 1704067260000,
        "isGroup": False,
        "type": "MessageStatusCallback",
    }
