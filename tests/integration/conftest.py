"""
Pytest configuration for integration tests.

The webhook app runs against an in-memory Redis and the worker side
against an in-process Chatwoot, so no external services are needed.
"""

import os

import pytest
from fastapi.testclient import TestClient

# Set environment variables before any app module reads settings
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("LOG_FORMAT", "text")

from basecore.settings import Settings  # noqa: E402

from chatwoot_relay.queue.delivery_queue import DeliveryQueue  # noqa: E402
from chatwoot_stub import ChatwootStub  # noqa: E402
from memory_redis import InMemoryRedis  # noqa: E402
from relay_webhook.main import create_app  # noqa: E402


@pytest.fixture
def settings():
    return Settings(
        redis_url="redis://localhost:6379/15",
        zapi_webhook_token="",
        status_job_delay_ms=1000,
        log_format="text",
    )


@pytest.fixture
def redis_client():
    return InMemoryRedis()


@pytest.fixture
def chatwoot():
    return ChatwootStub()


@pytest.fixture
def queue(redis_client):
    return DeliveryQueue(redis_client)


@pytest.fixture
def app(queue, settings):
    return create_app(queue=queue, settings=settings)


@pytest.fixture
def client(app):
    """Test client; server errors come back as responses."""
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def message_payload():
    return {
        "instanceId": "INSTANCE_1",
        "messageId": "3EB0C767D26A1D6F5E",
        "phone": "5511999999999",
        "fromMe": False,
        "momment": 1704067200000,
        "status": "RECEIVED",
        "chatName": "Maria Silva",
        "senderName": "Maria",
        "isGroup": False,
        "type": "ReceivedCallback",
        "text": {"message": "Olá, tudo bem?"},
    }


@pytest.fixture
def group_payload(message_payload):
    return {
        **message_payload,
        "messageId": "GROUP-1",
        "phone": "120363019502650977-group",
        "participantPhone": "5511888888888",
        "isGroup": True,
        "chatName": "Família",
    }


@pytest.fixture
def status_payload():
    return {
        "instanceId": "INSTANCE_1",
        "messageId": "3EB0C767D26A1D6F5E",
        "phone": "5511999999999",
        "status": "READ",
        "momment": 1704067260000,
        "isGroup": False,
        "type": "MessageStatusCallback",
    }
