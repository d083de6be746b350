"""
Integration tests for the relay webhook app.

Covers intake: validation, fromMe filtering, job priorities and error
responses.
"""

import json

from fastapi.testclient import TestClient

from basecore.correlation import CORRELATION_ID_HEADER
from basecore.settings import Settings

from chatwoot_relay.contracts.job_types import JobKind
from relay_webhook.main import create_app

RECEIVED = "/webhook/zapi/message-received"
STATUS = "/webhook/zapi/message-status"


class TestMessageReceived:
    """Tests for POST /webhook/zapi/message-received."""

    def test_accepts_and_queues(self, client, queue, redis_client, message_payload):
        """A valid message is queued and acknowledged."""
        response = client.post(RECEIVED, json=message_payload)

        assert response.status_code == 200
        body = response.json()
        assert body["accepted"] is True
        assert body["jobId"]
        assert body["correlationId"] == response.headers[CORRELATION_ID_HEADER]

        stats = client.get("/webhook/zapi/queue-status").json()
        assert stats["waiting"] == 1

    def test_correlation_id_propagated(self, client, message_payload):
        """An incoming correlation id is reused."""
        response = client.post(RECEIVED, json=message_payload, headers={CORRELATION_ID_HEADER: "corr-abc"})

        assert response.json()["correlationId"] == "corr-abc"
        assert response.headers[CORRELATION_ID_HEADER] == "corr-abc"

    def test_from_me_ignored(self, client, message_payload):
        """Own messages are acknowledged and never queued."""
        response = client.post(RECEIVED, json={**message_payload, "fromMe": True})

        assert response.status_code == 200
        assert response.json()["ignored"] is True
        assert "jobId" not in response.json()

        stats = client.get("/webhook/zapi/queue-status").json()
        assert stats["waiting"] == 0
        assert stats["delayed"] == 0

    def test_from_me_string_form_ignored(self, client, message_payload):
        """A string "1" fromMe is an own message too."""
        response = client.post(RECEIVED, json={**message_payload, "fromMe": "1"})

        assert response.json()["ignored"] is True
        assert client.get("/webhook/zapi/queue-status").json()["waiting"] == 0

    def test_priorities(self, client, queue, redis_client, message_payload, group_payload):
        """1:1 messages outrank group messages."""
        group = client.post(RECEIVED, json=group_payload).json()
        direct = client.post(RECEIVED, json=message_payload).json()

        jobs = {
            job_id: json.loads(raw)
            for job_id, raw in redis_client.hashes[queue.jobs_key].items()
        }
        assert jobs[direct["jobId"]]["priority"] == 10
        assert jobs[group["jobId"]]["priority"] == 5
        assert jobs[direct["jobId"]]["kind"] == "process-message"

    def test_permissive_payload_accepted(self, client, message_payload):
        """A content shape the strict schema rejects still gets in."""
        payload = {**message_payload, "location": {"latitude": "somewhere"}}

        response = client.post(RECEIVED, json=payload)

        assert response.status_code == 200
        assert response.json()["accepted"] is True

    def test_missing_fields(self, client):
        """Without messageId and phone the webhook is rejected."""
        response = client.post(RECEIVED, json={"instanceId": "I", "fromMe": False})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "ValidationError"
        assert {d["field"] for d in body["details"]} >= {"messageId", "phone"}
        assert body["path"] == RECEIVED
        assert body["correlationId"]

    def test_invalid_json(self, client):
        """A body that is not JSON is rejected."""
        response = client.post(RECEIVED, content=b"{not json", headers={"content-type": "application/json"})

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid JSON"

    def test_queue_down(self, client, redis_client, message_payload):
        """A failing queue yields a 500 without internals."""
        redis_client.fail = True

        response = client.post(RECEIVED, json=message_payload, headers={CORRELATION_ID_HEADER: "corr-500"})

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "InternalServerError"
        assert body["message"] == "Internal server error"
        assert body["correlationId"] == "corr-500"
        assert "Traceback" not in response.text
        assert "Connection refused" not in response.text


class TestWebhookToken:
    """Tests for the optional shared secret."""

    def _client(self, queue):
        settings = Settings(zapi_webhook_token="s3cret", log_format="text")
        return TestClient(create_app(queue=queue, settings=settings))

    def test_missing_token(self, queue, message_payload):
        """Without the token the webhook is refused."""
        response = self._client(queue).post(RECEIVED, json=message_payload)

        assert response.status_code == 403

    def test_client_token_header(self, queue, message_payload):
        """The client-token header is accepted."""
        response = self._client(queue).post(RECEIVED, json=message_payload, headers={"client-token": "s3cret"})

        assert response.status_code == 200


class TestMessageStatus:
    """Tests for POST /webhook/zapi/message-status."""

    def test_status_delayed(self, client, queue, status_payload):
        """Status jobs wait before they become claimable."""
        response = client.post(STATUS, json=status_payload)

        assert response.status_code == 200
        stats = client.get("/webhook/zapi/queue-status").json()
        assert stats["by_kind"][str(JobKind.PROCESS_STATUS)]["delayed"] == 1
        assert stats["waiting"] == 0

    def test_missing_status(self, client, status_payload):
        """A status event without a status is rejected."""
        payload = {k: v for k, v in status_payload.items() if k != "status"}

        response = client.post(STATUS, json=payload)

        assert response.status_code == 400


class TestHealth:
    """Tests for GET /health."""

    def test_healthy(self, client):
        """Reachable Redis reports healthy."""
        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["service"] == "relay-webhook"
        assert body["redis"] is True

    def test_degraded(self, client, redis_client):
        """Unreachable Redis reports degraded, not an error."""
        redis_client.fail = True

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"


class TestRateLimit:
    """Tests for per-client webhook rate limiting."""

    def _client(self, queue, limit=2):
        settings = Settings(webhook_rate_limit=limit, webhook_rate_window_seconds=60, log_format="text")
        return TestClient(create_app(queue=queue, settings=settings), raise_server_exceptions=False)

    def test_over_limit_refused(self, queue, message_payload):
        """Requests past the limit get 429 and are not queued."""
        client = self._client(queue)

        responses = [
            client.post(RECEIVED, json={**message_payload, "messageId": f"M{n}"})
            for n in range(3)
        ]

        assert [r.status_code for r in responses] == [200, 200, 429]
        refused = responses[2]
        assert refused.json()["error"] == "TooManyRequests"
        assert refused.json()["correlationId"] == refused.headers[CORRELATION_ID_HEADER]
        assert 0 < int(refused.headers["Retry-After"]) <= 60
        assert refused.headers["RateLimit-Remaining"] == "0"
        assert client.get("/webhook/zapi/queue-status").json()["waiting"] == 2

    def test_routes_share_budget(self, queue, message_payload, status_payload):
        """Message and status webhooks count against one budget."""
        client = self._client(queue, limit=1)

        assert client.post(RECEIVED, json=message_payload).status_code == 200
        assert client.post(STATUS, json=status_payload).status_code == 429

    def test_zero_disables(self, queue, message_payload):
        """A limit of 0 turns rate limiting off."""
        client = self._client(queue, limit=0)

        codes = {
            client.post(RECEIVED, json={**message_payload, "messageId": f"M{n}"}).status_code
            for n in range(5)
        }

        assert codes == {200}
