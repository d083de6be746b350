"""
Relay Webhook Service

FastAPI app that receives Z-API webhooks and queues them for the relay
worker.

Responsibilities:
- Limit requests per client (Redis fixed window, 429 when exceeded)
- Check the optional webhook token
- Validate the payload (strict schema, then permissive fallback)
- Drop messages sent by the connected number itself (fromMe)
- Enqueue a delivery job and return 200 quickly

Once a webhook is answered with 200, nothing that happens downstream is
reported back to Z-API.
"""

import json
import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from basecore.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    get_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from basecore.logging import setup_logging
from basecore.rate_limit import FixedWindowRateLimiter, RateLimitExceeded
from basecore.redaction import mask_phone
from basecore.redis import close_redis_client, get_redis_client, ping
from basecore.settings import Settings, get_settings

from chatwoot_relay.contracts.envelope import InboundEnvelope, utcnow
from chatwoot_relay.contracts.job_types import PRIORITY_STATUS, JobKind, message_priority
from chatwoot_relay.errors import ValidationError
from chatwoot_relay.providers.zapi.validation import validate_received_message, validate_status_update
from chatwoot_relay.providers.zapi.webhook import validate_webhook_token
from chatwoot_relay.queue.delivery_queue import DeliveryQueue
from chatwoot_relay.runtime import build_queue

setup_logging()
logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return utcnow().isoformat()


def _request_correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or get_correlation_id()


def _error_body(request: Request, error: str, message: str, **extra: Any) -> dict[str, Any]:
    return {
        "error": error,
        "message": message,
        **extra,
        "correlationId": _request_correlation_id(request),
        "timestamp": _timestamp(),
        "path": request.url.path,
    }


async def _read_json(request: Request) -> Any:
    body = await request.body()
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Invalid JSON payload")
        raise ValidationError(
            "Invalid JSON",
            errors=[{"field": "", "message": "Body is not valid JSON", "type": "json_invalid"}],
        )


def create_app(queue: DeliveryQueue | None = None, settings: Settings | None = None) -> FastAPI:
    """
    Create the webhook app.

    Args:
        queue: Delivery queue to enqueue into (built from settings on startup if None)
        settings: Settings override
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Relay Webhook",
        description="Receives Z-API webhooks and queues them for delivery to Chatwoot",
        version="1.0.0",
    )
    app.state.settings = settings
    app.state.queue = queue
    app.state.rate_limiter = None

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        request.state.correlation_id = cid
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        logger.warning(
            f"Rejected webhook: {exc.message}",
            extra={"path": request.url.path, "errors": exc.errors},
        )
        return JSONResponse(
            status_code=400,
            content=_error_body(request, "ValidationError", exc.message, details=exc.errors),
        )

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        decision = exc.decision
        logger.warning(
            f"Rate limit exceeded for {exc.client_id}",
            extra={"path": request.url.path, "limit": decision.limit},
        )
        return JSONResponse(
            status_code=429,
            content=_error_body(
                request,
                "TooManyRequests",
                "Rate limit exceeded. Try again later.",
                retryAfter=decision.retry_after,
            ),
            headers={
                "Retry-After": str(decision.retry_after),
                "RateLimit-Limit": str(decision.limit),
                "RateLimit-Remaining": str(decision.remaining),
                "RateLimit-Reset": str(decision.retry_after),
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            f"Unhandled error on {request.url.path}: {exc}",
            extra={"path": request.url.path},
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content=_error_body(request, "InternalServerError", "Internal server error"),
            headers={CORRELATION_ID_HEADER: _request_correlation_id(request)},
        )

    @app.on_event("startup")
    async def startup():
        if app.state.queue is None:
            app.state.queue = build_queue(settings, get_redis_client())
        logger.info(f"Relay webhook service started (queue={app.state.queue.name})")

    @app.on_event("shutdown")
    async def shutdown():
        await close_redis_client()

    def rate_limiter() -> FixedWindowRateLimiter:
        if app.state.rate_limiter is None:
            app.state.rate_limiter = FixedWindowRateLimiter(
                app.state.queue.redis,
                limit=settings.webhook_rate_limit,
                window_seconds=settings.webhook_rate_window_seconds,
            )
        return app.state.rate_limiter

    async def check_rate_limit(request: Request) -> None:
        client_id = request.client.host if request.client else "unknown"
        await rate_limiter().check(client_id)

    def check_token(request: Request) -> None:
        if not settings.zapi_webhook_token:
            return
        if not validate_webhook_token(dict(request.headers), settings.zapi_webhook_token):
            logger.warning("Invalid Z-API webhook token", extra={"path": request.url.path})
            raise HTTPException(status_code=403, detail="Invalid webhook token")

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        redis_ok = await ping(app.state.queue.redis) if app.state.queue is not None else False
        return {
            "status": "healthy" if redis_ok else "degraded",
            "service": "relay-webhook",
            "redis": redis_ok,
            "timestamp": _timestamp(),
        }

    @app.post("/webhook/zapi/message-received")
    async def message_received(request: Request):
        """
        Receive an on-message-received webhook.

        Flow:
        1. Rate limit, then validate token and payload
        2. Ignore fromMe messages
        3. Enqueue process-message (1:1 before groups)
        4. Return 200 immediately
        """
        await check_rate_limit(request)
        check_token(request)
        payload = await _read_json(request)

        result = validate_received_message(payload)
        result.raise_for_errors()

        correlation_id = get_correlation_id()
        message_id = result.payload.get("messageId")

        if result.from_me:
            logger.debug(f"Ignoring fromMe message {message_id}")
            return {
                "accepted": True,
                "ignored": True,
                "reason": "from_me",
                "correlationId": correlation_id,
                "timestamp": _timestamp(),
            }

        is_group = InboundEnvelope.from_payload(result.payload).is_group
        job = await app.state.queue.enqueue(
            JobKind.PROCESS_MESSAGE,
            result.payload,
            correlation_id=correlation_id,
            priority=message_priority(is_group),
        )

        logger.info(
            f"Queued message {message_id}",
            extra={
                "job_id": job.job_id,
                "phone": mask_phone(str(result.payload.get("phone", ""))),
                "is_group": is_group,
                "tier": result.tier.value if result.tier else None,
            },
        )
        return {
            "accepted": True,
            "correlationId": correlation_id,
            "timestamp": _timestamp(),
            "jobId": job.job_id,
        }

    @app.post("/webhook/zapi/message-status")
    async def message_status(request: Request):
        """
        Receive an on-message-status webhook.

        Status jobs are delayed so they land after the message they describe.
        """
        await check_rate_limit(request)
        check_token(request)
        payload = await _read_json(request)

        result = validate_status_update(payload)
        result.raise_for_errors()

        correlation_id = get_correlation_id()
        job = await app.state.queue.enqueue(
            JobKind.PROCESS_STATUS,
            result.payload,
            correlation_id=correlation_id,
            priority=PRIORITY_STATUS,
            delay_ms=settings.status_job_delay_ms,
        )

        logger.debug(
            f"Queued status {result.payload.get('status')} for message {result.payload.get('messageId')}",
            extra={"job_id": job.job_id},
        )
        return {
            "accepted": True,
            "correlationId": correlation_id,
            "timestamp": _timestamp(),
            "jobId": job.job_id,
        }

    @app.get("/webhook/zapi/queue-status")
    async def queue_status():
        """Job counts per state."""
        return {
            **(await app.state.queue.stats()),
            "timestamp": _timestamp(),
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
