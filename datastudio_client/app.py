"""Embedded FastAPI listener for DataStudio webhook callbacks.

Endpoints:
- POST /webhooks/ready: document.ready_for_review
- POST /webhooks/completed: document.completed
- POST /webhooks/{event_type}: any other event type
- GET  /liveness: Health check
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from datastudio_client.errors import DataStudioError, ErrorKind
from datastudio_client.logging_config import generate_request_id
from datastudio_client.models import ErrorResponse, HealthResponse, WebhookAck
from datastudio_client.pending import PendingResultRegistry
from datastudio_client.webhooks import EVENT_COMPLETED, EVENT_READY_FOR_REVIEW, WebhookDispatcher

logger = logging.getLogger(__name__)

_MAX_BODY_BYTES = 1024 * 1024  # 1 MB


async def _sweep_forever(registry: PendingResultRegistry, max_age: float, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        registry.sweep(max_age)


def create_app(
    dispatcher: WebhookDispatcher,
    *,
    registry: PendingResultRegistry | None = None,
    waiter_max_age: float = 3600.0,
    sweep_interval: float = 60.0,
    rate_limit: str = "120/minute",
) -> FastAPI:
    """Build a listener app bound to ``dispatcher``.

    When ``registry`` is given, abandoned waiters older than
    ``waiter_max_age`` are swept every ``sweep_interval`` seconds.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        sweeper = None
        if registry is not None:
            sweeper = asyncio.create_task(_sweep_forever(registry, waiter_max_age, sweep_interval))
        logger.info("Webhook listener started")
        yield
        if sweeper is not None:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
        logger.info("Webhook listener stopped")

    app = FastAPI(title="DataStudio Webhook Listener", version="0.1.0", lifespan=lifespan)

    # -- Rate limiting --------------------------------------------------------

    limiter = Limiter(key_func=get_remote_address)
    app.state.limiter = limiter

    @app.exception_handler(RateLimitExceeded)
    async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"})

    # -- Middleware -----------------------------------------------------------

    @app.middleware("http")
    async def body_size_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
        """Reject requests with bodies exceeding the size limit."""
        content_length = request.headers.get("content-length")
        if content_length is not None and not content_length.isdigit():
            return JSONResponse(status_code=400, content={"detail": "Invalid content-length header"})
        if content_length is not None and int(content_length) > _MAX_BODY_BYTES:
            return JSONResponse(status_code=413, content={"detail": "Request body too large"})
        return await call_next(request)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
        """Attach a unique request ID for trace correlation."""
        request_id = request.headers.get("x-request-id") or generate_request_id()
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["x-request-id"] = request_id
        return response

    # -- Webhooks -------------------------------------------------------------

    async def _handle(request: Request, event_type: str) -> JSONResponse:
        payload = await request.body()
        logger.debug("Received %s webhook, raw payload: %s", event_type, payload[:2000])
        try:
            # Handlers are synchronous and may block; keep them off the event loop.
            handled = await asyncio.to_thread(dispatcher.dispatch, event_type, payload)
        except DataStudioError as e:
            if e.kind is ErrorKind.MALFORMED_PAYLOAD:
                status_code = 400
            else:
                logger.error("Error processing webhook: %s", e.message)
                status_code = 500
            body = ErrorResponse(detail=f"Error processing webhook: {e.message}", event_type=event_type)
            return JSONResponse(status_code=status_code, content=body.model_dump())

        if not handled:
            body = ErrorResponse(detail=f"No handler registered for event: {event_type}", event_type=event_type)
            return JSONResponse(status_code=404, content=body.model_dump())
        return JSONResponse(status_code=200, content=WebhookAck(event_type=event_type).model_dump())

    @app.post("/webhooks/ready", response_model=WebhookAck)
    @limiter.limit(rate_limit)
    async def ready_for_review(request: Request) -> JSONResponse:
        return await _handle(request, EVENT_READY_FOR_REVIEW)

    @app.post("/webhooks/completed", response_model=WebhookAck)
    @limiter.limit(rate_limit)
    async def completed(request: Request) -> JSONResponse:
        return await _handle(request, EVENT_COMPLETED)

    @app.post("/webhooks/{event_type}", response_model=WebhookAck)
    @limiter.limit(rate_limit)
    async def other_event(request: Request, event_type: str) -> JSONResponse:
        return await _handle(request, event_type)

    # -- Health ---------------------------------------------------------------

    @app.get("/liveness", response_model=HealthResponse)
    async def liveness() -> HealthResponse:
        return HealthResponse(
            status="ok",
            pending_results=len(registry) if registry is not None else None,
        )

    return app
