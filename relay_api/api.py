"""
PURPOSE: FastAPI HTTP surface for the relay gateway - /sse, /api/perform and /health
SRP and DRY check: Pass - Single responsibility of HTTP routing and wiring, delegates relaying,
                   correlation and submission to the streaming and services packages
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sse_starlette import EventSourceResponse

from relay_api.config import RelaySettings
from relay_api.connection_manager import ConnectionRegistry
from relay_api.errors import MissingParameter, RelayError, UpstreamConnectionFailure, UpstreamDispatchFailure
from relay_api.logging_setup import configure_logging
from relay_api.models import APIError, HealthResponse, PerformRequest, TaskResult
from relay_api.services.backend_client import BackendClient
from relay_api.services.health_reporter import HealthReporter
from relay_api.services.task_gateway import TaskGateway
from relay_api.services.webhook_forwarder import WebhookForwarder
from relay_api.streaming.sse_sink import SSEQueueSink
from relay_api.streaming.stream_relay import StreamRelay
from relay_api.streaming.task_correlator import TaskCorrelator

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"
PERFORM_FAILED_MESSAGE = "Failed to perform action"
INVALID_BODY_MESSAGE = "Invalid request body"


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=APIError(error=message).model_dump(mode="json"))


def create_app(settings: Optional[RelaySettings] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    """
    Build the relay gateway application.

    ``transport`` replaces the network for every upstream and webhook call, tests pass an httpx.MockTransport.
    """
    settings = settings or RelaySettings.from_env()
    configure_logging(settings.log_level, settings.log_dir)

    http_client = httpx.AsyncClient(transport=transport)
    registry = ConnectionRegistry()
    correlator = TaskCorrelator(ttl_seconds=settings.result_ttl_seconds)
    backend = BackendClient(
        http_client,
        stream_url=settings.mcp_server_url,
        message_url=settings.message_url,
        connect_timeout_seconds=settings.upstream_connect_timeout_seconds,
    )
    forwarder = WebhookForwarder(http_client, settings.webhook_url, timeout_seconds=settings.webhook_timeout_seconds)
    relay = StreamRelay(backend=backend, registry=registry, correlator=correlator, forwarder=forwarder)
    gateway = TaskGateway(
        relay=relay,
        backend=backend,
        correlator=correlator,
        timeout_seconds=settings.task_timeout_seconds,
        poll_interval_seconds=settings.task_poll_interval_seconds,
    )
    health_reporter = HealthReporter(registry, correlator)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await correlator.start_housekeeping(settings.housekeeping_interval_seconds)
        logger.info(
            f"Relay gateway started. backend: {settings.mcp_server_url}, "
            f"webhook forwarding: {'on' if forwarder.enabled else 'off'}"
        )
        yield
        logger.info(
            f"Relay gateway stopping. connections: {registry.get_statistics()}, "
            f"webhook deliveries: {forwarder.delivered} delivered, {forwarder.failed} failed"
        )
        await correlator.stop_housekeeping()
        await relay.shutdown()
        await registry.shutdown()
        await http_client.aclose()
        logger.info("Relay gateway shutdown complete")

    app = FastAPI(
        title="Relay Gateway",
        description="Bridges synchronous task submission to a streaming backend",
        version=API_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.registry = registry
    app.state.correlator = correlator
    app.state.relay = relay

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return error_response(exc.status_code, exc.public_message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.errors()}")
        return error_response(400, INVALID_BODY_MESSAGE)

    @app.get("/sse")
    async def subscribe(task_id: Optional[str] = Query(None, alias="taskId")):
        """Relay the backend event stream for one task to the caller"""
        if not task_id:
            raise MissingParameter("Task ID is required")

        sink = SSEQueueSink(max_pending=settings.sse_max_pending_events)
        session = await relay.start_session(task_id, sink)

        async def event_stream():
            try:
                async for item in sink.stream():
                    yield item
            finally:
                session.cancel()

        return EventSourceResponse(event_stream(), headers={"Cache-Control": "no-cache"}, sep="\n")

    @app.post("/api/perform", response_model=TaskResult)
    async def perform(request: Optional[PerformRequest] = None):
        """Submit a task and wait for its completion signal"""
        message = request.message if request is not None else None
        try:
            return await gateway.submit(message)
        except (UpstreamConnectionFailure, UpstreamDispatchFailure) as e:
            logger.error(f"{PERFORM_FAILED_MESSAGE}: {e}")
            return error_response(500, PERFORM_FAILED_MESSAGE)

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        return health_reporter.snapshot()

    return app


app = create_app()


def main() -> None:
    import uvicorn

    settings: RelaySettings = app.state.settings
    logger.info(f"Server running on port {settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
