"""Gateway HTTP routes.

Provides the HTTP mode of the JSON-RPC edge:
- POST /mcp - JSON-RPC endpoint for requests
- GET /sse - SSE stream mirroring every outbound message
- GET /health - Liveness plus hub link status
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import signal
from collections.abc import AsyncIterator, Callable

from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from ..config import GatewayConfig
from ..protocol.jsonrpc import JsonRpcErrorCode
from .service import Gateway

logger = logging.getLogger(__name__)

READY_FRAME = {"jsonrpc": "2.0", "method": "ready", "params": {}}


def terminate_process() -> None:
    """Ask the running server to exit as if interrupted."""
    os.kill(os.getpid(), signal.SIGTERM)


async def _terminate_after(delay: float, terminate: Callable[[], None]) -> None:
    await asyncio.sleep(delay)
    logger.info("Shutting down gateway")
    terminate()


# =============================================================================
# HTTP Endpoints
# =============================================================================


async def mcp_post(request: Request) -> Response:
    """Handle POST requests to the JSON-RPC endpoint."""
    gateway: Gateway = request.app.state.gateway

    body = await request.body()
    response = await gateway.handler.process_message(body)

    if response is None:
        return Response(status_code=202)

    if response.error is not None and response.error.code == JsonRpcErrorCode.PARSE_ERROR:
        return JSONResponse(response.to_dict(), status_code=400)

    background = None
    if gateway.handler.shutdown_requested:
        background = BackgroundTask(
            _terminate_after, gateway.config.shutdown_flush_delay, request.app.state.terminate
        )
    return JSONResponse(response.to_dict(), background=background)


async def sse_endpoint(request: Request) -> StreamingResponse:
    """SSE endpoint mirroring every outbound JSON-RPC message.

    GET /sse

    The first frame is a ``ready`` notification; after that each response
    and notification the gateway produces is sent as one ``data:`` frame.
    """
    gateway: Gateway = request.app.state.gateway

    async def event_stream() -> AsyncIterator[str]:
        yield f"data: {json.dumps(READY_FRAME)}\n\n"
        logger.info("SSE connection established")

        try:
            async with contextlib.aclosing(gateway.broadcaster.stream()) as messages:
                async for message in messages:
                    if await request.is_disconnected():
                        break
                    yield f"data: {json.dumps(message)}\n\n"
        finally:
            logger.info("SSE connection closed")

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


async def health_check(request: Request) -> JSONResponse:
    """Health check endpoint."""
    gateway: Gateway = request.app.state.gateway
    return JSONResponse({"status": "ok", "hub": gateway.supervisor.status()})


gateway_routes = [
    Route("/mcp", mcp_post, methods=["POST"]),
    Route("/sse", sse_endpoint, methods=["GET"]),
    Route("/health", health_check, methods=["GET"]),
]


def create_gateway_app(
    gateway: Gateway | None = None,
    *,
    config: GatewayConfig | None = None,
    terminate: Callable[[], None] = terminate_process,
) -> Starlette:
    """Create the gateway HTTP application.

    The hub link is started and stopped with the application lifespan.

    Args:
        gateway: Gateway to serve. Built from ``config`` when omitted.
        config: Gateway configuration for a new gateway.
        terminate: Called after a ``shutdown`` response has been flushed.
    """
    gateway = gateway or Gateway(config)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        gateway.start()
        try:
            yield
        finally:
            await gateway.stop()

    app = Starlette(routes=gateway_routes, lifespan=lifespan)
    app.state.gateway = gateway
    app.state.terminate = terminate
    return app
