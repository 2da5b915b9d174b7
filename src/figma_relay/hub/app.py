"""Relay hub ASGI application.

Routes:
- / and /ws - WebSocket relay endpoint (plugin and gateway both connect here)
- /health - Liveness plus channel and client counts
"""

from __future__ import annotations

import contextlib
import logging

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from .connection import HubConnection
from .relay import RelayHub

logger = logging.getLogger(__name__)


class HubSocketHandler:
    """Drives one accepted WebSocket through the relay.

    Lifecycle:
    - Accept and register with the hub (which sends the welcome)
    - Feed every frame to the hub in arrival order
    - Deregister on disconnect, leaving the channel
    """

    def __init__(self, websocket: WebSocket, hub: RelayHub):
        self.websocket = websocket
        self.hub = hub
        client = websocket.client
        label = f"{client.host}:{client.port}" if client else None
        self.connection = HubConnection(websocket.send_text, label=label)

    async def handle(self) -> None:
        await self.websocket.accept()
        await self.hub.connect(self.connection)

        try:
            while self.connection.is_open:
                text = await self._receive_frame()
                await self.hub.handle_message(self.connection, text)
        except WebSocketDisconnect as e:
            logger.debug(f"Socket {self.connection.label} closed (code {e.code})")
        except Exception as e:
            logger.exception(f"Socket error for {self.connection.label}: {e}")
        finally:
            await self.hub.disconnect(self.connection)
            if self.websocket.client_state == WebSocketState.CONNECTED:
                with contextlib.suppress(RuntimeError):
                    await self.websocket.close()

    async def _receive_frame(self) -> str:
        """Next frame as text. Binary frames are decoded as UTF-8 JSON."""
        message = await self.websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
        text = message.get("text")
        if text is None:
            text = (message.get("bytes") or b"").decode("utf-8", errors="replace")
        return text


async def relay_endpoint(websocket: WebSocket) -> None:
    """WebSocket relay endpoint.

    Protocol:
    1. Hub sends ``connected`` on accept
    2. Client sends ``join_channel`` (optionally with a channelId)
    3. Hub confirms with ``channel_joined``
    4. ``figma_command`` / ``figma_response`` frames are copied to every
       other member of the sender's channel
    5. ``ping`` is answered with ``pong``
    """
    handler = HubSocketHandler(websocket, websocket.app.state.hub)
    await handler.handle()


async def health_check(request: Request) -> JSONResponse:
    """Health check endpoint."""
    hub: RelayHub = request.app.state.hub
    return JSONResponse({"status": "ok", **hub.stats()})


hub_routes = [
    WebSocketRoute("/", relay_endpoint),
    WebSocketRoute("/ws", relay_endpoint),
    Route("/health", health_check, methods=["GET"]),
]


def create_hub_app(hub: RelayHub | None = None) -> Starlette:
    """Create the relay hub application.

    Args:
        hub: Relay instance to serve. A fresh one is created when omitted.

    Returns:
        Configured Starlette application with the hub on ``app.state.hub``.
    """
    app = Starlette(routes=hub_routes)
    app.state.hub = hub or RelayHub()
    return app
