"""Gateway composition root.

Wires the supervisor (and its correlator), the tool registry, the request
handler and the outbound broadcaster together, and runs the stdio mode.
"""

from __future__ import annotations

import asyncio
import logging

from ..config import GatewayConfig
from ..protocol.jsonrpc import create_notification
from .broadcast import OutboundBroadcaster
from .catalog import build_registry
from .handler import GatewayHandler
from .stdio import StdioGatewayAdapter
from .supervisor import ConnectFactory, ConnectionSupervisor

logger = logging.getLogger(__name__)


class Gateway:
    """One gateway instance: hub link plus JSON-RPC edge."""

    def __init__(self, config: GatewayConfig | None = None, *, connect: ConnectFactory | None = None):
        self.config = config or GatewayConfig()
        self.broadcaster = OutboundBroadcaster()
        self.supervisor = ConnectionSupervisor(
            self.config,
            connect=connect,
            on_channel_joined=self._announce_channel,
        )
        self.correlator = self.supervisor.correlator
        self.registry = build_registry()
        self.handler = GatewayHandler(
            self.supervisor,
            self.registry,
            config=self.config,
            broadcaster=self.broadcaster,
            on_shutdown=self.request_shutdown,
        )
        self._shutdown_task: asyncio.Task[None] | None = None

    def start(self) -> None:
        """Start supervising the hub link."""
        logger.info(f"Gateway starting (hub: {self.config.hub_url}, {self.registry.count} tools)")
        self.supervisor.start()

    async def stop(self) -> None:
        await self.supervisor.stop()

    def request_shutdown(self) -> None:
        """Stop the hub link without waiting; no reconnect follows."""
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.get_running_loop().create_task(self.stop())

    def _announce_channel(self, channel_id: str) -> None:
        notification = create_notification(
            "notifications/message",
            {
                "level": "info",
                "logger": "figma-relay",
                "data": f"Connected to Figma channel: {channel_id}",
            },
        )
        self.broadcaster.publish(notification.to_dict())


async def run_stdio_gateway(config: GatewayConfig | None = None) -> None:
    """Serve the gateway over stdin/stdout until EOF or shutdown."""
    gateway = Gateway(config)
    gateway.start()
    adapter = StdioGatewayAdapter(gateway.handler)
    try:
        await adapter.run()
    finally:
        await gateway.stop()
        # Let the final response reach the client before the process exits
        await asyncio.sleep(gateway.config.shutdown_flush_delay)
