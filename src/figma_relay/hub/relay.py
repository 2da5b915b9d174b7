"""Channel-multiplexed relay.

The hub knows nothing about commands. It keeps channel membership and
copies addressed frames to every other member of the sender's channel.
The one thing it fabricates is an error response when a command has
nobody to receive it, so the caller resolves immediately instead of
waiting out its timeout.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from ..errors import EnvelopeError
from ..protocol.envelopes import (
    NO_PEER_MESSAGE,
    NOT_IN_CHANNEL_MESSAGE,
    ChannelJoined,
    ChannelLeft,
    Connected,
    ErrorEnvelope,
    FigmaCommand,
    FigmaResponse,
    JoinChannel,
    LeaveChannel,
    Ping,
    Pong,
    Welcome,
    parse_envelope,
)
from .channels import ChannelRegistry
from .connection import HubConnection

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = "Connected to Figma relay hub"


class RelayHub:
    """Routes envelopes between the members of each channel."""

    def __init__(self, registry: ChannelRegistry | None = None):
        self.registry = registry or ChannelRegistry()
        self._connections: set[HubConnection] = set()
        self._started_at = time.monotonic()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect(self, connection: HubConnection) -> None:
        """Register an accepted connection and greet it."""
        connection.mark_open()
        self._connections.add(connection)
        logger.info(f"Client connected: {connection.label} ({len(self._connections)} total)")
        await connection.send_envelope(Connected(message=WELCOME_MESSAGE))

    async def disconnect(self, connection: HubConnection) -> None:
        """Forget a closed connection and drop it from its channel."""
        connection.mark_closed()
        self._connections.discard(connection)
        channel_id = self.registry.leave(connection)
        if channel_id is not None:
            remaining = len(self.registry.members(channel_id))
            logger.info(
                f"Client {connection.label} left channel {channel_id} on close "
                f"({remaining} remaining)"
            )
        logger.info(f"Client disconnected: {connection.label} ({len(self._connections)} total)")

    # =========================================================================
    # Inbound dispatch
    # =========================================================================

    async def handle_message(self, connection: HubConnection, text: str) -> None:
        """Parse one inbound frame and act on it."""
        try:
            envelope = parse_envelope(text)
        except EnvelopeError as e:
            logger.warning(f"Invalid frame from {connection.label}: {e}")
            await connection.send_envelope(ErrorEnvelope(message=f"Invalid message format: {e}"))
            return

        match envelope:
            case JoinChannel(channelId=channel_id):
                await self.join(connection, channel_id)
            case LeaveChannel():
                await self.leave(connection)
            case FigmaCommand() | FigmaResponse():
                await self.forward(connection, envelope, text)
            case Ping():
                await self.ping(connection, envelope)
            case ChannelJoined() | ChannelLeft() | Pong() | Welcome() | Connected() | ErrorEnvelope():
                logger.debug(f"Ignoring {envelope.type} from {connection.label}")

    # =========================================================================
    # Operations
    # =========================================================================

    async def join(self, connection: HubConnection, channel_id: str | None = None) -> str:
        """Move ``connection`` into a channel and confirm to it alone."""
        previous = connection.channel_id
        channel_id = self.registry.join(connection, channel_id)
        if previous is not None and previous != channel_id:
            logger.info(f"Client {connection.label} moved from channel {previous} to {channel_id}")
        else:
            logger.info(f"Client {connection.label} joined channel {channel_id}")

        await connection.send_envelope(
            ChannelJoined(channelId=channel_id, message=f"Joined channel: {channel_id}")
        )
        return channel_id

    async def leave(self, connection: HubConnection) -> str | None:
        """Explicit leave. Confirms with ``channel_left`` if in a channel."""
        channel_id = self.registry.leave(connection)
        if channel_id is None:
            await connection.send_envelope(ErrorEnvelope(message=NOT_IN_CHANNEL_MESSAGE))
            return None

        logger.info(f"Client {connection.label} left channel {channel_id}")
        await connection.send_envelope(ChannelLeft(channelId=channel_id))
        return channel_id

    async def forward(
        self,
        sender: HubConnection,
        envelope: FigmaCommand | FigmaResponse,
        raw: str | None = None,
    ) -> int:
        """Copy an addressed frame to every other member of the sender's channel.

        The sender's registered channel decides routing; a ``channelId``
        written inside the envelope is ignored.

        Returns:
            Number of recipients the frame was handed to.
        """
        channel_id = sender.channel_id
        if channel_id is None:
            await sender.send_envelope(
                ErrorEnvelope(message=NOT_IN_CHANNEL_MESSAGE, requestId=envelope.requestId)
            )
            return 0

        recipients = [peer for peer in self.registry.peers_of(sender) if peer.is_open]
        if not recipients:
            await self._no_peer(sender, channel_id, envelope)
            return 0

        text = raw if raw is not None else envelope.to_json()
        results = await asyncio.gather(*(peer.send_text(text) for peer in recipients))
        delivered = sum(1 for ok in results if ok)
        logger.debug(
            f"Forwarded {envelope.type} {envelope.requestId} in channel {channel_id} "
            f"to {delivered}/{len(recipients)} peers"
        )
        if delivered == 0:
            await self._no_peer(sender, channel_id, envelope)
        return delivered

    async def ping(self, connection: HubConnection, envelope: Ping) -> None:
        await connection.send_envelope(Pong(pingTimestamp=envelope.timestamp))

    def stats(self) -> dict[str, Any]:
        """Liveness summary for the health endpoint."""
        return {
            "activeChannels": self.registry.channel_count,
            "connectedClients": len(self._connections),
            "uptime": round(time.monotonic() - self._started_at, 3),
        }

    async def _no_peer(
        self,
        sender: HubConnection,
        channel_id: str,
        envelope: FigmaCommand | FigmaResponse,
    ) -> None:
        if isinstance(envelope, FigmaResponse):
            logger.warning(
                f"Dropping figma_response {envelope.requestId}: nobody else in channel {channel_id}"
            )
            return

        logger.warning(f"No peer for {envelope.command} ({envelope.requestId}) in channel {channel_id}")
        await sender.send_envelope(
            FigmaResponse(channelId=channel_id, requestId=envelope.requestId, error=NO_PEER_MESSAGE)
        )
