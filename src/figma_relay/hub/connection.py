"""Hub-side connection wrapper.

Wraps one accepted socket behind a send coroutine so the relay logic
never touches the transport directly and tests can drive it in memory.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from enum import Enum

from ..protocol.envelopes import EnvelopeModel

logger = logging.getLogger(__name__)

SendText = Callable[[str], Awaitable[None]]


class ConnectionState(str, Enum):
    """Liveness state of a hub connection."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class HubConnection:
    """One bidirectional endpoint attached to the hub.

    Identity-hashed: two connections are never equal, even with the same
    label.
    """

    def __init__(self, send: SendText, label: str | None = None):
        self.id = uuid.uuid4().hex
        self.label = label or self.id[:8]
        self.channel_id: str | None = None
        self.state = ConnectionState.CONNECTING
        self._send = send

    @property
    def is_open(self) -> bool:
        return self.state == ConnectionState.OPEN

    def mark_open(self) -> None:
        self.state = ConnectionState.OPEN

    def mark_closed(self) -> None:
        self.state = ConnectionState.CLOSED

    async def send_text(self, text: str) -> bool:
        """Send one text frame.

        Never raises: a failed send marks the connection as closing so the
        relay stops routing to it, and the read loop finishes the cleanup.

        Returns:
            True if the frame was handed to the transport.
        """
        if not self.is_open:
            return False
        try:
            await self._send(text)
            return True
        except Exception as e:
            logger.warning(f"Send to {self.label} failed: {e}")
            self.state = ConnectionState.CLOSING
            return False

    async def send_envelope(self, envelope: EnvelopeModel) -> bool:
        return await self.send_text(envelope.to_json())

    def __repr__(self) -> str:
        return f"HubConnection({self.label!r}, state={self.state.value}, channel={self.channel_id!r})"
