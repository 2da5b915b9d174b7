"""Request/response correlation over the hub link.

Each outbound ``figma_command`` gets a fresh request id and a pending
entry holding a future. The supervisor's single receive loop hands every
``figma_response`` to :meth:`RequestCorrelator.resolve`, which pops the
entry and settles the future. A timer pops the same entry on timeout.
Whichever path pops first wins; the other finds nothing and does nothing.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

from ..errors import (
    ChannelNotJoinedError,
    CommandTimeoutError,
    PeerError,
    TransportUnavailableError,
)
from ..protocol.envelopes import EnvelopeModel, ErrorEnvelope, FigmaCommand, FigmaResponse

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

# Used when the plugin reports a failure without a message
DEFAULT_PEER_ERROR = "An error occurred"


class EnvelopeSender(Protocol):
    """The slice of the hub link the correlator needs."""

    @property
    def is_connected(self) -> bool: ...

    async def send_envelope(self, envelope: EnvelopeModel) -> None: ...


@dataclass
class PendingRequest:
    """One outstanding command awaiting its response."""

    request_id: str
    channel_id: str
    command: str
    future: asyncio.Future[Any]
    created_at: float = field(default_factory=time.monotonic)
    timer: asyncio.TimerHandle | None = None

    @property
    def age(self) -> float:
        return time.monotonic() - self.created_at


class RequestCorrelator:
    """Matches asynchronous hub responses to pending calls."""

    def __init__(self, transport: EnvelopeSender, default_timeout: float = DEFAULT_TIMEOUT):
        self._transport = transport
        self.default_timeout = default_timeout
        self._pending: dict[str, PendingRequest] = {}
        self._prefix = uuid.uuid4().hex[:8]
        self._counter = itertools.count(1)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def next_request_id(self) -> str:
        return f"{self._prefix}-{next(self._counter)}"

    async def call(
        self,
        command: str,
        params: dict[str, Any] | None = None,
        *,
        channel_id: str | None,
        timeout: float | None = None,
    ) -> Any:
        """Send a command into the hub and wait for its response.

        Args:
            command: Plugin command name.
            params: Command parameters.
            channel_id: Channel the gateway is currently joined to.
            timeout: Seconds to wait; defaults to ``default_timeout``.

        Returns:
            The ``result`` carried by the matching ``figma_response``.

        Raises:
            TransportUnavailableError: The hub link is not open.
            ChannelNotJoinedError: No channel has been joined.
            PeerError: The response carried an error string.
            CommandTimeoutError: No response before the timeout.
        """
        if not self._transport.is_connected:
            raise TransportUnavailableError("WebSocket is not connected")
        if not channel_id:
            raise ChannelNotJoinedError("Not connected to a Figma channel. Use join_channel first.")

        loop = asyncio.get_running_loop()
        request_id = self.next_request_id()
        pending = PendingRequest(
            request_id=request_id,
            channel_id=channel_id,
            command=command,
            future=loop.create_future(),
        )
        self._pending[request_id] = pending

        try:
            await self._transport.send_envelope(
                FigmaCommand(
                    channelId=channel_id,
                    requestId=request_id,
                    command=command,
                    params=params or {},
                )
            )
            # The response may already have arrived while sending
            if request_id in self._pending:
                delay = self.default_timeout if timeout is None else timeout
                pending.timer = loop.call_later(delay, self._expire, request_id)
            logger.debug(f"Sent {command} as {request_id} on channel {channel_id}")
            return await pending.future
        finally:
            self._discard(request_id)

    def resolve(self, envelope: FigmaResponse | ErrorEnvelope) -> bool:
        """Settle the pending request an inbound envelope refers to.

        Returns:
            True if a pending request was settled, False for unknown or
            late responses.
        """
        request_id = envelope.requestId
        if request_id is None:
            return False

        pending = self._discard(request_id)
        if pending is None:
            logger.debug(f"Ignoring response for unknown or expired request {request_id}")
            return False
        if pending.future.done():
            return False

        match envelope:
            case FigmaResponse(error=str() as error):
                pending.future.set_exception(PeerError(error or DEFAULT_PEER_ERROR))
            case FigmaResponse(result=result):
                pending.future.set_result(result)
            case ErrorEnvelope(message=message):
                pending.future.set_exception(PeerError(message or DEFAULT_PEER_ERROR))

        logger.debug(f"Resolved {pending.command} ({request_id}) after {pending.age:.3f}s")
        return True

    def fail_all(self, exc: BaseException) -> int:
        """Reject every pending request with ``exc``.

        Returns:
            Number of requests rejected.
        """
        pending = list(self._pending.values())
        self._pending.clear()
        for entry in pending:
            if entry.timer is not None:
                entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_exception(exc)
        if pending:
            logger.info(f"Failed {len(pending)} pending request(s): {exc}")
        return len(pending)

    def _expire(self, request_id: str) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None or pending.future.done():
            return
        logger.warning(f"Command {pending.command} ({request_id}) timed out after {pending.age:.1f}s")
        pending.future.set_exception(CommandTimeoutError("Figma command timed out"))

    def _discard(self, request_id: str) -> PendingRequest | None:
        pending = self._pending.pop(request_id, None)
        if pending is not None and pending.timer is not None:
            pending.timer.cancel()
        return pending
