"""Hub connection supervisor.

Owns the gateway's single outbound socket to the relay hub:

- Connects after a short startup delay
- Rejoins the last confirmed channel (or a requested one) on every open
- Runs the only receive loop and demultiplexes inbound envelopes
- Reconnects with capped exponential backoff until stopped

Request timeouts live in the correlator and are independent of this
state machine.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed

from ..config import GatewayConfig
from ..errors import EnvelopeError, TransportUnavailableError
from ..protocol.envelopes import (
    ChannelJoined,
    ChannelLeft,
    Connected,
    EnvelopeModel,
    ErrorEnvelope,
    FigmaCommand,
    FigmaResponse,
    JoinChannel,
    LeaveChannel,
    Ping,
    Pong,
    Welcome,
    now_ms,
    parse_envelope,
)
from .correlator import RequestCorrelator

logger = logging.getLogger(__name__)

ConnectFactory = Callable[[str], Awaitable[Any]]
ChannelJoinedCallback = Callable[[str], None]


class ConnectionState(str, Enum):
    """Hub link state machine."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class ConnectionSupervisor:
    """Keeps the gateway connected to the hub.

    The socket returned by the connect factory must support ``send``,
    ``close`` and async iteration over text frames, as a
    ``websockets`` client connection does.
    """

    def __init__(
        self,
        config: GatewayConfig | None = None,
        *,
        connect: ConnectFactory | None = None,
        on_channel_joined: ChannelJoinedCallback | None = None,
    ):
        self.config = config or GatewayConfig()
        self.correlator = RequestCorrelator(self, default_timeout=self.config.command_timeout)
        self.on_channel_joined = on_channel_joined
        self._connect = connect or self._websocket_connect

        self._state = ConnectionState.DISCONNECTED
        self._socket: Any = None
        self._task: asyncio.Task[None] | None = None
        self._shutdown = False
        self._wake = asyncio.Event()

        self.active_channel_id: str | None = None
        self._join_requested = False
        self._requested_channel_id: str | None = None

        self._join_waiters: list[asyncio.Future[str]] = []
        self._open_waiters: list[asyncio.Future[None]] = []
        self._ping_waiters: dict[int, asyncio.Future[Pong]] = {}

        self._attempt = 0
        self.last_error: str | None = None
        self.connected_since: datetime | None = None

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.OPEN and self._socket is not None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def status(self) -> dict[str, Any]:
        """Snapshot of the link for diagnostics."""
        return {
            "state": self._state.value,
            "url": self.config.hub_url,
            "activeChannelId": self.active_channel_id,
            "connectedSince": self.connected_since.isoformat() if self.connected_since else None,
            "reconnectAttempts": self._attempt,
            "lastError": self.last_error,
            "pendingRequests": self.correlator.pending_count,
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start the background connection loop."""
        if self.is_running:
            return
        self._shutdown = False
        self._task = asyncio.create_task(self._run(), name="figma-relay-supervisor")

    async def stop(self) -> None:
        """Close the link for good. No reconnect happens after this."""
        self._shutdown = True
        self._wake.set()
        if self._state != ConnectionState.CLOSED:
            self._state = ConnectionState.CLOSING

        socket = self._socket
        if socket is not None:
            await self._close_socket(socket)

        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

        self.correlator.fail_all(TransportUnavailableError("Gateway is shutting down"))
        self._state = ConnectionState.CLOSED
        logger.info("Hub connection supervisor stopped")

    def wake(self) -> None:
        """Skip the remaining backoff and try to connect now."""
        if not self._shutdown:
            self._wake.set()

    async def reconnect(self, force: bool = False, timeout: float | None = None) -> bool:
        """Re-establish the hub link.

        Args:
            force: Drop an open link and connect again.
            timeout: Seconds to wait for the new link; defaults to
                ``config.reconnect_timeout``.

        Returns:
            False if the link was already open and ``force`` was not set.

        Raises:
            TransportUnavailableError: The supervisor is stopped.
            TimeoutError: No link opened within the timeout.
        """
        if self._shutdown:
            raise TransportUnavailableError("Gateway is shutting down")
        if self.is_connected and not force:
            return False

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._open_waiters.append(waiter)
        try:
            self._attempt = 0
            self._wake.set()
            if not self.is_running:
                self.start()
            socket = self._socket
            if socket is not None:
                logger.info("Forcing hub reconnect")
                await self._close_socket(socket)
            await asyncio.wait_for(
                waiter, self.config.reconnect_timeout if timeout is None else timeout
            )
            return True
        finally:
            with contextlib.suppress(ValueError):
                self._open_waiters.remove(waiter)

    # =========================================================================
    # Outbound
    # =========================================================================

    async def send_envelope(self, envelope: EnvelopeModel) -> None:
        """Write one envelope to the hub.

        Raises:
            TransportUnavailableError: The link is not open or closed mid-send.
        """
        socket = self._socket
        if socket is None or self._state != ConnectionState.OPEN:
            raise TransportUnavailableError("WebSocket is not connected")
        try:
            await socket.send(envelope.to_json())
        except (ConnectionClosed, OSError) as e:
            raise TransportUnavailableError(f"WebSocket connection lost: {e}") from e

    async def send_command(
        self,
        command: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Relay a plugin command on the active channel and await its result."""
        return await self.correlator.call(
            command, params, channel_id=self.active_channel_id, timeout=timeout
        )

    def request_join(self, channel_id: str | None) -> None:
        """Remember a channel to join as soon as the link is open."""
        self._join_requested = True
        self._requested_channel_id = channel_id

    async def join_channel(self, channel_id: str | None = None, timeout: float | None = None) -> str:
        """Join a channel and wait for the hub's confirmation.

        Raises:
            TimeoutError: No ``channel_joined`` within the timeout. The join
                stays requested and is sent again on the next open.
        """
        waiter: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._join_waiters.append(waiter)
        self.request_join(channel_id)
        try:
            if self.is_connected:
                await self.send_envelope(JoinChannel(channelId=channel_id))
            return await asyncio.wait_for(
                waiter, self.config.join_timeout if timeout is None else timeout
            )
        finally:
            with contextlib.suppress(ValueError):
                self._join_waiters.remove(waiter)

    async def ping(self, timeout: float | None = None) -> float:
        """Round-trip a ``ping`` through the hub.

        Returns:
            Round-trip time in milliseconds.
        """
        timestamp = now_ms()
        while timestamp in self._ping_waiters:
            timestamp += 1

        waiter: asyncio.Future[Pong] = asyncio.get_running_loop().create_future()
        self._ping_waiters[timestamp] = waiter
        started = time.monotonic()
        try:
            await self.send_envelope(Ping(timestamp=timestamp, channelId=self.active_channel_id))
            await asyncio.wait_for(waiter, self.config.probe_timeout if timeout is None else timeout)
            return (time.monotonic() - started) * 1000
        finally:
            self._ping_waiters.pop(timestamp, None)

    # =========================================================================
    # Connection loop
    # =========================================================================

    async def _websocket_connect(self, url: str) -> Any:
        return await websockets.connect(
            url,
            ping_interval=self.config.ping_interval,
            ping_timeout=self.config.ping_timeout,
            max_size=None,
        )

    async def _run(self) -> None:
        await self._sleep(self.config.connect_delay)

        while not self._shutdown:
            self._state = ConnectionState.CONNECTING
            logger.info(f"Connecting to hub at {self.config.hub_url}")
            try:
                socket = await self._connect(self.config.hub_url)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.last_error = str(e) or e.__class__.__name__
                logger.warning(f"Hub connection failed: {self.last_error}")
            else:
                await self._serve(socket)

            if self._shutdown:
                break

            self._state = ConnectionState.DISCONNECTED
            delay = self.config.backoff_delay(self._attempt)
            self._attempt += 1
            logger.info(f"Reconnecting to hub in {delay:.1f}s (attempt {self._attempt})")
            await self._sleep(delay)

        self._state = ConnectionState.CLOSED

    async def _serve(self, socket: Any) -> None:
        self._socket = socket
        self._state = ConnectionState.OPEN
        self._attempt = 0
        self.last_error = None
        self.connected_since = datetime.now(UTC)
        logger.info(f"Connected to hub at {self.config.hub_url}")

        for waiter in self._open_waiters:
            if not waiter.done():
                waiter.set_result(None)

        try:
            channel_id = (
                self._requested_channel_id if self._join_requested else self.active_channel_id
            )
            if self._join_requested or channel_id:
                logger.info(f"Joining channel {channel_id or '(new)'} on open")
                await socket.send(JoinChannel(channelId=channel_id).to_json())

            async for frame in socket:
                self._dispatch(frame)
        except ConnectionClosed as e:
            self.last_error = f"Connection closed: {e}"
            logger.info(f"Hub connection closed: {e}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.last_error = str(e)
            logger.exception(f"Hub receive loop error: {e}")
        finally:
            self._socket = None
            self.connected_since = None
            if not self._shutdown:
                self._state = ConnectionState.CLOSING
            self.correlator.fail_all(TransportUnavailableError("WebSocket connection closed"))
            for waiter in self._ping_waiters.values():
                if not waiter.done():
                    waiter.set_exception(TransportUnavailableError("WebSocket connection closed"))
            await self._close_socket(socket)

    async def _sleep(self, delay: float) -> None:
        """Sleep for ``delay`` unless woken early."""
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._wake.wait(), delay)
        self._wake.clear()

    async def _close_socket(self, socket: Any) -> None:
        try:
            await socket.close()
        except (ConnectionClosed, OSError) as e:
            logger.debug(f"Error closing hub socket: {e}")

    # =========================================================================
    # Inbound dispatch
    # =========================================================================

    def _dispatch(self, frame: str | bytes) -> None:
        try:
            envelope = parse_envelope(frame)
        except EnvelopeError as e:
            logger.warning(f"Ignoring malformed hub frame: {e}")
            return

        match envelope:
            case ChannelJoined(channelId=channel_id):
                self._on_channel_joined(channel_id)
            case FigmaResponse() | ErrorEnvelope(requestId=str()):
                self.correlator.resolve(envelope)
            case ErrorEnvelope(message=message):
                logger.warning(f"Hub error: {message}")
            case Pong(pingTimestamp=ping_timestamp):
                waiter = self._ping_waiters.get(ping_timestamp) if ping_timestamp else None
                if waiter is not None and not waiter.done():
                    waiter.set_result(envelope)
            case ChannelLeft(channelId=channel_id):
                if self.active_channel_id == channel_id:
                    self.active_channel_id = None
                logger.info(f"Left channel {channel_id}")
            case Connected(message=message) | Welcome(message=message):
                logger.info(f"Hub says: {message}")
            case FigmaCommand() | JoinChannel() | LeaveChannel() | Ping():
                logger.debug(f"Ignoring {envelope.type} from hub")

    def _on_channel_joined(self, channel_id: str) -> None:
        previous = self.active_channel_id
        self.active_channel_id = channel_id
        self._join_requested = False
        self._requested_channel_id = None
        if previous != channel_id:
            logger.info(f"Joined channel {channel_id}")

        for waiter in self._join_waiters:
            if not waiter.done():
                waiter.set_result(channel_id)

        if self.on_channel_joined is not None:
            try:
                self.on_channel_joined(channel_id)
            except Exception as e:
                logger.exception(f"Channel-joined callback failed: {e}")
