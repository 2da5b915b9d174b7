"""Pytest configuration and shared fixtures.

The fakes here wire a gateway-side socket and a plugin straight into a
real :class:`RelayHub`, so relay tests run without any network.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import pytest

from figma_relay.config import GatewayConfig
from figma_relay.hub import HubConnection, RelayHub
from figma_relay.protocol.envelopes import FigmaResponse

# =============================================================================
# In-memory hub peers
# =============================================================================


class LoopbackSocket:
    """Client socket whose other end is a HubConnection on a real hub.

    Quacks like a ``websockets`` client connection: ``send``, ``close``
    and async iteration over inbound text frames.
    """

    def __init__(self, hub: RelayHub, label: str = "gateway"):
        self.hub = hub
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._inbox: asyncio.Queue[str | None] = asyncio.Queue()
        self.connection = HubConnection(self._deliver, label=label)

    async def open(self) -> None:
        await self.hub.connect(self.connection)

    async def _deliver(self, text: str) -> None:
        self._inbox.put_nowait(text)

    async def send(self, text: str) -> None:
        if self.closed:
            raise OSError("socket is closed")
        self.sent.append(json.loads(text))
        await self.hub.handle_message(self.connection, text)

    def inject(self, text: str) -> None:
        """Queue a frame as if the hub had sent it."""
        self._inbox.put_nowait(text)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self.hub.disconnect(self.connection)
        self._inbox.put_nowait(None)

    def __aiter__(self) -> LoopbackSocket:
        return self

    async def __anext__(self) -> str:
        text = await self._inbox.get()
        if text is None:
            raise StopAsyncIteration
        return text


class FakePlugin:
    """A plugin peer that answers every figma_command it receives.

    ``handlers`` maps command names to ``params -> result`` callables; a
    handler that raises produces an error response. Commands without a
    handler echo their name and params back.
    """

    def __init__(self, hub: RelayHub, handlers: dict[str, Callable[[dict], Any]] | None = None):
        self.hub = hub
        self.handlers = handlers or {}
        self.respond = True
        self.received: list[dict[str, Any]] = []
        self.connection = HubConnection(self._receive, label="plugin")
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def commands(self) -> list[dict[str, Any]]:
        return [frame for frame in self.received if frame.get("type") == "figma_command"]

    async def attach(self, channel_id: str) -> None:
        await self.hub.connect(self.connection)
        await self.hub.join(self.connection, channel_id)

    async def detach(self) -> None:
        await self.hub.disconnect(self.connection)

    async def _receive(self, text: str) -> None:
        frame = json.loads(text)
        self.received.append(frame)
        if frame.get("type") == "figma_command" and self.respond:
            task = asyncio.create_task(self._reply(frame))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _reply(self, command: dict[str, Any]) -> None:
        handler = self.handlers.get(command["command"])
        if handler is None:
            payload = {"result": {"command": command["command"], "params": command["params"]}}
        else:
            try:
                payload = {"result": handler(command["params"])}
            except Exception as e:
                payload = {"error": str(e)}
        response = FigmaResponse(requestId=command["requestId"], **payload)
        await self.hub.handle_message(self.connection, response.to_json())


class LoopbackConnector:
    """Connect factory for the supervisor that dials an in-memory hub."""

    def __init__(self, hub: RelayHub):
        self.hub = hub
        self.sockets: list[LoopbackSocket] = []
        self.refuse = False
        self.attempts = 0

    @property
    def current(self) -> LoopbackSocket | None:
        return self.sockets[-1] if self.sockets else None

    async def __call__(self, url: str) -> LoopbackSocket:
        self.attempts += 1
        if self.refuse:
            raise ConnectionRefusedError(f"Connect call failed {url}")
        socket = LoopbackSocket(self.hub)
        await socket.open()
        self.sockets.append(socket)
        return socket


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(scope="module")
def anyio_backend():
    """Configure anyio to use asyncio backend."""
    return "asyncio"


@pytest.fixture
def relay_hub() -> RelayHub:
    return RelayHub()


@pytest.fixture
def fake_plugin(relay_hub: RelayHub) -> FakePlugin:
    return FakePlugin(relay_hub)


@pytest.fixture
def connector(relay_hub: RelayHub) -> LoopbackConnector:
    return LoopbackConnector(relay_hub)


@pytest.fixture
def gateway_config() -> GatewayConfig:
    """Gateway config with timings shrunk for tests."""
    return GatewayConfig(
        hub_url="ws://hub.test",
        connect_delay=0,
        reconnect_delay=0.01,
        max_reconnect_delay=0.05,
        reconnect_timeout=1.0,
        command_timeout=1.0,
        join_timeout=1.0,
        probe_timeout=0.5,
        shutdown_flush_delay=0,
    )
