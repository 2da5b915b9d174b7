"""Integration tests for the relay hub application.

Drives the Starlette app through TestClient WebSocket sessions. All
sessions share one TestClient context so they run on the same loop.
"""

from __future__ import annotations

import time
from collections.abc import Iterator

import pytest
from starlette.testclient import TestClient

from figma_relay.hub import RelayHub, create_hub_app
from figma_relay.protocol import NO_PEER_MESSAGE


@pytest.fixture
def hub() -> RelayHub:
    return RelayHub()


@pytest.fixture
def client(hub: RelayHub) -> Iterator[TestClient]:
    with TestClient(create_hub_app(hub)) as test_client:
        yield test_client


def join(ws, channel_id: str | None = None) -> dict:
    assert ws.receive_json()["type"] == "connected"
    message = {"type": "join_channel"}
    if channel_id is not None:
        message["channelId"] = channel_id
    ws.send_json(message)
    joined = ws.receive_json()
    assert joined["type"] == "channel_joined"
    return joined


# =============================================================================
# Tests: Health
# =============================================================================


class TestHealthEndpoint:
    """Test the hub health check."""

    def test_health_returns_ok(self, client: TestClient):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["activeChannels"] == 0
        assert data["connectedClients"] == 0
        assert "uptime" in data

    def test_health_counts_clients(self, client: TestClient):
        with client.websocket_connect("/") as ws:
            join(ws, "room")

            data = client.get("/health").json()

            assert data["connectedClients"] == 1
            assert data["activeChannels"] == 1

    def test_channel_removed_after_disconnect(self, client: TestClient, hub: RelayHub):
        with client.websocket_connect("/") as ws:
            join(ws, "room")

        deadline = time.monotonic() + 2
        while hub.registry.channel_count and time.monotonic() < deadline:
            time.sleep(0.01)

        assert client.get("/health").json()["activeChannels"] == 0


# =============================================================================
# Tests: Relay
# =============================================================================


class TestRelay:
    """Test channel routing over real WebSocket sessions."""

    def test_welcome_on_connect(self, client: TestClient):
        with client.websocket_connect("/ws") as ws:
            message = ws.receive_json()

            assert message["type"] == "connected"
            assert "timestamp" in message

    def test_join_new_channel(self, client: TestClient):
        with client.websocket_connect("/") as ws:
            joined = join(ws)

            assert joined["channelId"]
            assert joined["message"] == f"Joined channel: {joined['channelId']}"

    def test_command_and_response(self, client: TestClient):
        with client.websocket_connect("/") as gateway, client.websocket_connect("/") as plugin:
            join(gateway, "room")
            join(plugin, "room")

            gateway.send_json(
                {
                    "type": "figma_command",
                    "requestId": "r1",
                    "command": "get_selection",
                    "params": {},
                }
            )
            command = plugin.receive_json()
            assert command["type"] == "figma_command"
            assert command["requestId"] == "r1"

            plugin.send_json({"type": "figma_response", "requestId": "r1", "result": {"ids": []}})
            response = gateway.receive_json()
            assert response == {"type": "figma_response", "requestId": "r1", "result": {"ids": []}}

    def test_command_without_peer(self, client: TestClient):
        with client.websocket_connect("/") as ws:
            join(ws, "room")

            ws.send_json({"type": "figma_command", "requestId": "r2", "command": "get_selection"})
            response = ws.receive_json()

            assert response["type"] == "figma_response"
            assert response["requestId"] == "r2"
            assert response["error"] == NO_PEER_MESSAGE

    def test_invalid_frame_keeps_connection(self, client: TestClient):
        with client.websocket_connect("/") as ws:
            ws.receive_json()

            ws.send_text("{broken")
            error = ws.receive_json()
            ws.send_json({"type": "ping", "timestamp": 1})
            pong = ws.receive_json()

            assert error["type"] == "error"
            assert error["message"].startswith("Invalid message format")
            assert pong == {"type": "pong", "timestamp": pong["timestamp"], "pingTimestamp": 1}

    def test_binary_garbage_keeps_connection(self, client: TestClient):
        with client.websocket_connect("/") as ws:
            ws.receive_json()

            ws.send_bytes(b"\x00\xff\xfe")
            error = ws.receive_json()
            ws.send_json({"type": "ping", "timestamp": 2})
            pong = ws.receive_json()

            assert error["type"] == "error"
            assert error["message"].startswith("Invalid message format")
            assert pong["type"] == "pong"
            assert pong["pingTimestamp"] == 2

    def test_binary_json_frame_accepted(self, client: TestClient):
        with client.websocket_connect("/") as ws:
            ws.receive_json()

            ws.send_bytes(b'{"type": "ping", "timestamp": 3}')
            pong = ws.receive_json()

            assert pong["type"] == "pong"
            assert pong["pingTimestamp"] == 3

    def test_leave_channel(self, client: TestClient):
        with client.websocket_connect("/") as ws:
            join(ws, "room")

            ws.send_json({"type": "leave_channel"})
            left = ws.receive_json()

            assert left["type"] == "channel_left"
            assert left["channelId"] == "room"
