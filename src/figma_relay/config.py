"""Runtime configuration.

Plain dataclasses with defaults. The CLI fills them from options and
environment variables; library code only ever receives config objects.
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_HUB_HOST = "localhost"
DEFAULT_HUB_PORT = 3600
DEFAULT_GATEWAY_HOST = "localhost"
DEFAULT_GATEWAY_PORT = 3700


@dataclass
class HubConfig:
    """Configuration for the relay hub server."""

    host: str = DEFAULT_HUB_HOST
    port: int = DEFAULT_HUB_PORT

    # Image exports travel through the hub as base64 payloads
    max_message_size: int = 10 * 1024 * 1024


@dataclass
class GatewayConfig:
    """Configuration for the gateway and its hub connection supervisor."""

    hub_url: str = f"ws://{DEFAULT_HUB_HOST}:{DEFAULT_HUB_PORT}"

    # Connection supervision (seconds)
    connect_delay: float = 0.5
    reconnect_delay: float = 1.0
    max_reconnect_delay: float = 30.0
    reconnect_backoff: float = 2.0
    reconnect_timeout: float = 5.0

    # websockets keepalive
    ping_interval: float | None = 30.0
    ping_timeout: float | None = 10.0

    # Request handling (seconds)
    command_timeout: float = 30.0
    join_timeout: float = 5.0
    probe_timeout: float = 3.0
    shutdown_flush_delay: float = 0.1

    # HTTP mode
    http_host: str = DEFAULT_GATEWAY_HOST
    http_port: int = DEFAULT_GATEWAY_PORT

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnect attempt number ``attempt`` (0-based).

        Grows geometrically from ``reconnect_delay`` and stays at
        ``max_reconnect_delay`` once reached, however many attempts fail.
        """
        delay = self.reconnect_delay
        if delay <= 0 or self.reconnect_backoff <= 1:
            return min(delay, self.max_reconnect_delay)
        for _ in range(attempt):
            delay *= self.reconnect_backoff
            if delay >= self.max_reconnect_delay:
                return self.max_reconnect_delay
        return min(delay, self.max_reconnect_delay)
