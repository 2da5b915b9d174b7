"""Relay hub: channel-multiplexed WebSocket router."""

from .app import create_hub_app
from .channels import ChannelRegistry
from .connection import ConnectionState, HubConnection
from .relay import RelayHub

__all__ = [
    "ChannelRegistry",
    "ConnectionState",
    "HubConnection",
    "RelayHub",
    "create_hub_app",
]
