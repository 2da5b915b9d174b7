"""Gateway: JSON-RPC edge that relays tool calls into the hub.

Components:
- ConnectionSupervisor: owns the outbound hub socket and reconnects
- RequestCorrelator: matches figma_response envelopes to pending calls
- GatewayHandler: JSON-RPC method dispatch and error mapping
- StdioGatewayAdapter / create_gateway_app: stdio and HTTP transports
"""

from .broadcast import OutboundBroadcaster
from .correlator import PendingRequest, RequestCorrelator
from .handler import GatewayHandler
from .routes import create_gateway_app
from .service import Gateway, run_stdio_gateway
from .stdio import StdioGatewayAdapter
from .supervisor import ConnectionState, ConnectionSupervisor
from .tools import ToolContext, ToolDefinition, ToolRegistry

__all__ = [
    "ConnectionState",
    "ConnectionSupervisor",
    "Gateway",
    "GatewayHandler",
    "OutboundBroadcaster",
    "PendingRequest",
    "RequestCorrelator",
    "StdioGatewayAdapter",
    "ToolContext",
    "ToolDefinition",
    "ToolRegistry",
    "create_gateway_app",
    "run_stdio_gateway",
]
