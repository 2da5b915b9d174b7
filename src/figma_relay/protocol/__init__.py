"""Wire protocols.

Two protocols meet in the relay:
- Hub envelopes: JSON text frames exchanged over the channel socket
- JSON-RPC 2.0: the assistant-facing request/response protocol
"""

from .envelopes import (
    NO_PEER_MESSAGE,
    NOT_IN_CHANNEL_MESSAGE,
    ChannelJoined,
    ChannelLeft,
    Connected,
    Envelope,
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
from .jsonrpc import (
    JsonRpcError,
    JsonRpcErrorCode,
    JsonRpcNotification,
    JsonRpcProtocolError,
    JsonRpcResponse,
    create_error_response,
    create_notification,
    recover_request_id,
)

__all__ = [
    # Envelopes
    "Envelope",
    "JoinChannel",
    "LeaveChannel",
    "ChannelJoined",
    "ChannelLeft",
    "FigmaCommand",
    "FigmaResponse",
    "Ping",
    "Pong",
    "Welcome",
    "Connected",
    "ErrorEnvelope",
    "NO_PEER_MESSAGE",
    "NOT_IN_CHANNEL_MESSAGE",
    "now_ms",
    "parse_envelope",
    # JSON-RPC
    "JsonRpcNotification",
    "JsonRpcError",
    "JsonRpcResponse",
    "JsonRpcErrorCode",
    "JsonRpcProtocolError",
    "create_error_response",
    "create_notification",
    "recover_request_id",
]
