"""JSON-RPC request handling for the gateway.

Per incoming message:
1. Parse (non-JSON -> -32700 with a null id)
2. Check the JSON-RPC 2.0 envelope (-32600)
3. Answer lifecycle and listing methods locally
4. For ``tools/call``: resolve the tool, validate arguments, refuse with
   -32002 while the hub link is down unless the tool works offline, then
   run it locally or relay it through the correlator
5. Map failures to stable error codes

The handler is transport-agnostic; stdio and HTTP adapters feed it
messages and write back whatever it returns.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from .. import __version__
from ..config import GatewayConfig
from ..errors import (
    ChannelNotJoinedError,
    CommandTimeoutError,
    PeerError,
    TransportUnavailableError,
)
from ..protocol.jsonrpc import (
    JsonRpcErrorCode,
    JsonRpcProtocolError,
    JsonRpcResponse,
    create_error_response,
    recover_request_id,
)
from .broadcast import OutboundBroadcaster
from .supervisor import ConnectionSupervisor
from .tools import ToolContext, ToolRegistry

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "figma-relay"

TRANSPORT_UNAVAILABLE_MESSAGE = "WebSocket connection is not available. Attempting to reconnect..."


def text_content(result: Any) -> dict[str, Any]:
    """Wrap a tool result as a single text content item."""
    text = result if isinstance(result, str) else json.dumps(result)
    return {"content": [{"type": "text", "text": text}]}


class GatewayHandler:
    """Turns JSON-RPC messages into responses."""

    def __init__(
        self,
        supervisor: ConnectionSupervisor,
        registry: ToolRegistry,
        *,
        config: GatewayConfig | None = None,
        broadcaster: OutboundBroadcaster | None = None,
        on_shutdown: Callable[[], None] | None = None,
    ):
        self.supervisor = supervisor
        self.registry = registry
        self.config = config or supervisor.config
        self.broadcaster = broadcaster or OutboundBroadcaster()
        self.on_shutdown = on_shutdown
        self.shutdown_requested = False
        self._tool_context = ToolContext(supervisor=supervisor, config=self.config)

    async def process_message(self, data: str | bytes) -> JsonRpcResponse | None:
        """Handle one raw message.

        Returns a response for requests, None for notifications.
        """
        try:
            message = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Unparseable message: {e}")
            return self._publish(
                create_error_response(None, JsonRpcErrorCode.PARSE_ERROR, f"Parse error: {e}")
            )
        return await self.handle_message(message)

    async def handle_message(self, message: Any) -> JsonRpcResponse | None:
        """Handle one decoded message."""
        request_id = recover_request_id(message)

        if not isinstance(message, dict) or message.get("jsonrpc") != "2.0":
            return self._publish(
                create_error_response(
                    request_id,
                    JsonRpcErrorCode.INVALID_REQUEST,
                    "Invalid request: not a valid JSON-RPC 2.0 request",
                )
            )

        method = message.get("method")
        if not isinstance(method, str) or not method:
            return self._publish(
                create_error_response(
                    request_id, JsonRpcErrorCode.INVALID_REQUEST, "Missing 'method' field"
                )
            )

        params = message.get("params")

        # Notification (no id)
        if "id" not in message:
            logger.debug(f"Notification: {method}")
            return None

        logger.debug(f"Request {request_id}: {method}")
        try:
            result = await self._dispatch(method, params)
            response = JsonRpcResponse(id=request_id, result=result)
        except JsonRpcProtocolError as e:
            response = create_error_response(request_id, e.code, e.message, e.data)
        except TransportUnavailableError as e:
            response = create_error_response(
                request_id, JsonRpcErrorCode.TRANSPORT_UNAVAILABLE, str(e)
            )
        except (ChannelNotJoinedError, PeerError) as e:
            response = create_error_response(
                request_id, JsonRpcErrorCode.INTERNAL_ERROR, str(e), {"kind": "execution"}
            )
        except CommandTimeoutError as e:
            response = create_error_response(
                request_id,
                JsonRpcErrorCode.INTERNAL_ERROR,
                str(e),
                {"kind": "timeout", "retryable": True},
            )
        except Exception as e:
            logger.exception(f"Error handling request {method}: {e}")
            response = create_error_response(
                request_id,
                JsonRpcErrorCode.INTERNAL_ERROR,
                str(e) or "Internal server error",
                {"kind": "internal"},
            )

        return self._publish(response)

    async def _dispatch(self, method: str, params: Any) -> Any:
        match method:
            case "initialize":
                return {
                    "protocolVersion": PROTOCOL_VERSION,
                    "capabilities": {"tools": {}},
                    "serverInfo": {"name": SERVER_NAME, "version": __version__},
                }
            case "ping":
                return {}
            case "tools/list":
                return {"tools": self.registry.describe()}
            case "tools/call":
                return await self._call_tool(params)
            case "resources/list":
                return {"resources": []}
            case "prompts/list":
                return {"prompts": []}
            case "list_changed":
                return {"added": [], "removed": []}
            case "shutdown":
                logger.info("Shutdown requested")
                self.shutdown_requested = True
                if self.on_shutdown is not None:
                    self.on_shutdown()
                return {}
            case _:
                raise JsonRpcProtocolError(
                    JsonRpcErrorCode.METHOD_NOT_FOUND, f"Method not found: {method}"
                )

    async def _call_tool(self, params: Any) -> dict[str, Any]:
        if not isinstance(params, dict) or not params.get("name"):
            raise JsonRpcProtocolError(
                JsonRpcErrorCode.INVALID_PARAMS, "Invalid params: tool name is required"
            )

        name = params["name"]
        tool = self.registry.get(name) if isinstance(name, str) else None
        if tool is None:
            raise JsonRpcProtocolError(JsonRpcErrorCode.METHOD_NOT_FOUND, f"Tool not found: {name}")

        arguments = self.registry.validate(tool, params.get("arguments"))

        if not self.supervisor.is_connected and not tool.available_offline:
            self.supervisor.wake()
            raise TransportUnavailableError(TRANSPORT_UNAVAILABLE_MESSAGE)

        if tool.handler is not None:
            result = await tool.handler(arguments, self._tool_context)
        else:
            result = await self.supervisor.send_command(
                tool.command_name, arguments, timeout=tool.timeout
            )
        return text_content(result)

    def _publish(self, response: JsonRpcResponse) -> JsonRpcResponse:
        self.broadcaster.publish(response.to_dict())
        return response
