"""The gateway's tool table.

Local tools answer from gateway state (and may probe the plugin).
Everything else is relayed to the plugin as a ``figma_command``.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from ..errors import RelayError, TransportUnavailableError
from .supervisor import ConnectionState
from .tools import ToolContext, ToolDefinition, ToolRegistry

logger = logging.getLogger(__name__)

_NO_PARAMS: dict[str, Any] = {"type": "object", "properties": {}}

_PLUGIN_TIP = "Make sure to also run the Figma plugin and join the same channel"


def _color_schema(*, alpha: bool = False) -> dict[str, Any]:
    properties = {
        "r": {"type": "number", "description": "Red value (0-1)"},
        "g": {"type": "number", "description": "Green value (0-1)"},
        "b": {"type": "number", "description": "Blue value (0-1)"},
    }
    if alpha:
        properties["a"] = {"type": "number", "description": "Alpha value (0-1)"}
    return {"type": "object", "properties": properties}


def _placement_schema(subject: str, *, required: list[str]) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "x": {"type": "number", "description": f"The x position of the {subject}"},
            "y": {"type": "number", "description": f"The y position of the {subject}"},
            "width": {"type": "number", "description": f"The width of the {subject}"},
            "height": {"type": "number", "description": f"The height of the {subject}"},
            "name": {"type": "string", "description": f"Optional name for the {subject}"},
            "parentId": {"type": "string", "description": "Optional parent node ID"},
        },
        "required": required,
    }


def _link_label(state: ConnectionState) -> str:
    return "connected" if state == ConnectionState.OPEN else state.value


# =============================================================================
# Local tools
# =============================================================================


async def connection_status(arguments: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    """Report the hub link, the joined channel and whether the plugin answers."""
    supervisor = context.supervisor
    link = _link_label(supervisor.state)
    channel_id = supervisor.active_channel_id

    figma_connected = False
    if supervisor.is_connected and channel_id:
        try:
            await supervisor.send_command("get_document_info", {}, timeout=context.config.probe_timeout)
            figma_connected = True
        except RelayError as e:
            logger.debug(f"Plugin probe failed: {e}")

    if link != "connected":
        message = "Not connected to WebSocket server. The gateway keeps retrying in the background."
    elif not channel_id:
        message = "Connected to WebSocket server but not joined to a channel. Use join_channel first."
    elif not figma_connected:
        message = (
            "Connected to WebSocket server and channel, but Figma is not responding. "
            "Make sure the Figma plugin is running and joined to the same channel."
        )
    else:
        message = "Everything is working correctly."

    return {
        "status": {
            "websocket": link,
            "activeChannel": "joined" if channel_id else "not joined",
            "figma": "connected" if figma_connected else "disconnected",
        },
        "details": {
            "hub": supervisor.status(),
            "activeChannelId": channel_id,
            "timestamp": datetime.now(UTC).isoformat(),
        },
        "message": message,
    }


async def join_channel(arguments: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    """Join a channel, reporting a pending status instead of failing on slow hubs."""
    supervisor = context.supervisor
    channel_id = arguments.get("channelId") or None

    if not supervisor.is_connected:
        supervisor.request_join(channel_id)
        supervisor.wake()
        return {
            "message": "Attempting to connect to WebSocket server...",
            "status": "connecting",
            "action": "The channel will be joined as soon as the connection opens.",
        }

    try:
        joined = await supervisor.join_channel(channel_id, timeout=context.config.join_timeout)
    except TimeoutError:
        return {
            "message": (
                f"Sent request to join channel: {channel_id}. Waiting for confirmation..."
                if channel_id
                else "Creating a new channel. Waiting for confirmation..."
            ),
            "status": "pending",
            "tip": _PLUGIN_TIP,
        }
    except TransportUnavailableError as e:
        return {"message": f"Error joining channel: {e}", "status": "error", "error": str(e)}

    return {
        "message": f"Successfully joined channel: {joined}",
        "status": "success",
        "channelId": joined,
        "tip": _PLUGIN_TIP,
    }


async def reconnect(arguments: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    supervisor = context.supervisor
    force = bool(arguments.get("force"))
    previous_channel = supervisor.active_channel_id

    if supervisor.is_connected and not force:
        return {
            "success": False,
            "message": "WebSocket is already connected. Use force:true to reconnect anyway.",
            "previousState": "connected",
        }

    try:
        await supervisor.reconnect(force=force, timeout=context.config.reconnect_timeout)
    except TimeoutError:
        return {
            "success": False,
            "message": "Failed to reconnect: Connection timeout",
            "error": "Connection timeout",
            "hub": supervisor.status(),
        }
    except TransportUnavailableError as e:
        return {"success": False, "message": f"Failed to reconnect: {e}", "error": str(e)}

    return {
        "success": True,
        "message": "Successfully reconnected to WebSocket server",
        "channelStatus": (
            f"Attempting to rejoin channel: {previous_channel}"
            if previous_channel
            else "No previous channel to rejoin"
        ),
    }


async def health_check(arguments: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    """Diagnose the relay path and suggest fixes.

    Checks the hub link, the channel, a hub ping round-trip and finally a
    ``get_document_info`` probe through the plugin.
    """
    supervisor = context.supervisor
    probe_timeout = context.config.probe_timeout
    issues: list[str] = []
    solutions: list[str] = []
    details: dict[str, Any] = {"hub": supervisor.status()}

    match supervisor.state:
        case ConnectionState.OPEN:
            pass
        case ConnectionState.CONNECTING:
            issues.append("WebSocket is still trying to connect")
            solutions.append("Wait a few seconds and try again")
        case ConnectionState.CLOSING:
            issues.append("WebSocket connection is closing")
            solutions.append("Wait for the connection to fully close and try again")
        case ConnectionState.DISCONNECTED | ConnectionState.CLOSED:
            issues.append("WebSocket connection is closed")
            solutions.append("Make sure the relay hub is running, then use reconnect")

    channel_id = supervisor.active_channel_id
    details["activeChannelId"] = channel_id
    if supervisor.is_connected and not channel_id:
        issues.append("Not connected to a Figma channel")
        solutions.append("Use join_channel to connect to a specific channel")

    if supervisor.is_connected and channel_id:
        try:
            details["pingRoundTripMs"] = round(await supervisor.ping(timeout=probe_timeout), 1)
        except (RelayError, TimeoutError) as e:
            reason = str(e) or "Timeout"
            issues.append(f"Hub did not answer ping: {reason}")
            solutions.append("Restart the relay hub")
            details["pingError"] = reason

        try:
            await supervisor.send_command("get_document_info", {}, timeout=probe_timeout)
            details["documentInfo"] = "Request successful"
        except RelayError as e:
            issues.append(f"Cannot communicate with Figma: {e}")
            solutions.append("Make sure the Figma plugin is running and connected to the same channel")
            details["documentInfoError"] = str(e)

    status = "healthy"
    if issues:
        status = "critical" if len(issues) > 2 else "warning"

    report: dict[str, Any] = {
        "status": status,
        "summary": (
            "All systems operational"
            if status == "healthy"
            else f"Found {len(issues)} issue(s) that may affect functionality"
        ),
        "issues": issues,
        "solutions": solutions,
    }
    if arguments.get("includeDetails"):
        report["details"] = details
    return report


DESIGN_STRATEGY = """
# Figma Design Strategy

## Initial Assessment
1. Use get_document_info to understand the document structure
2. Use get_selection or read_my_design to examine what the user selected
3. Use get_node_info to inspect specific nodes before changing them

## Design Creation
1. Create parent frames first with create_frame
2. Add child elements inside frames by passing parentId
3. Keep names meaningful so nodes are easy to find later

## Styling
1. Apply fills with set_fill_color (solid colors or gradients)
2. Round corners with set_corner_radius
3. Add borders with set_stroke and shadows or blurs with set_effects

## Images
1. Place images with create_image_from_url
2. Fill existing shapes with set_image_fill

## Validation
1. Re-read the result with get_node_info
2. Check text for proper formatting and readability
3. Remove scratch nodes with delete_node
"""


async def design_strategy(arguments: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    return {"strategy": DESIGN_STRATEGY}


# =============================================================================
# Argument preparation
# =============================================================================


def fold_legacy_color(arguments: dict[str, Any]) -> dict[str, Any]:
    """Turn deprecated ``r/g/b/a`` arguments into a single solid fill."""
    fills = arguments.get("fills")
    legacy = {key: arguments.get(key) for key in ("r", "g", "b", "a")}
    if fills is None and any(legacy[key] is not None for key in ("r", "g", "b")):
        fills = [
            {
                "type": "SOLID",
                "color": {key: legacy[key] or 0 for key in ("r", "g", "b")},
                "opacity": 1 if legacy["a"] is None else legacy["a"],
            }
        ]
    return {"nodeId": arguments["nodeId"], "fills": fills}


# =============================================================================
# Tool table
# =============================================================================


def _local_tools() -> list[ToolDefinition]:
    return [
        ToolDefinition(
            name="connection_status",
            description="Get the current connection status to check if everything is working correctly",
            parameters=_NO_PARAMS,
            handler=connection_status,
            available_offline=True,
        ),
        ToolDefinition(
            name="join_channel",
            description="Join a specific channel to communicate with Figma",
            parameters={
                "type": "object",
                "properties": {
                    "channelId": {
                        "type": "string",
                        "description": (
                            "Optional channel ID to join. If not provided, a new channel will be created."
                        ),
                    }
                },
            },
            handler=join_channel,
            available_offline=True,
        ),
        ToolDefinition(
            name="health_check",
            description="Run a health check to diagnose potential connection issues and provide solutions",
            parameters={
                "type": "object",
                "properties": {
                    "includeDetails": {
                        "type": "boolean",
                        "description": "Include detailed technical information in the response",
                    }
                },
            },
            handler=health_check,
            available_offline=True,
        ),
        ToolDefinition(
            name="reconnect",
            description="Attempt to reconnect the WebSocket to fix connection issues",
            parameters={
                "type": "object",
                "properties": {
                    "force": {
                        "type": "boolean",
                        "description": "Force reconnection even if the WebSocket appears to be working",
                    }
                },
            },
            handler=reconnect,
            available_offline=True,
        ),
        ToolDefinition(
            name="design_strategy",
            description="Best practices for working with Figma designs",
            parameters=_NO_PARAMS,
            handler=design_strategy,
            available_offline=True,
        ),
    ]


def _relayed_tools() -> list[ToolDefinition]:
    return [
        # Document information
        ToolDefinition(
            name="get_document_info",
            description="Get information about the current Figma document",
            parameters=_NO_PARAMS,
        ),
        ToolDefinition(
            name="get_selection",
            description="Get information about the current selection in Figma",
            parameters=_NO_PARAMS,
        ),
        ToolDefinition(
            name="read_my_design",
            description="Get detailed node information about the current selection without parameters",
            parameters=_NO_PARAMS,
        ),
        ToolDefinition(
            name="get_node_info",
            description="Get detailed information about a specific node",
            parameters={
                "type": "object",
                "properties": {
                    "nodeId": {
                        "type": "string",
                        "description": "The ID of the node to get information about",
                    }
                },
                "required": ["nodeId"],
            },
        ),
        # Creation
        ToolDefinition(
            name="create_rectangle",
            description="Create a new rectangle with position, size, and optional name",
            parameters=_placement_schema("rectangle", required=["x", "y", "width", "height"]),
        ),
        ToolDefinition(
            name="create_frame",
            description="Create a new frame that can contain other elements",
            parameters=_placement_schema("frame", required=["x", "y", "width", "height"]),
        ),
        ToolDefinition(
            name="create_text",
            description="Create a new text node with customizable font properties",
            parameters={
                "type": "object",
                "properties": {
                    "x": {"type": "number", "description": "The x position of the text node"},
                    "y": {"type": "number", "description": "The y position of the text node"},
                    "text": {"type": "string", "description": "The text content"},
                    "fontSize": {"type": "number", "description": "The font size in pixels"},
                    "fontName": {
                        "type": "object",
                        "properties": {
                            "family": {"type": "string", "description": "The font family name"},
                            "style": {
                                "type": "string",
                                "description": 'The font style (e.g., "Regular", "Bold")',
                            },
                        },
                        "description": "The font to use",
                    },
                    "name": {"type": "string", "description": "Optional name for the text node"},
                    "parentId": {"type": "string", "description": "Optional parent node ID"},
                },
                "required": ["x", "y", "text"],
            },
        ),
        ToolDefinition(
            name="set_text_content",
            description="Set the text content of a single text node",
            parameters={
                "type": "object",
                "properties": {
                    "nodeId": {"type": "string", "description": "The ID of the text node"},
                    "text": {"type": "string", "description": "The new text content"},
                },
                "required": ["nodeId", "text"],
            },
        ),
        # Styling
        ToolDefinition(
            name="set_fill_color",
            description=(
                "Set fill color with support for gradients, multiple fills, and backwards compatibility"
            ),
            parameters={
                "type": "object",
                "properties": {
                    "nodeId": {"type": "string", "description": "The ID of the node to style"},
                    "fills": {
                        "type": "array",
                        "description": "Array of fill objects",
                        "items": {
                            "type": "object",
                            "properties": {
                                "type": {
                                    "type": "string",
                                    "enum": ["SOLID", "LINEAR_GRADIENT", "RADIAL_GRADIENT"],
                                    "description": "Type of fill",
                                },
                                "color": _color_schema(),
                                "opacity": {"type": "number", "description": "Opacity (0-1)"},
                                "gradientStops": {
                                    "type": "array",
                                    "description": "Gradient stops for gradient fills",
                                    "items": {
                                        "type": "object",
                                        "properties": {
                                            "position": {
                                                "type": "number",
                                                "description": "Position (0-1)",
                                            },
                                            "color": _color_schema(alpha=True),
                                        },
                                        "required": ["position", "color"],
                                    },
                                },
                                "gradientTransform": {
                                    "type": "array",
                                    "description": "Gradient transform matrix [[1,0,0],[0,1,0]] for direction",
                                    "items": {"type": "array", "items": {"type": "number"}},
                                },
                            },
                        },
                    },
                    "r": {"type": "number", "description": "Red component (0-1), deprecated: use fills"},
                    "g": {"type": "number", "description": "Green component (0-1), deprecated: use fills"},
                    "b": {"type": "number", "description": "Blue component (0-1), deprecated: use fills"},
                    "a": {"type": "number", "description": "Alpha component (0-1), deprecated: use fills"},
                },
                "required": ["nodeId"],
            },
            prepare=fold_legacy_color,
        ),
        ToolDefinition(
            name="set_corner_radius",
            description="Set corner radius for rectangles and frames",
            parameters={
                "type": "object",
                "properties": {
                    "nodeId": {"type": "string", "description": "The ID of the node to modify"},
                    "radius": {
                        "type": ["number", "object"],
                        "description": "Uniform radius (number) or individual corners (object)",
                        "properties": {
                            "topLeft": {"type": "number", "description": "Top left corner radius"},
                            "topRight": {"type": "number", "description": "Top right corner radius"},
                            "bottomRight": {"type": "number", "description": "Bottom right corner radius"},
                            "bottomLeft": {"type": "number", "description": "Bottom left corner radius"},
                        },
                    },
                },
                "required": ["nodeId", "radius"],
            },
        ),
        ToolDefinition(
            name="set_stroke",
            description="Set stroke properties including color, width, and style",
            parameters={
                "type": "object",
                "properties": {
                    "nodeId": {"type": "string", "description": "The ID of the node to modify"},
                    "strokes": {
                        "type": "array",
                        "description": "Array of stroke objects",
                        "items": {
                            "type": "object",
                            "properties": {
                                "type": {"type": "string", "enum": ["SOLID", "GRADIENT"]},
                                "color": _color_schema(),
                                "opacity": {"type": "number", "description": "Opacity (0-1)"},
                                "weight": {"type": "number", "description": "Stroke width in pixels"},
                                "strokeAlign": {"type": "string", "enum": ["INSIDE", "OUTSIDE", "CENTER"]},
                                "dashPattern": {"type": "array", "items": {"type": "number"}},
                                "strokeCap": {"type": "string", "enum": ["NONE", "ROUND", "SQUARE"]},
                                "strokeJoin": {"type": "string", "enum": ["MITER", "ROUND", "BEVEL"]},
                            },
                        },
                    },
                },
                "required": ["nodeId", "strokes"],
            },
        ),
        ToolDefinition(
            name="set_effects",
            description="Add effects like shadows, blurs, and glows",
            parameters={
                "type": "object",
                "properties": {
                    "nodeId": {"type": "string", "description": "The ID of the node to modify"},
                    "effects": {
                        "type": "array",
                        "description": "Array of effect objects",
                        "items": {
                            "type": "object",
                            "properties": {
                                "type": {
                                    "type": "string",
                                    "enum": ["DROP_SHADOW", "INNER_SHADOW", "LAYER_BLUR", "BACKGROUND_BLUR"],
                                },
                                "visible": {"type": "boolean"},
                                "radius": {"type": "number", "description": "Blur radius"},
                                "color": _color_schema(alpha=True),
                                "offset": {
                                    "type": "object",
                                    "properties": {"x": {"type": "number"}, "y": {"type": "number"}},
                                },
                                "spread": {"type": "number"},
                                "blurType": {"type": "string", "enum": ["LAYER", "BACKGROUND"]},
                            },
                        },
                    },
                },
                "required": ["nodeId", "effects"],
            },
        ),
        # Images
        ToolDefinition(
            name="create_image_from_url",
            description="Creates an image in Figma from a URL (supports PNG, JPG, GIF up to 4096x4096px)",
            parameters={
                "type": "object",
                "properties": {
                    "imageUrl": {"type": "string", "description": "URL of the image to add"},
                    **_placement_schema("image", required=[])["properties"],
                },
                "required": ["imageUrl", "x", "y", "width", "height"],
            },
        ),
        ToolDefinition(
            name="set_image_fill",
            description="Sets an image as a fill on a rectangle or frame",
            parameters={
                "type": "object",
                "properties": {
                    "nodeId": {"type": "string", "description": "ID of the node to apply image fill"},
                    "imageUrl": {"type": "string", "description": "URL of the image"},
                    "scaleMode": {
                        "type": "string",
                        "enum": ["FILL", "FIT", "CROP", "TILE"],
                        "description": "How the image should scale",
                        "default": "FILL",
                    },
                },
                "required": ["nodeId", "imageUrl"],
            },
        ),
        # Structure
        ToolDefinition(
            name="delete_node",
            description="Delete a node and all its children from the document",
            parameters={
                "type": "object",
                "properties": {
                    "nodeId": {"type": "string", "description": "The ID of the node to delete"},
                    "safeMode": {
                        "type": "boolean",
                        "description": "When true, prevents deletion of pages or document root",
                        "default": True,
                    },
                },
                "required": ["nodeId"],
            },
        ),
    ]


def build_registry() -> ToolRegistry:
    """Registry holding every gateway tool."""
    registry = ToolRegistry()
    for tool in [*_local_tools(), *_relayed_tools()]:
        registry.register(tool)
    return registry
