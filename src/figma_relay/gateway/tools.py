"""Tool definitions and registry for the gateway.

Architecture:
- ToolDefinition: Describes a tool (name, description, parameters, handler)
- ToolRegistry: Central registry with schema-driven argument validation
- ToolContext: What local tool handlers may touch

A tool without a handler is relayed: its (prepared) arguments are sent to
the plugin as a ``figma_command`` named after the tool.

Usage:
    async def status(arguments: dict, context: ToolContext) -> dict:
        return context.supervisor.status()

    registry = ToolRegistry()
    registry.register(ToolDefinition(
        name="connection_status",
        description="Report the hub link state",
        parameters={"type": "object", "properties": {}},
        handler=status,
        available_offline=True,
    ))
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..protocol.jsonrpc import JsonRpcErrorCode, JsonRpcProtocolError

if TYPE_CHECKING:
    from ..config import GatewayConfig
    from .supervisor import ConnectionSupervisor

logger = logging.getLogger(__name__)


@dataclass
class ToolContext:
    """Context passed to local tool handlers."""

    supervisor: ConnectionSupervisor
    config: GatewayConfig


ToolHandler = Callable[[dict[str, Any], ToolContext], Awaitable[Any]]
ArgumentPreparer = Callable[[dict[str, Any]], dict[str, Any]]


@dataclass
class ToolDefinition:
    """Definition of a gateway tool.

    Attributes:
        name: Unique identifier for the tool
        description: Human-readable description for the assistant
        parameters: JSON Schema for the tool's input
        handler: Local implementation; None relays the call to the plugin
        command: Plugin command name when relayed (defaults to ``name``)
        available_offline: Whether the tool answers while the hub link is down
        prepare: Optional rewrite of validated arguments before relaying
        timeout: Optional per-tool command timeout in seconds
    """

    name: str
    description: str
    parameters: dict[str, Any]
    handler: ToolHandler | None = None
    command: str | None = None
    available_offline: bool = False
    prepare: ArgumentPreparer | None = None
    timeout: float | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Tool name cannot be empty")
        if not self.description:
            raise ValueError("Tool description cannot be empty")
        if self.handler is not None and not callable(self.handler):
            raise ValueError("Tool handler must be callable")

    @property
    def is_local(self) -> bool:
        return self.handler is not None

    @property
    def command_name(self) -> str:
        return self.command or self.name

    def describe(self) -> dict[str, Any]:
        """Entry for a ``tools/list`` result."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.parameters,
        }


_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "number": (int, float),
    "integer": (int,),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list,),
    "null": (type(None),),
}


def _matches_type(value: Any, expected: str | list[str]) -> bool:
    names = expected if isinstance(expected, list) else [expected]
    for name in names:
        python_types = _JSON_TYPES.get(name)
        if python_types is None:
            return True
        # bool is an int subclass but never a JSON number
        if isinstance(value, bool) and name in ("number", "integer"):
            continue
        if isinstance(value, python_types):
            return True
    return False


class ToolRegistry:
    """Central registry for gateway tools."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}

    def register(self, tool: ToolDefinition) -> None:
        """Register a tool.

        Raises:
            ValueError: If a tool with the same name is already registered
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' already registered")
        self._tools[tool.name] = tool
        logger.debug(f"Registered tool: {tool.name}")

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def list_names(self) -> list[str]:
        return list(self._tools.keys())

    def offline_names(self) -> list[str]:
        """Names of tools that answer while the hub link is down."""
        return [tool.name for tool in self._tools.values() if tool.available_offline]

    @property
    def count(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def describe(self) -> list[dict[str, Any]]:
        """All tools as ``tools/list`` entries."""
        return [tool.describe() for tool in self._tools.values()]

    def validate(self, tool: ToolDefinition, arguments: Any) -> dict[str, Any]:
        """Check arguments against the tool's schema and fill defaults.

        Only required fields and top-level types are checked; nested
        structures are passed through for the plugin to interpret.

        Returns:
            A new argument dict with schema defaults applied.

        Raises:
            JsonRpcProtocolError: INVALID_PARAMS on any violation.
        """
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise JsonRpcProtocolError(
                JsonRpcErrorCode.INVALID_PARAMS,
                f"Arguments for {tool.name} must be an object",
            )

        schema = tool.parameters
        properties: dict[str, Any] = schema.get("properties", {})

        missing = [
            name for name in schema.get("required", []) if arguments.get(name) is None
        ]
        if missing:
            raise JsonRpcProtocolError(
                JsonRpcErrorCode.INVALID_PARAMS,
                f"Missing required parameter{'s' if len(missing) > 1 else ''}: {', '.join(missing)}",
                {"tool": tool.name, "missing": missing},
            )

        validated = dict(arguments)
        for name, spec in properties.items():
            value = validated.get(name)
            if value is None:
                if "default" in spec:
                    validated[name] = copy.deepcopy(spec["default"])
                continue
            expected = spec.get("type")
            if expected is not None and not _matches_type(value, expected):
                expected_text = " or ".join(expected) if isinstance(expected, list) else expected
                raise JsonRpcProtocolError(
                    JsonRpcErrorCode.INVALID_PARAMS,
                    f"Invalid type for parameter '{name}': expected {expected_text}",
                    {"tool": tool.name, "parameter": name},
                )

        if tool.prepare is not None:
            validated = tool.prepare(validated)
        return validated
