"""Tests for the tool registry and argument validation."""

from __future__ import annotations

import pytest

from figma_relay.gateway.catalog import build_registry, fold_legacy_color
from figma_relay.gateway.tools import ToolDefinition, ToolRegistry
from figma_relay.protocol import JsonRpcErrorCode, JsonRpcProtocolError

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def registry() -> ToolRegistry:
    return build_registry()


@pytest.fixture
def sample_tool() -> ToolDefinition:
    return ToolDefinition(
        name="sample",
        description="Sample tool",
        parameters={
            "type": "object",
            "properties": {
                "nodeId": {"type": "string"},
                "count": {"type": "integer"},
                "ratio": {"type": "number"},
                "flag": {"type": "boolean", "default": False},
                "tags": {"type": "array", "default": []},
                "radius": {"type": ["number", "object"]},
            },
            "required": ["nodeId"],
        },
    )


# =============================================================================
# ToolDefinition
# =============================================================================


class TestToolDefinition:
    """Tests for tool definitions."""

    def test_empty_name_rejected(self) -> None:
        with pytest.raises(ValueError, match="name"):
            ToolDefinition(name="", description="x", parameters={})

    def test_empty_description_rejected(self) -> None:
        with pytest.raises(ValueError, match="description"):
            ToolDefinition(name="x", description="", parameters={})

    def test_relayed_by_default(self) -> None:
        tool = ToolDefinition(name="get_selection", description="x", parameters={})

        assert not tool.is_local
        assert tool.command_name == "get_selection"

    def test_command_override(self) -> None:
        tool = ToolDefinition(name="alias", description="x", parameters={}, command="real")

        assert tool.command_name == "real"

    def test_describe(self) -> None:
        schema = {"type": "object", "properties": {}}
        tool = ToolDefinition(name="t", description="does t", parameters=schema)

        assert tool.describe() == {"name": "t", "description": "does t", "inputSchema": schema}


# =============================================================================
# ToolRegistry
# =============================================================================


class TestToolRegistry:
    """Tests for registration and lookup."""

    def test_duplicate_registration(self, sample_tool: ToolDefinition) -> None:
        registry = ToolRegistry()
        registry.register(sample_tool)

        with pytest.raises(ValueError, match="already registered"):
            registry.register(sample_tool)

    def test_lookup(self, registry: ToolRegistry) -> None:
        assert "create_frame" in registry
        assert registry.get("create_frame").name == "create_frame"
        assert registry.get("missing") is None

    def test_offline_tools(self, registry: ToolRegistry) -> None:
        assert sorted(registry.offline_names()) == [
            "connection_status",
            "design_strategy",
            "health_check",
            "join_channel",
            "reconnect",
        ]

    def test_catalog_contents(self, registry: ToolRegistry) -> None:
        names = registry.list_names()

        for name in (
            "get_document_info",
            "get_selection",
            "read_my_design",
            "get_node_info",
            "create_rectangle",
            "create_frame",
            "create_text",
            "set_text_content",
            "set_fill_color",
            "set_corner_radius",
            "set_stroke",
            "set_effects",
            "create_image_from_url",
            "set_image_fill",
            "delete_node",
        ):
            assert name in names
        assert registry.count == len(names)

    def test_every_schema_is_an_object(self, registry: ToolRegistry) -> None:
        for entry in registry.describe():
            assert entry["inputSchema"]["type"] == "object"
            assert entry["description"]


# =============================================================================
# Validation
# =============================================================================


class TestValidate:
    """Tests for schema-driven argument checks."""

    def test_none_arguments_become_empty(self, registry: ToolRegistry) -> None:
        assert registry.validate(registry.get("get_selection"), None) == {}

    def test_non_object_arguments(self, sample_tool: ToolDefinition) -> None:
        with pytest.raises(JsonRpcProtocolError) as exc_info:
            ToolRegistry().validate(sample_tool, ["nodeId"])

        assert exc_info.value.code == JsonRpcErrorCode.INVALID_PARAMS
        assert "must be an object" in exc_info.value.message

    def test_missing_required(self, registry: ToolRegistry) -> None:
        with pytest.raises(JsonRpcProtocolError) as exc_info:
            registry.validate(registry.get("create_text"), {"x": 0})

        error = exc_info.value
        assert error.code == JsonRpcErrorCode.INVALID_PARAMS
        assert error.message == "Missing required parameters: y, text"
        assert error.data == {"tool": "create_text", "missing": ["y", "text"]}

    def test_single_missing_required(self, sample_tool: ToolDefinition) -> None:
        with pytest.raises(JsonRpcProtocolError, match="Missing required parameter: nodeId"):
            ToolRegistry().validate(sample_tool, {})

    def test_wrong_type(self, sample_tool: ToolDefinition) -> None:
        with pytest.raises(JsonRpcProtocolError) as exc_info:
            ToolRegistry().validate(sample_tool, {"nodeId": "1:2", "ratio": "half"})

        assert exc_info.value.message == "Invalid type for parameter 'ratio': expected number"

    def test_bool_is_not_a_number(self, sample_tool: ToolDefinition) -> None:
        with pytest.raises(JsonRpcProtocolError):
            ToolRegistry().validate(sample_tool, {"nodeId": "1:2", "count": True})

    def test_float_is_not_an_integer(self, sample_tool: ToolDefinition) -> None:
        with pytest.raises(JsonRpcProtocolError, match="expected integer"):
            ToolRegistry().validate(sample_tool, {"nodeId": "1:2", "count": 1.5})

    def test_union_types(self, sample_tool: ToolDefinition) -> None:
        registry = ToolRegistry()

        registry.validate(sample_tool, {"nodeId": "1:2", "radius": 4})
        registry.validate(sample_tool, {"nodeId": "1:2", "radius": {"topLeft": 4}})
        with pytest.raises(JsonRpcProtocolError, match="expected number or object"):
            registry.validate(sample_tool, {"nodeId": "1:2", "radius": "4px"})

    def test_defaults_applied(self, sample_tool: ToolDefinition) -> None:
        validated = ToolRegistry().validate(sample_tool, {"nodeId": "1:2"})

        assert validated["flag"] is False
        assert validated["tags"] == []

    def test_defaults_not_shared(self, sample_tool: ToolDefinition) -> None:
        registry = ToolRegistry()

        first = registry.validate(sample_tool, {"nodeId": "a"})
        first["tags"].append("mutated")
        second = registry.validate(sample_tool, {"nodeId": "b"})

        assert second["tags"] == []

    def test_input_not_mutated(self, sample_tool: ToolDefinition) -> None:
        arguments = {"nodeId": "1:2"}

        ToolRegistry().validate(sample_tool, arguments)

        assert arguments == {"nodeId": "1:2"}

    def test_unknown_arguments_pass_through(self, sample_tool: ToolDefinition) -> None:
        validated = ToolRegistry().validate(sample_tool, {"nodeId": "1:2", "extra": 1})

        assert validated["extra"] == 1

    def test_catalog_defaults(self, registry: ToolRegistry) -> None:
        fill = registry.validate(
            registry.get("set_image_fill"), {"nodeId": "1:2", "imageUrl": "https://x/y.png"}
        )
        delete = registry.validate(registry.get("delete_node"), {"nodeId": "1:2"})

        assert fill["scaleMode"] == "FILL"
        assert delete["safeMode"] is True


# =============================================================================
# Legacy color arguments
# =============================================================================


class TestFoldLegacyColor:
    """Tests for turning r/g/b/a into a solid fill."""

    def test_rgb_becomes_solid_fill(self) -> None:
        prepared = fold_legacy_color({"nodeId": "1:2", "r": 1, "g": 0.5, "b": 0})

        assert prepared == {
            "nodeId": "1:2",
            "fills": [{"type": "SOLID", "color": {"r": 1, "g": 0.5, "b": 0}, "opacity": 1}],
        }

    def test_alpha_becomes_opacity(self) -> None:
        prepared = fold_legacy_color({"nodeId": "1:2", "r": 1, "a": 0.25})

        fill = prepared["fills"][0]
        assert fill["color"] == {"r": 1, "g": 0, "b": 0}
        assert fill["opacity"] == 0.25

    def test_explicit_fills_win(self) -> None:
        fills = [{"type": "SOLID", "color": {"r": 0, "g": 0, "b": 1}}]

        prepared = fold_legacy_color({"nodeId": "1:2", "fills": fills, "r": 1})

        assert prepared == {"nodeId": "1:2", "fills": fills}

    def test_nothing_to_fold(self) -> None:
        assert fold_legacy_color({"nodeId": "1:2"}) == {"nodeId": "1:2", "fills": None}

    def test_applied_by_registry(self, registry: ToolRegistry) -> None:
        prepared = registry.validate(
            registry.get("set_fill_color"), {"nodeId": "1:2", "r": 0, "g": 0, "b": 1}
        )

        assert "r" not in prepared
        assert prepared["fills"][0]["color"] == {"r": 0, "g": 0, "b": 1}
