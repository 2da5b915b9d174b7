"""Hub wire envelopes.

Every frame on the hub socket is one JSON object discriminated by its
``type`` field. Each variant is its own pydantic model so dispatch code
can ``match`` on the class instead of comparing strings.

Note: Field names use camelCase to match the plugin's wire format.
Do not change them to snake_case.
"""

from __future__ import annotations

import json
import time
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from ..errors import EnvelopeError

NO_PEER_MESSAGE = (
    "No Figma plugin connected to this channel. "
    "Make sure the plugin is running and connected to the same channel."
)
NOT_IN_CHANNEL_MESSAGE = "Not connected to a channel"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class EnvelopeModel(BaseModel):
    """Base model for envelopes."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    def to_json(self) -> str:
        """Serialize to a single JSON text frame."""
        return self.model_dump_json(exclude_none=True)


class JoinChannel(EnvelopeModel):
    type: Literal["join_channel"] = "join_channel"
    channelId: str | None = None


class LeaveChannel(EnvelopeModel):
    type: Literal["leave_channel"] = "leave_channel"
    channelId: str | None = None


class ChannelJoined(EnvelopeModel):
    type: Literal["channel_joined"] = "channel_joined"
    channelId: str
    message: str | None = None
    timestamp: int = Field(default_factory=now_ms)


class ChannelLeft(EnvelopeModel):
    type: Literal["channel_left"] = "channel_left"
    channelId: str
    timestamp: int = Field(default_factory=now_ms)


class FigmaCommand(EnvelopeModel):
    """A command addressed to the plugin on the sender's channel."""

    type: Literal["figma_command"] = "figma_command"
    channelId: str | None = None
    requestId: str
    command: str
    params: dict[str, Any] = Field(default_factory=dict)


class FigmaResponse(EnvelopeModel):
    """The plugin's answer to a ``figma_command``.

    Carries either ``result`` or ``error``, never both.
    """

    type: Literal["figma_response"] = "figma_response"
    channelId: str | None = None
    requestId: str
    result: Any | None = None
    error: str | None = None

    @field_validator("error", mode="before")
    @classmethod
    def _stringify_error(cls, value: Any) -> Any:
        # Plugins occasionally report structured errors
        if value is None or isinstance(value, str):
            return value
        return json.dumps(value)

    @model_validator(mode="after")
    def _result_xor_error(self) -> FigmaResponse:
        if self.error is not None and self.result is not None:
            raise ValueError("figma_response must carry either result or error, not both")
        return self


class Ping(EnvelopeModel):
    type: Literal["ping"] = "ping"
    timestamp: int | None = None
    channelId: str | None = None


class Pong(EnvelopeModel):
    type: Literal["pong"] = "pong"
    timestamp: int = Field(default_factory=now_ms)
    pingTimestamp: int | None = None


class Welcome(EnvelopeModel):
    type: Literal["welcome"] = "welcome"
    message: str | None = None
    timestamp: int = Field(default_factory=now_ms)


class Connected(EnvelopeModel):
    type: Literal["connected"] = "connected"
    message: str | None = None
    timestamp: int = Field(default_factory=now_ms)


class ErrorEnvelope(EnvelopeModel):
    """Hub-level error, optionally scoped to a request."""

    type: Literal["error"] = "error"
    message: str
    requestId: str | None = None


Envelope = Annotated[
    Union[
        JoinChannel,
        LeaveChannel,
        ChannelJoined,
        ChannelLeft,
        FigmaCommand,
        FigmaResponse,
        Ping,
        Pong,
        Welcome,
        Connected,
        ErrorEnvelope,
    ],
    Field(discriminator="type"),
]

_envelope_adapter: TypeAdapter[Envelope] = TypeAdapter(Envelope)


def parse_envelope(data: str | bytes) -> Envelope:
    """Parse one text frame into its envelope variant.

    Raises:
        EnvelopeError: If the frame is not JSON, has no known ``type``,
            or violates the variant's schema.
    """
    try:
        return _envelope_adapter.validate_json(data)
    except ValidationError as e:
        raise EnvelopeError(_describe(e)) from e


def _describe(error: ValidationError) -> str:
    first = error.errors()[0]
    kind = first.get("type")
    if kind == "json_invalid":
        return "Invalid JSON"
    if kind == "union_tag_invalid":
        return f"Unknown message type: {first.get('ctx', {}).get('tag')}"
    if kind == "union_tag_not_found":
        return "Missing message type"
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
