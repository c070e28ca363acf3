"""Provider-neutral request, response and stream event types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Optional

# Tool names like "BookingTool.createBooking" are not valid provider function
# names ("^[a-zA-Z0-9_-]+$"), so they travel as "BookingTool__createBooking".
_WIRE_SEPARATOR = "__"


def to_wire_name(name: str) -> str:
    return name.replace(".", _WIRE_SEPARATOR)


def wire_name_map(tools: list[dict[str, Any]] | None) -> dict[str, str]:
    """Map wire names back to the registered tool names for one request."""
    return {to_wire_name(t["name"]): t["name"] for t in tools or []}


class StopReason(StrEnum):
    END_TURN = "end_turn"
    MAX_TOKENS = "max_tokens"
    STOP_SEQUENCE = "stop_sequence"
    TOOL_USE = "tool_use"


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cache_read_tokens": self.cache_read_tokens,
            "cache_creation_tokens": self.cache_creation_tokens,
        }


@dataclass
class CompletionRequest:
    """A completion request.

    ``messages`` use the Anthropic shape: string content, or lists of
    ``text`` / ``tool_use`` / ``tool_result`` blocks. ``tools`` are
    ``{"name", "description", "input_schema"}`` dicts with registered names.
    """

    messages: list[dict[str, Any]]
    system_prompt: Optional[str] = None
    tools: Optional[list[dict[str, Any]]] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    stop_sequences: Optional[list[str]] = None
    model: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class CompletionResponse:
    id: str
    model: str
    content: str
    provider: str
    stop_reason: StopReason = StopReason.END_TURN
    tool_calls: list[ToolCall] = field(default_factory=list)
    content_blocks: list[dict[str, Any]] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    latency_ms: int = 0

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)


@dataclass
class StreamEvent:
    """One streamed event: ``text_delta``, ``input_json_delta``, ``error`` or a passthrough type."""

    type: str
    index: Optional[int] = None
    delta: Optional[dict[str, Any]] = None
    error: Optional[str] = None
