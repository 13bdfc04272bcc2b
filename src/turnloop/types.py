"""Shared data types for turnloop."""

from __future__ import annotations

import enum
import json
import time
from dataclasses import dataclass, field
from typing import Any, Union


# ---------------------------------------------------------------------------
# Conversation types
# ---------------------------------------------------------------------------

class Role(enum.Enum):
    """Message author role (OpenAI chat format)."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass
class ToolCall:
    """A complete tool invocation requested by the model.

    ``arguments`` is the raw JSON text exactly as streamed; it is parsed by
    the executor, not here.
    """

    id: str
    name: str
    arguments: str = ""
    type: str = "function"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCall:
        func = data.get("function") or {}
        return cls(
            id=data.get("id") or "",
            name=func.get("name") or "",
            arguments=func.get("arguments") or "",
            type=data.get("type") or "function",
        )


@dataclass
class Message:
    """One entry of the conversation log."""

    role: Role
    content: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            data["tool_call_id"] = self.tool_call_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        raw_calls = data.get("tool_calls")
        return cls(
            role=Role(data["role"]),
            content=data.get("content"),
            tool_calls=[ToolCall.from_dict(tc) for tc in raw_calls] if raw_calls else None,
            tool_call_id=data.get("tool_call_id"),
        )


# ---------------------------------------------------------------------------
# Tool outcome variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ToolSuccess:
    """A tool ran and returned a value (which may itself be ``{"error": ...}``)."""

    call_id: str
    result: Any

    @property
    def ok(self) -> bool:
        return True

    def to_content(self) -> str:
        return json.dumps(self.result, ensure_ascii=False, default=str)


@dataclass(frozen=True)
class ToolFailure:
    """A tool call could not be parsed, was unknown, raised or timed out."""

    call_id: str
    error: str

    @property
    def ok(self) -> bool:
        return False

    def to_content(self) -> str:
        return json.dumps({"error": self.error}, ensure_ascii=False)


ToolOutcome = Union[ToolSuccess, ToolFailure]


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    type: str  # string, integer, number, boolean, array, object
    description: str = ""
    required: bool = True
    default: Any = None
    enum: list[str] | None = None


# ---------------------------------------------------------------------------
# Streaming types
# ---------------------------------------------------------------------------

class StreamEnd:
    """Sentinel yielded by the stream decoder for ``data: [DONE]``."""

    def __repr__(self) -> str:
        return "STREAM_END"


STREAM_END = StreamEnd()

# A decoded server event: parsed JSON payload or the end sentinel
StreamChunk = Union[dict[str, Any], StreamEnd]


class Channel(enum.Enum):
    """Mutually exclusive delta kinds within one streamed response."""

    NONE = "none"
    CONTENT = "content"
    REASONING = "reasoning"
    TOOL_CALLS = "tool_calls"


@dataclass
class StreamResult:
    """What one streamed response produced once the stream ended."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


@dataclass
class PendingWakeup:
    """A timer expiry that arrived while a turn was in flight."""

    timestamp: float = field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

class EventType(enum.Enum):
    """Event types emitted by the agent loop."""

    # Turn lifecycle
    TURN_STARTED = "turn.started"
    TURN_STATE = "turn.state"
    TURN_DONE = "turn.done"
    TURN_ERROR = "turn.error"

    # LLM transport
    LLM_RETRY = "llm.retry"

    # Streaming display
    SECTION_START = "stream.section_start"
    SECTION_END = "stream.section_end"
    CONTENT_DELTA = "stream.content"
    REASONING_DELTA = "stream.reasoning"
    TOOL_NAMED = "stream.tool_named"

    # Tool events
    TOOL_EXECUTING = "tool.executing"
    TOOL_EXECUTED = "tool.executed"
    TOOL_ERROR = "tool.error"

    # Context events
    CONTEXT_SUMMARIZED = "context.summarized"
    CONTEXT_SUMMARY_FAILED = "context.summary_failed"

    # Timer events
    WAKEUP_QUEUED = "wakeup.queued"
    WAKEUP_FIRED = "wakeup.fired"


@dataclass
class AgentEvent:
    """Event emitted by the agent loop via the EventBus."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
