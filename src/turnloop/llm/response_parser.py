"""Stream delta processing: channel multiplexing and tool-call accumulation.

A streamed response interleaves three kinds of delta: final text
(``content``), model reasoning (``reasoning``) and tool-call fragments
(``tool_calls``).  ``ChannelMultiplexer`` routes each delta, emits display
events on channel transitions, and writes finished reasoning segments into
the conversation.  ``ToolCallAccumulator`` stitches fragments back into
complete calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from turnloop.events.bus import EventBus
from turnloop.types import Channel, EventType, StreamResult, ToolCall

if TYPE_CHECKING:
    from turnloop.core.context import Conversation

_logger = logging.getLogger(__name__)

_SECTION_TITLES = {
    Channel.CONTENT: "Response",
    Channel.REASONING: "Reasoning",
    Channel.TOOL_CALLS: "Tool Calls",
}


# ---------------------------------------------------------------------------
# ToolCallAccumulator
# ---------------------------------------------------------------------------

@dataclass
class _PartialCall:
    index: int
    id: str
    type: str
    name: str = ""
    arguments: str = ""


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


class ToolCallAccumulator:
    """Accumulate native function-calling tool_calls from streaming deltas.

    OpenAI-compatible servers send each call as fragments sharing an
    ``index``: the first carries ``id``/``type`` and usually the name, later
    ones carry pieces of ``function.arguments`` that must be concatenated.
    Identity comes from the first fragment at an index; the name is only
    written while still empty so a trailing fragment cannot clobber it.
    """

    def __init__(self) -> None:
        self._calls: dict[int, _PartialCall] = {}

    def feed(self, fragments: list[dict[str, Any]]) -> list[tuple[int, str]]:
        """Merge *fragments*.

        Returns ``(position, name)`` for each call whose name became known
        during this feed; ``position`` is 1-based in arrival order.
        """
        named: list[tuple[int, str]] = []
        for part in fragments:
            if not isinstance(part, dict):
                continue
            idx = part.get("index", 0)
            if not isinstance(idx, int):
                continue
            func = part.get("function")
            if not isinstance(func, dict):
                func = {}
            call = self._calls.get(idx)
            if call is None:
                call = _PartialCall(
                    index=idx,
                    id=_text(part.get("id")),
                    type=_text(part.get("type")) or "function",
                )
                self._calls[idx] = call
            name = func.get("name")
            if isinstance(name, str) and name and not call.name:
                call.name = name
                named.append((list(self._calls).index(idx) + 1, name))
            arguments = func.get("arguments")
            if isinstance(arguments, str) and arguments:
                call.arguments += arguments
        return named

    def finalize(self) -> list[ToolCall]:
        """Materialise the accumulated calls in first-seen order."""
        return [
            ToolCall(id=c.id, name=c.name, arguments=c.arguments, type=c.type)
            for c in self._calls.values()
        ]


# ---------------------------------------------------------------------------
# ChannelMultiplexer
# ---------------------------------------------------------------------------

def _extract_delta(chunk: Any) -> dict[str, Any] | None:
    if not isinstance(chunk, dict):
        return None
    choices = chunk.get("choices")
    if not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    return delta if isinstance(delta, dict) else None


def classify_delta(delta: dict[str, Any]) -> Channel:
    """Return the channel a delta belongs to (``Channel.NONE`` if empty).

    At most one field is honoured per delta: content, then reasoning, then
    tool calls.  Empty strings and ``null`` do not count as populated.
    """
    content = delta.get("content")
    if isinstance(content, str) and content:
        return Channel.CONTENT
    reasoning = delta.get("reasoning")
    if isinstance(reasoning, str) and reasoning:
        return Channel.REASONING
    tool_calls = delta.get("tool_calls")
    if isinstance(tool_calls, list) and tool_calls:
        return Channel.TOOL_CALLS
    return Channel.NONE


class ChannelMultiplexer:
    """Route stream chunks into content, reasoning and tool-call channels.

    Reasoning text is buffered and written to the conversation as a
    ``<thinking>`` assistant message whenever the stream moves on to content
    or tool calls, and once more at :meth:`finish` if anything is left, so
    a turn that ends mid-reasoning never loses it.
    """

    def __init__(self, conversation: Conversation, event_bus: EventBus | None = None) -> None:
        self._conversation = conversation
        self._event_bus = event_bus
        self._accumulator = ToolCallAccumulator()
        self._active = Channel.NONE
        self._reasoning = ""
        self._content = ""

    async def feed_chunk(self, chunk: Any) -> None:
        """Process one decoded stream chunk; chunks without a delta are ignored."""
        delta = _extract_delta(chunk)
        if delta is not None:
            await self.feed(delta)

    async def feed(self, delta: dict[str, Any]) -> None:
        channel = classify_delta(delta)
        if channel is Channel.NONE:
            return
        if channel is not self._active:
            await self._switch_to(channel)

        if channel is Channel.CONTENT:
            text = delta["content"]
            self._content += text
            await self._emit(EventType.CONTENT_DELTA, {"text": text})
        elif channel is Channel.REASONING:
            text = delta["reasoning"]
            self._reasoning += text
            await self._emit(EventType.REASONING_DELTA, {"text": text})
        else:
            for position, name in self._accumulator.feed(delta["tool_calls"]):
                await self._emit(EventType.TOOL_NAMED, {"position": position, "name": name})

    async def finish(self) -> StreamResult:
        """Close the active section, flush leftover reasoning, return the result."""
        await self._close_section()
        self._active = Channel.NONE
        self._flush_reasoning()
        return StreamResult(
            content=self._content,
            tool_calls=self._accumulator.finalize(),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _switch_to(self, channel: Channel) -> None:
        await self._close_section()
        if channel is not Channel.REASONING:
            self._flush_reasoning()
        self._active = channel
        await self._emit(EventType.SECTION_START, {
            "channel": channel.value,
            "title": _SECTION_TITLES[channel],
        })

    async def _close_section(self) -> None:
        if self._active is not Channel.NONE:
            await self._emit(EventType.SECTION_END, {"channel": self._active.value})

    def _flush_reasoning(self) -> None:
        if not self._reasoning:
            return
        self._conversation.append_reasoning(self._reasoning)
        _logger.debug("Flushed %d chars of reasoning", len(self._reasoning))
        self._reasoning = ""

    async def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self._event_bus:
            await self._event_bus.publish(event_type, **data)
