"""Conversation state and the context-budget monitor.

``Conversation`` is the single ordered message log.  It is only ever
appended to during a turn; wholesale replacement happens through
summarisation, ``clear`` or loading a saved session.
"""

from __future__ import annotations

import json
import logging
import math
from typing import TYPE_CHECKING, Any, Iterator

from turnloop.events.bus import EventBus
from turnloop.types import EventType, Message, Role, ToolCall, ToolOutcome

if TYPE_CHECKING:
    from turnloop.llm.client import AsyncLLMClient
    from turnloop.persistence import ConversationStore

_logger = logging.getLogger(__name__)

# Rough chars-per-token ratio for budget estimation
_CHARS_PER_TOKEN = 4

# Fraction of the context window that triggers a summarisation offer
_CONTEXT_THRESHOLD = 0.9

_SUMMARY_REQUEST = (
    "Please provide a concise summary of our conversation so far, capturing "
    "all key points, decisions, and context needed to continue. This will "
    "replace the detailed history."
)
_SUMMARY_TEMPERATURE = 0.3
_SUMMARY_MAX_TOKENS = 2000


def estimate_tokens(text: str | None) -> int:
    """Rough token count estimate (0 for empty text)."""
    if not text:
        return 0
    return math.ceil(len(text) / _CHARS_PER_TOKEN)


def format_summary(summary: str) -> str:
    return f"[CONVERSATION SUMMARY]\n{summary}\n[END SUMMARY - Conversation continues below]"


class Conversation:
    """Ordered message log shared by the orchestrator and the command loop."""

    def __init__(self, messages: list[Message] | None = None) -> None:
        self._messages: list[Message] = list(messages or [])

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]

    @property
    def messages(self) -> list[Message]:
        """A copy of the log."""
        return list(self._messages)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def append_user(self, content: str) -> None:
        self._messages.append(Message(role=Role.USER, content=content))

    def append_assistant(
        self,
        content: str | None,
        tool_calls: list[ToolCall] | None = None,
    ) -> None:
        self._messages.append(Message(
            role=Role.ASSISTANT,
            content=content or None,
            tool_calls=list(tool_calls) if tool_calls else None,
        ))

    def append_reasoning(self, text: str) -> None:
        """Record a completed reasoning segment as its own assistant message."""
        self._messages.append(Message(
            role=Role.ASSISTANT, content=f"<thinking>{text}</thinking>",
        ))

    def append_tool_result(self, outcome: ToolOutcome) -> None:
        self._messages.append(Message(
            role=Role.TOOL,
            content=outcome.to_content(),
            tool_call_id=outcome.call_id,
        ))

    def replace(self, messages: list[Message]) -> None:
        self._messages = list(messages)

    def clear(self) -> None:
        self._messages = []

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def to_payload(self, system_prompt: str | None = None) -> list[dict[str, Any]]:
        """OpenAI-format message list, optionally prefixed with the system prompt."""
        payload = [m.to_dict() for m in self._messages]
        if system_prompt:
            payload.insert(0, {"role": Role.SYSTEM.value, "content": system_prompt})
        return payload

    def estimate_tokens(self, system_prompt: str = "") -> int:
        """Estimate prompt tokens including serialized tool-call payloads."""
        total = estimate_tokens(system_prompt)
        for msg in self._messages:
            content: Any = msg.content
            if isinstance(content, str):
                total += estimate_tokens(content)
            elif content:
                total += estimate_tokens(json.dumps(content))
            if msg.tool_calls:
                total += estimate_tokens(
                    json.dumps([tc.to_dict() for tc in msg.tool_calls])
                )
        return total


class ContextMonitor:
    """Watches the conversation size and condenses it on request.

    Parameters
    ----------
    conversation:
        The shared log.
    client:
        LLM client used for the one-off summarisation request.
    system_prompt:
        Included in both the estimate and the summarisation request.
    context_window:
        Model context size in tokens.
    max_history:
        Message-count cap; ``<= 0`` disables the check.
    """

    def __init__(
        self,
        conversation: Conversation,
        client: AsyncLLMClient,
        system_prompt: str,
        context_window: int,
        max_history: int = -1,
        store: ConversationStore | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._conversation = conversation
        self._client = client
        self._system_prompt = system_prompt
        self._context_window = context_window
        self._max_history = max_history
        self._store = store
        self._event_bus = event_bus

    def token_usage(self) -> int:
        return self._conversation.estimate_tokens(self._system_prompt)

    def check(self) -> str | None:
        """Return why summarisation should be offered, or ``None``."""
        tokens = self.token_usage()
        if tokens > self._context_window * _CONTEXT_THRESHOLD:
            return (
                f"Context window nearly full ({tokens}/{self._context_window} tokens)"
            )
        count = len(self._conversation)
        if self._max_history > 0 and count > self._max_history:
            return f"Max history exceeded ({count}/{self._max_history} entries)"
        return None

    async def summarize(self) -> bool:
        """Replace the conversation with a model-written summary.

        Returns ``True`` on success.  Any failure leaves the conversation
        exactly as it was.
        """
        messages = self._conversation.to_payload(self._system_prompt)
        messages.append({"role": Role.USER.value, "content": _SUMMARY_REQUEST})
        try:
            summary = await self._client.complete(
                messages,
                temperature=_SUMMARY_TEMPERATURE,
                max_tokens=_SUMMARY_MAX_TOKENS,
            )
        except Exception as e:
            _logger.warning("Summarization failed: %s", e)
            await self._emit(EventType.CONTEXT_SUMMARY_FAILED, {"error": str(e)})
            return False

        before = len(self._conversation)
        self._conversation.replace([
            Message(role=Role.ASSISTANT, content=format_summary(summary)),
        ])
        _logger.info("Summarized %d messages", before)
        await self._emit(EventType.CONTEXT_SUMMARIZED, {
            "messages_before": before,
            "summary_length": len(summary),
        })
        if self._store:
            await self._store.save(self._conversation)
        return True

    async def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self._event_bus:
            await self._event_bus.publish(event_type, **data)
