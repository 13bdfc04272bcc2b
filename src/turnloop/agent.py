"""Agent — wires config, client, tools, orchestrator and guard together."""

from __future__ import annotations

import logging

import httpx

from turnloop.config import AgentConfig
from turnloop.core.context import ContextMonitor, Conversation
from turnloop.core.orchestrator import Orchestrator
from turnloop.core.session import Session, TurnGuard
from turnloop.events.bus import EventBus
from turnloop.llm.client import AsyncLLMClient
from turnloop.persistence import ConversationStore
from turnloop.tools.builtin import register_builtins
from turnloop.tools.registry import ToolRegistry

_logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """\
You are an AI assistant whose primary goal is to help users complete any task \
that can be achieved with the tools available to you. Follow these principles:

1. **Tool-First Action**
   - If a user's request matches one of your built-in capabilities, use the \
appropriate tool immediately and return the result in a clear, concise format.

2. **Graceful Fallback**
   - When a task is outside the scope of your current tools or you lack \
necessary information, politely ask the user for clarification or an \
alternative approach before proceeding.

3. **Tone & Clarity**
   - Respond in a friendly, professional manner. Keep explanations brief but \
complete, and structure outputs (e.g., tables, bullet points) when helpful.

4. **Self-Check**
   - After executing a tool, confirm the output meets user expectations; if \
not, prompt for additional detail or corrections.

5. **Transparency**
   - If you're unsure whether a task is doable with your tools, explicitly \
state that limitation and request guidance from the user."""


class Agent:
    """One conversation for one process lifetime.

    Parameters
    ----------
    config:
        Runtime configuration.
    event_bus:
        Shared bus; the display subscribes to it.
    transport:
        Optional httpx transport override (tests).
    """

    def __init__(
        self,
        config: AgentConfig,
        event_bus: EventBus | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        system_prompt: str = SYSTEM_PROMPT,
    ) -> None:
        self.config = config
        self.event_bus = event_bus or EventBus()
        self.session = Session()
        self.store = ConversationStore(config.save_path)
        self.client = AsyncLLMClient(config, transport=transport, event_bus=self.event_bus)
        self.registry = ToolRegistry()
        self.orchestrator = Orchestrator(
            self.session.conversation,
            self.client,
            self.registry,
            system_prompt=system_prompt,
            store=self.store,
            event_bus=self.event_bus,
            tool_timeout=config.tool_timeout,
        )
        self.guard = TurnGuard(self.session, self.orchestrator, self.event_bus)
        self.monitor = ContextMonitor(
            self.session.conversation,
            self.client,
            system_prompt=system_prompt,
            context_window=config.context_window,
            max_history=config.max_history,
            store=self.store,
            event_bus=self.event_bus,
        )
        register_builtins(self.registry, self.guard.schedule, config.tool_timeout)
        _logger.debug("Registered tools: %s", ", ".join(self.registry.tool_names()))

    @property
    def conversation(self) -> Conversation:
        return self.session.conversation

    async def load(self) -> int:
        """Restore a saved conversation; returns the number of messages loaded."""
        messages = await self.store.load()
        if messages:
            self.conversation.replace(messages)
            _logger.info("Loaded %d messages from %s", len(messages), self.store.path)
        return len(messages)

    async def save(self) -> bool:
        return await self.store.save(self.conversation)

    async def clear(self) -> None:
        self.conversation.clear()
        await self.save()

    async def close(self) -> None:
        self.guard.close()
        await self.client.close()
