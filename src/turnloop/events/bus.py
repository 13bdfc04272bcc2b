"""Async pub/sub EventBus for decoupling the agent loop from the UI."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable

from turnloop.types import AgentEvent, EventType

_logger = logging.getLogger(__name__)

# Key used for wildcard subscriptions (receive all events)
_WILDCARD = "*"

# Handlers may be sync or async callables taking an AgentEvent
Handler = Callable[[AgentEvent], Any]


class EventBus:
    """Lightweight async pub/sub event bus.

    Handlers run one after another in subscription order, so streamed
    deltas reach the display in the order they were emitted.  A failing
    handler is logged and skipped; it never breaks the agent loop.
    """

    def __init__(self, max_history: int = 500) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._history: list[AgentEvent] = []
        self._max_history = max_history

    def subscribe(self, event_type: EventType | str, handler: Handler) -> None:
        """Register *handler* for *event_type* (or ``"*"`` for all)."""
        self._handlers.setdefault(self._key(event_type), []).append(handler)

    def unsubscribe(self, event_type: EventType | str, handler: Handler) -> None:
        """Remove *handler* from *event_type*; unknown handlers are ignored."""
        handlers = self._handlers.get(self._key(event_type), [])
        if handler in handlers:
            handlers.remove(handler)

    async def emit(self, event: AgentEvent) -> None:
        """Deliver *event* to its specific handlers, then to wildcard ones."""
        self._history.append(event)
        if len(self._history) > self._max_history:
            del self._history[: len(self._history) - self._max_history]

        handlers = list(self._handlers.get(self._key(event.type), []))
        handlers.extend(self._handlers.get(_WILDCARD, []))
        for handler in handlers:
            await self._call_handler(handler, event)

    async def publish(self, event_type: EventType, **data: Any) -> None:
        """Shorthand for ``emit(AgentEvent(event_type, data))``."""
        await self.emit(AgentEvent(type=event_type, data=data))

    @property
    def history(self) -> list[AgentEvent]:
        """Return a copy of the recent event history."""
        return list(self._history)

    def of_type(self, event_type: EventType) -> list[AgentEvent]:
        """Recent events of one type, oldest first."""
        return [e for e in self._history if e.type == event_type]

    def clear(self) -> None:
        """Remove all handlers and history."""
        self._handlers.clear()
        self._history.clear()

    @staticmethod
    def _key(event_type: EventType | str) -> str:
        if isinstance(event_type, EventType):
            return event_type.value
        return str(event_type)

    @staticmethod
    async def _call_handler(handler: Handler, event: AgentEvent) -> None:
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            _logger.exception(
                "EventBus handler %s raised for event %s",
                getattr(handler, "__name__", handler),
                event.type,
            )
