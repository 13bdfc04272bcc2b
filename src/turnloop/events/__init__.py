"""Event bus for decoupling the agent loop from the terminal display."""

from turnloop.events.bus import EventBus

__all__ = ["EventBus"]
