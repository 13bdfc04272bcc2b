"""Core agent components for turnloop."""

from turnloop.core.context import ContextMonitor, Conversation
from turnloop.core.executor import Executor
from turnloop.core.orchestrator import Orchestrator, TurnReport, TurnState
from turnloop.core.session import Session, TurnGuard

__all__ = [
    "ContextMonitor",
    "Conversation",
    "Executor",
    "Orchestrator",
    "Session",
    "TurnGuard",
    "TurnReport",
    "TurnState",
]
