"""Executor — validates and runs a batch of tool calls.

Calls run one at a time in request order so that side effects (file
writes, shell commands) happen in the order the model asked for them.
Every call yields exactly one outcome; nothing a single call does can
abort the rest of the batch.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from turnloop.events.bus import EventBus
from turnloop.tools.registry import ToolRegistry
from turnloop.types import EventType, ToolCall, ToolFailure, ToolOutcome, ToolSuccess

_logger = logging.getLogger(__name__)

# Extra seconds granted to tools that enforce their own deadline
_SELF_TIMED_GRACE = 1.0


def parse_arguments(raw: str) -> dict[str, Any]:
    """Parse a call's raw argument text; empty text means no arguments.

    Raises ``ValueError`` for invalid JSON or a non-object payload.
    """
    if not raw or not raw.strip():
        return {}
    args = json.loads(raw)
    if not isinstance(args, dict):
        raise ValueError(f"expected a JSON object, got {type(args).__name__}")
    return args


class Executor:
    """Runs tool calls against the registry.

    Parameters
    ----------
    registry:
        Available tools.
    event_bus:
        Receives ``TOOL_EXECUTING`` / ``TOOL_EXECUTED`` / ``TOOL_ERROR``.
    tool_timeout:
        Per-call time budget in milliseconds (``<= 0`` disables it).
    """

    def __init__(
        self,
        registry: ToolRegistry,
        event_bus: EventBus | None = None,
        tool_timeout: int = 30000,
    ) -> None:
        self._registry = registry
        self._event_bus = event_bus
        self._timeout = tool_timeout / 1000 if tool_timeout > 0 else None

    async def execute(self, tool_calls: list[ToolCall]) -> list[ToolOutcome]:
        """Run *tool_calls* sequentially; returns one outcome per call, in order."""
        outcomes: list[ToolOutcome] = []
        for tc in tool_calls:
            await self._emit(EventType.TOOL_EXECUTING, {
                "id": tc.id,
                "tool": tc.name,
                "arguments": tc.arguments,
            })
            outcome = await self._run_one(tc)
            if isinstance(outcome, ToolSuccess):
                await self._emit(EventType.TOOL_EXECUTED, {
                    "id": tc.id,
                    "tool": tc.name,
                    "result": outcome.result,
                })
            else:
                _logger.info("Tool %s (%s) failed: %s", tc.name, tc.id, outcome.error)
                await self._emit(EventType.TOOL_ERROR, {
                    "id": tc.id,
                    "tool": tc.name,
                    "error": outcome.error,
                })
            outcomes.append(outcome)
        return outcomes

    async def _run_one(self, tc: ToolCall) -> ToolOutcome:
        try:
            args = parse_arguments(tc.arguments)
        except ValueError:
            # json.JSONDecodeError is a ValueError subclass
            return ToolFailure(tc.id, f"Invalid JSON for {tc.name}: {tc.arguments}")

        tool = self._registry.get(tc.name)
        if tool is None:
            return ToolFailure(tc.id, f'Unknown tool "{tc.name}"')

        timeout = self._timeout
        if timeout is not None and tool.enforces_timeout:
            timeout += _SELF_TIMED_GRACE
        try:
            result = await asyncio.wait_for(tool.execute(**args), timeout=timeout)
        except asyncio.TimeoutError:
            return ToolFailure(
                tc.id, f"Tool '{tc.name}' timed out after {timeout:g}s",
            )
        except Exception as e:
            _logger.debug("Tool %s raised", tc.name, exc_info=True)
            return ToolFailure(tc.id, f"{type(e).__name__}: {e}" if str(e) else type(e).__name__)
        return ToolSuccess(tc.id, result)

    async def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self._event_bus:
            await self._event_bus.publish(event_type, **data)
