"""Timer tool: lets the model schedule its own wakeup."""

from __future__ import annotations

import math
from typing import Any, Callable

from turnloop.tools.base import Tool
from turnloop.types import ToolParameter


class SetTimeoutTool(Tool):
    """Schedule a wakeup message after a delay in milliseconds.

    *schedule* is called with the delay and must return immediately; the
    wakeup itself is delivered later by the turn guard.
    """

    name = "set_time_out"
    description = (
        "Schedule a wake-up for the assistant after <time> ms. "
        "When the timer expires, the model will receive a notification."
    )
    parameters = [
        ToolParameter(name="time", type="number", description="delay in ms"),
    ]

    def __init__(self, schedule: Callable[[float], Any]) -> None:
        self._schedule = schedule

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        delay = kwargs.get("time")
        if (
            not isinstance(delay, (int, float))
            or isinstance(delay, bool)
            or not math.isfinite(delay)
        ):
            return {"error": "`time` must be a finite number of milliseconds"}

        self._schedule(delay)
        return {"status": f"Timer set for {delay} ms"}
