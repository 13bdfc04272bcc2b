"""Built-in tools for turnloop."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from turnloop.tools.registry import ToolRegistry


def register_builtins(
    registry: ToolRegistry,
    schedule_wakeup: Callable[[float], Any],
    tool_timeout_ms: int = 30000,
) -> None:
    """Register all built-in tools with the given registry."""
    from turnloop.tools.builtin.file_ops import EditFileTool, ReadFileTool, WriteFileTool
    from turnloop.tools.builtin.shell import ExecShellTool
    from turnloop.tools.builtin.timer import SetTimeoutTool

    registry.register(SetTimeoutTool(schedule_wakeup))
    registry.register(ReadFileTool())
    registry.register(WriteFileTool())
    registry.register(EditFileTool())
    registry.register(ExecShellTool(timeout_ms=tool_timeout_ms))
