"""Registry of named tools advertised to the model."""

from __future__ import annotations

import logging
from typing import Any

from turnloop.tools.base import Tool

_logger = logging.getLogger(__name__)


class ToolRegistry:
    """Name → tool lookup plus schema export.

    Execution lives in :class:`turnloop.core.executor.Executor`; the
    registry only knows what exists.
    """

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool instance, replacing any tool with the same name."""
        if tool.name in self._tools:
            _logger.warning("Replacing already registered tool: %s", tool.name)
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def tool_names(self) -> list[str]:
        return list(self._tools.keys())

    def get_openai_schemas(self) -> list[dict[str, Any]]:
        """Return OpenAI function-calling schemas for all registered tools."""
        return [t.to_openai_schema() for t in self._tools.values()]
