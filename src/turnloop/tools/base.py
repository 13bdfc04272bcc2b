"""Async Tool abstract base class for turnloop."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from turnloop.types import ToolParameter


class Tool(ABC):
    """Base class for all tools.

    Subclasses set ``name``, ``description`` and ``parameters`` as class
    attributes and implement ``execute()``.  ``execute`` returns a plain
    JSON-serializable dict; expected failures (missing file, bad input) are
    returned as ``{"error": "..."}`` rather than raised.
    """

    name: str
    description: str
    parameters: list[ToolParameter]

    # Tools that stop themselves at their own deadline and report a
    # tool-specific result; the executor then only applies a backstop.
    enforces_timeout: bool = False

    @abstractmethod
    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        """Execute the tool asynchronously."""

    def to_openai_schema(self) -> dict[str, Any]:
        """Convert to OpenAI function calling format."""
        properties: dict[str, Any] = {}
        required: list[str] = []
        for p in self.parameters:
            prop: dict[str, Any] = {"type": p.type}
            if p.description:
                prop["description"] = p.description
            if p.enum:
                prop["enum"] = p.enum
            if p.default is not None:
                prop["default"] = p.default
            properties[p.name] = prop
            if p.required:
                required.append(p.name)

        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": properties,
                    "required": required,
                    "additionalProperties": False,
                },
            },
        }
