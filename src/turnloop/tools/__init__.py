"""Tool system for turnloop."""

from turnloop.tools.base import Tool
from turnloop.tools.registry import ToolRegistry

__all__ = ["Tool", "ToolRegistry"]
