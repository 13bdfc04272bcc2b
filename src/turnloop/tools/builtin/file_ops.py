"""Async file operation tools for turnloop."""

from __future__ import annotations

import asyncio
import base64
import binascii
import re
from pathlib import Path
from typing import Any

from turnloop.tools.base import Tool
from turnloop.types import ToolParameter

_LINE_SPLIT = re.compile(r"\r?\n")

_ENCODINGS = ["utf8", "ascii", "base64"]


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class ReadFileTool(Tool):
    """Read a text file, optionally a range of lines."""

    name = "read_file"
    description = (
        "Read a text file and return its contents. "
        "Optional start_line (0-based) and end_line (exclusive); "
        "negative values count from the end."
    )
    parameters = [
        ToolParameter(name="path", type="string", description="File system path"),
        ToolParameter(
            name="start_line",
            type="integer",
            description="Start line index (0-based)",
            required=False,
        ),
        ToolParameter(
            name="end_line",
            type="integer",
            description="End line index (exclusive)",
            required=False,
        ),
    ]

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        path = kwargs.get("path", "")
        start_line = kwargs.get("start_line", 0)
        end_line = kwargs.get("end_line")

        if not path:
            return {"error": "No path provided"}

        def _read() -> dict[str, Any]:
            try:
                text = Path(path).expanduser().read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                return {"error": str(e)}

            lines = _LINE_SPLIT.split(text)
            # Negative bounds count from the end, for both start and end
            start = start_line if _is_int(start_line) else 0
            end = end_line if _is_int(end_line) else None
            selected = lines[start:end]
            return {
                "content": "\n".join(selected),
                "total_lines": len(lines),
                "returned_lines": len(selected),
            }

        return await asyncio.to_thread(_read)


class WriteFileTool(Tool):
    """Write or append text to a file."""

    name = "write_file"
    description = (
        "Write text to a file. By default it overwrites; use `append:true` to append."
    )
    parameters = [
        ToolParameter(name="path", type="string", description="File system path"),
        ToolParameter(
            name="content",
            type="string",
            description="Text to write",
            required=False,
        ),
        ToolParameter(
            name="encoding",
            type="string",
            required=False,
            default="utf8",
            enum=_ENCODINGS,
        ),
        ToolParameter(
            name="append",
            type="boolean",
            description="Append instead of overwrite",
            required=False,
            default=False,
        ),
    ]

    @staticmethod
    def _encode(content: str, encoding: str) -> bytes:
        if encoding == "utf8":
            return content.encode("utf-8")
        if encoding == "ascii":
            return content.encode("ascii", errors="replace")
        if encoding == "base64":
            return base64.b64decode(content, validate=False)
        raise ValueError(f"Unsupported encoding: {encoding}")

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        path = kwargs.get("path", "")
        content = kwargs.get("content") or ""
        encoding = kwargs.get("encoding") or "utf8"
        append = bool(kwargs.get("append", False))

        if not path:
            return {"error": "No path provided"}
        try:
            data = self._encode(str(content), encoding)
        except (ValueError, binascii.Error) as e:
            return {"error": str(e)}

        def _write() -> dict[str, Any]:
            try:
                with open(Path(path).expanduser(), "ab" if append else "wb") as f:
                    f.write(data)
            except OSError as e:
                return {"error": str(e)}
            return {"status": "success", "bytes_written": len(data)}

        return await asyncio.to_thread(_write)


class EditFileTool(Tool):
    """Find-and-replace every exact occurrence of a string in a file."""

    name = "edit_file"
    description = (
        "Find-and-replace in a file. Replaces all occurrences and returns the count."
    )
    parameters = [
        ToolParameter(name="path", type="string", description="File system path"),
        ToolParameter(name="find", type="string", description="String to find (exact match)"),
        ToolParameter(name="replace", type="string", description="Replacement string"),
    ]

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        path = kwargs.get("path", "")
        find = kwargs.get("find") or ""
        replace = kwargs.get("replace") or ""

        if not find:
            return {"error": "'find' must be a non-empty string"}

        def _edit() -> dict[str, Any]:
            p = Path(path).expanduser()
            try:
                text = p.read_text(encoding="utf-8")
                count = text.count(find)
                if count == 0:
                    return {
                        "status": "no_match",
                        "replacements": 0,
                        "message": "String not found in file",
                    }
                p.write_text(text.replace(find, replace), encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                return {"error": str(e)}
            return {"status": "edited", "replacements": count}

        return await asyncio.to_thread(_edit)
