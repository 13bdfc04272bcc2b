"""Terminal rendering of agent events."""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console

from turnloop.types import AgentEvent, EventType

_BOX_WIDTH = 60


def truncate(text: str, max_len: int = 200) -> str:
    if len(text) <= max_len:
        return text
    return text[:max_len] + "..."


class StreamingDisplay:
    """Renders agent events as boxed sections in real time.

    Subscribe :meth:`handle` to the event bus wildcard.
    """

    def __init__(self, con: Console) -> None:
        self.con = con

    # ------------------------------------------------------------------
    # Section primitives
    # ------------------------------------------------------------------

    def section(self, title: str) -> None:
        padding = max(0, _BOX_WIDTH - 6 - len(title))
        self.con.print(
            f"\n┌─── {title} {'─' * padding}┐",
            style="bold cyan", markup=False, highlight=False,
        )

    def line(self, content: str, style: str | None = None) -> None:
        self.con.print(f"│ {content}", style=style, markup=False, highlight=False)

    def section_end(self) -> None:
        self.con.print(f"\n└{'─' * _BOX_WIDTH}┘", style="bold cyan", highlight=False)

    def stream(self, text: str, style: str | None = None) -> None:
        self.con.print(text, end="", style=style, markup=False, highlight=False, soft_wrap=True)

    # ------------------------------------------------------------------
    # Event handler
    # ------------------------------------------------------------------

    def handle(self, event: AgentEvent) -> None:
        data = event.data

        if event.type == EventType.SECTION_START:
            self.section(data.get("title", ""))

        elif event.type == EventType.SECTION_END:
            self.section_end()

        elif event.type == EventType.CONTENT_DELTA:
            self.stream(data.get("text", ""))

        elif event.type == EventType.REASONING_DELTA:
            self.stream(data.get("text", ""), style="dim italic")

        elif event.type == EventType.TOOL_NAMED:
            self.line(f"[{data.get('position')}] {data.get('name')}", style="yellow")

        elif event.type == EventType.TOOL_EXECUTING:
            self.section(f"Tool: {data.get('tool')}")
            self.line(f"ID: {data.get('id')}")
            self.line(f"Args: {truncate(str(data.get('arguments', '')), 100)}")

        elif event.type == EventType.TOOL_EXECUTED:
            self.line(f"✓ Result: {truncate(_dump(data.get('result')), 150)}", style="green")
            self.section_end()

        elif event.type == EventType.TOOL_ERROR:
            self.line(f"✗ Error: {data.get('error')}", style="red")
            self.section_end()

        elif event.type == EventType.LLM_RETRY:
            self.con.print(
                f"⚠  Attempt {data.get('attempt')}/{data.get('attempts')} "
                f"failed: {data.get('error')}",
                style="yellow", markup=False, highlight=False,
            )

        elif event.type == EventType.TURN_ERROR:
            self.con.print(
                f"\n⚠  Error: {data.get('error')}",
                style="red", markup=False, highlight=False,
            )

        elif event.type == EventType.CONTEXT_SUMMARIZED:
            self.section("Summarizing Conversation")
            self.line("✓ Conversation summarized successfully", style="green")
            self.section_end()

        elif event.type == EventType.CONTEXT_SUMMARY_FAILED:
            self.section("Summarizing Conversation")
            self.line(f"✗ Failed to summarize: {data.get('error')}", style="red")
            self.section_end()

        elif event.type == EventType.WAKEUP_FIRED:
            label = "deferred timer wakeup" if data.get("deferred") else "timer wakeup"
            self.con.print(f"\n[magenta]⏰ {label}[/magenta]")


def _dump(value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)
