"""Async shell command execution tool for turnloop."""

from __future__ import annotations

import asyncio
import os
import signal
from typing import Any

from turnloop.tools.base import Tool
from turnloop.types import ToolParameter

# Per-stream output cap
MAX_OUTPUT_BYTES = 10 * 1024 * 1024

_READ_SIZE = 64 * 1024


def _decode(raw: bytes) -> str:
    text = raw[:MAX_OUTPUT_BYTES].decode(errors="replace")
    if len(raw) > MAX_OUTPUT_BYTES:
        text += f"\n[... {len(raw) - MAX_OUTPUT_BYTES} bytes truncated]"
    return text


async def _pump(stream: asyncio.StreamReader | None, sink: bytearray) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(_READ_SIZE)
        if not chunk:
            return
        sink.extend(chunk)


def _kill_tree(proc: asyncio.subprocess.Process) -> None:
    """Kill the shell and everything it started."""
    try:
        if os.name != "nt":
            os.killpg(os.getpgid(proc.pid), signal.SIGKILL)
        else:
            proc.kill()
    except (ProcessLookupError, OSError):
        pass  # already gone


class ExecShellTool(Tool):
    """Run a shell command and report stdout, stderr and the exit code.

    Output is collected as it arrives, so a command killed at the deadline
    still reports what it printed before that.
    """

    name = "exec_shell"
    parameters = [
        ToolParameter(
            name="command",
            type="string",
            description="Shell command to execute",
        ),
    ]
    enforces_timeout = True

    def __init__(self, timeout_ms: int = 30000) -> None:
        self.timeout_ms = timeout_ms
        self.description = (
            "Execute a shell command. Returns stdout, stderr, exit code. "
            f"Timeout: {timeout_ms}ms."
        )

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        command = kwargs.get("command", "")
        if not command:
            return {"error": "No command provided", "stdout": "", "stderr": "", "code": -1}

        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            # Own process group so the whole tree can be killed at the deadline
            start_new_session=os.name != "nt",
        )
        stdout, stderr = bytearray(), bytearray()
        timeout = self.timeout_ms / 1000 if self.timeout_ms > 0 else None
        try:
            await asyncio.wait_for(
                asyncio.gather(
                    _pump(proc.stdout, stdout),
                    _pump(proc.stderr, stderr),
                    proc.wait(),
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            return {
                "error": f"Command timed out after {self.timeout_ms}ms",
                "stdout": _decode(bytes(stdout)),
                "stderr": _decode(bytes(stderr)),
                "code": -1,
            }
        finally:
            # Also reached when the executor cancels us at its own deadline
            if proc.returncode is None:
                _kill_tree(proc)
                await proc.wait()

        code = proc.returncode if proc.returncode is not None else -1
        result: dict[str, Any] = {
            "stdout": _decode(bytes(stdout)),
            "stderr": _decode(bytes(stderr)),
            "code": code,
        }
        if code != 0:
            result = {"error": f"Command failed with exit code {code}: {command}", **result}
        return result
