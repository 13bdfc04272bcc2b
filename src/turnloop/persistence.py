"""Best-effort JSON persistence of the conversation log.

Failures are logged and swallowed: losing a save must never take down an
interactive session that still holds the conversation in memory.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from turnloop.types import Message

if TYPE_CHECKING:
    from turnloop.core.context import Conversation

_logger = logging.getLogger(__name__)


class ConversationStore:
    """Saves and loads the ordered message list at a single file path.

    A store without a path is disabled: ``save`` does nothing and ``load``
    returns an empty list.
    """

    def __init__(self, path: str | Path | None) -> None:
        self.path = Path(path).expanduser() if path else None

    @property
    def enabled(self) -> bool:
        return self.path is not None

    async def save(self, conversation: Conversation) -> bool:
        """Write *conversation*; returns ``False`` on failure or when disabled."""
        if self.path is None:
            return False
        payload = [m.to_dict() for m in conversation]
        try:
            await asyncio.to_thread(self._write, self.path, payload)
        except (OSError, TypeError, ValueError) as e:
            _logger.warning("Failed to save conversation to %s: %s", self.path, e)
            return False
        return True

    def save_sync(self, conversation: Conversation) -> bool:
        """Blocking variant for shutdown paths where no event loop is running."""
        if self.path is None:
            return False
        try:
            self._write(self.path, [m.to_dict() for m in conversation])
        except (OSError, TypeError, ValueError) as e:
            _logger.warning("Failed to save conversation to %s: %s", self.path, e)
            return False
        return True

    async def load(self) -> list[Message]:
        """Read the saved log; empty if disabled, missing or unreadable."""
        if self.path is None:
            return []
        try:
            return await asyncio.to_thread(self._read, self.path)
        except FileNotFoundError:
            return []
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            _logger.warning("Failed to load conversation from %s: %s", self.path, e)
            return []

    @staticmethod
    def _write(path: Path, payload: list[dict]) -> None:
        text = json.dumps(payload, indent=2, ensure_ascii=False)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")

    @staticmethod
    def _read(path: Path) -> list[Message]:
        raw = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(raw, list):
            raise ValueError("saved conversation is not a list")
        return [Message.from_dict(item) for item in raw]
