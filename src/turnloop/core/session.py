"""Session state and the turn guard.

Exactly one turn may be in flight.  User input waits for the guard;
timer wakeups that fire mid-turn are queued and drained FIFO, each as its
own full turn, once the in-flight turn settles.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from turnloop.core.context import Conversation
from turnloop.core.orchestrator import Orchestrator
from turnloop.events.bus import EventBus
from turnloop.types import EventType, PendingWakeup

_logger = logging.getLogger(__name__)

WAKEUP_MESSAGE = "[SYSTEM: Timer wakeup triggered]"


def deferred_wakeup_message(wakeup: PendingWakeup) -> str:
    queued_at = datetime.fromtimestamp(wakeup.timestamp, tz=timezone.utc)
    iso = queued_at.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return f"[SYSTEM: Deferred timer wakeup (queued at {iso})]"


@dataclass
class Session:
    """Process-wide conversation state, owned by the command loop."""

    conversation: Conversation = field(default_factory=Conversation)
    is_processing: bool = False
    pending_wakeups: deque[PendingWakeup] = field(default_factory=deque)


class TurnGuard:
    """Admits one turn at a time against a :class:`Session`.

    Usage::

        guard = TurnGuard(session, orchestrator)
        await guard.submit("hello")          # user turn
        guard.schedule(5000)                 # timer wakeup in 5 s
    """

    def __init__(
        self,
        session: Session,
        orchestrator: Orchestrator,
        event_bus: EventBus | None = None,
    ) -> None:
        self.session = session
        self._orchestrator = orchestrator
        self._event_bus = event_bus
        self._idle = asyncio.Event()
        self._idle.set()
        self._timers: set[asyncio.TimerHandle] = set()
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def busy(self) -> bool:
        return self.session.is_processing

    async def wait_idle(self) -> None:
        """Return once no turn is in flight and no wakeups are queued."""
        while self.session.is_processing:
            await self._idle.wait()

    async def process_pending_and_send(
        self,
        message: str | None = None,
        prepare: Callable[[], Awaitable[Any]] | None = None,
    ) -> bool:
        """Run a turn, then drain queued wakeups.

        Returns ``False`` without doing anything if a turn is already in
        flight.  *prepare* runs after admission, before *message* (a user
        message) is appended; the context monitor hooks in here.

        Wakeups queued meanwhile are drained even if *prepare* or the turn
        raises; the error is re-raised afterwards.  Cancellation skips the
        drain.
        """
        if self.session.is_processing:
            return False
        self.session.is_processing = True
        self._idle.clear()
        try:
            try:
                if prepare is not None:
                    await prepare()
                if message is not None:
                    self.session.conversation.append_user(message)
                await self._orchestrator.run_turn()
            except asyncio.CancelledError:
                raise
            except Exception:
                _logger.warning("Turn failed before settling; draining %d queued wakeup(s)",
                                len(self.session.pending_wakeups))
                await self._drain_wakeups()
                raise
            await self._drain_wakeups()
        finally:
            self.session.is_processing = False
            self._idle.set()
        return True

    async def _drain_wakeups(self) -> None:
        while self.session.pending_wakeups:
            wakeup = self.session.pending_wakeups.popleft()
            self.session.conversation.append_user(deferred_wakeup_message(wakeup))
            await self._emit(EventType.WAKEUP_FIRED, {
                "deferred": True,
                "queued_at": wakeup.timestamp,
            })
            await self._orchestrator.run_turn()

    async def submit(
        self,
        text: str,
        prepare: Callable[[], Awaitable[Any]] | None = None,
    ) -> None:
        """Append a user message and run its turn, waiting for any turn in flight."""
        while True:
            await self.wait_idle()
            if await self.process_pending_and_send(text, prepare):
                return

    async def on_timer(self) -> None:
        """Timer expiry: queue if a turn is in flight, otherwise start one."""
        if self.session.is_processing:
            wakeup = PendingWakeup()
            self.session.pending_wakeups.append(wakeup)
            _logger.debug("Timer fired mid-turn; queued (%d pending)",
                          len(self.session.pending_wakeups))
            await self._emit(EventType.WAKEUP_QUEUED, {
                "queued_at": wakeup.timestamp,
                "pending": len(self.session.pending_wakeups),
            })
            return
        await self.process_pending_and_send(
            WAKEUP_MESSAGE,
            prepare=lambda: self._emit(EventType.WAKEUP_FIRED, {"deferred": False}),
        )

    def schedule(self, delay_ms: float) -> None:
        """Call :meth:`on_timer` after *delay_ms* without blocking the caller."""
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle

        def _fire() -> None:
            self._timers.discard(handle)
            task = loop.create_task(self.on_timer())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        handle = loop.call_later(max(0.0, delay_ms) / 1000, _fire)
        self._timers.add(handle)

    @property
    def pending_timers(self) -> int:
        return len(self._timers)

    def close(self) -> None:
        """Cancel timers that have not fired yet."""
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()

    async def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self._event_bus:
            await self._event_bus.publish(event_type, **data)
