"""Orchestrator — drives one conversational turn.

    SENDING → STREAMING → EXECUTING → SENDING ... → DONE

A turn keeps looping for as long as the model keeps asking for tools.
Errors end the turn where they happen; whatever was already appended to
the conversation stays there.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from turnloop.core.context import Conversation
from turnloop.core.executor import Executor
from turnloop.events.bus import EventBus
from turnloop.llm.client import AsyncLLMClient, LLMRequestError
from turnloop.llm.response_parser import ChannelMultiplexer
from turnloop.llm.stream import decode_stream
from turnloop.persistence import ConversationStore
from turnloop.tools.registry import ToolRegistry
from turnloop.types import EventType, StreamEnd, StreamResult

_logger = logging.getLogger(__name__)


class TurnState(enum.Enum):
    SENDING = "sending"
    STREAMING = "streaming"
    EXECUTING = "executing"
    DONE = "done"


@dataclass
class TurnReport:
    """What happened during one ``run_turn()`` call."""

    states: list[TurnState] = field(default_factory=list)
    error: str | None = None

    @property
    def requests(self) -> int:
        return self.states.count(TurnState.SENDING)

    @property
    def completed(self) -> bool:
        return bool(self.states) and self.states[-1] is TurnState.DONE


class Orchestrator:
    """Request/stream/execute loop for a single turn.

    Parameters
    ----------
    conversation:
        Shared message log; the orchestrator appends assistant, reasoning
        and tool messages to it.
    client:
        Streaming LLM client.
    registry:
        Tools advertised to the model.
    system_prompt:
        Prepended to every request, never stored in the log.
    store:
        Persistence collaborator (optional).
    event_bus:
        Receives turn, stream and tool events (optional).
    tool_timeout:
        Per-call budget in milliseconds, passed to the executor.
    """

    def __init__(
        self,
        conversation: Conversation,
        client: AsyncLLMClient,
        registry: ToolRegistry,
        system_prompt: str = "",
        store: ConversationStore | None = None,
        event_bus: EventBus | None = None,
        tool_timeout: int = 30000,
    ) -> None:
        self._conversation = conversation
        self._client = client
        self._registry = registry
        self._system_prompt = system_prompt
        self._store = store
        self._event_bus = event_bus or EventBus()
        self._executor = Executor(registry, self._event_bus, tool_timeout)

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    async def run_turn(self) -> TurnReport:
        """Run until the model answers without tool calls or an error occurs."""
        report = TurnReport()
        await self._emit(EventType.TURN_STARTED, {"messages": len(self._conversation)})

        try:
            while True:
                await self._enter(report, TurnState.SENDING)
                result = await self._request_and_stream(report)

                self._conversation.append_assistant(result.content, result.tool_calls)

                if not result.has_tool_calls:
                    await self._enter(report, TurnState.DONE)
                    await self._save()
                    break

                await self._enter(report, TurnState.EXECUTING)
                outcomes = await self._executor.execute(result.tool_calls)
                for outcome in outcomes:
                    self._conversation.append_tool_result(outcome)
                await self._save()

        except (LLMRequestError, httpx.HTTPError) as e:
            report.error = str(e) or type(e).__name__
            _logger.warning("Turn aborted: %s", report.error)
            await self._emit(EventType.TURN_ERROR, {"error": report.error})
        except Exception as e:
            _logger.exception("Orchestrator error")
            report.error = f"{type(e).__name__}: {e}"
            await self._emit(EventType.TURN_ERROR, {"error": report.error})

        await self._emit(EventType.TURN_DONE, {
            "requests": report.requests,
            "error": report.error,
        })
        return report

    async def _request_and_stream(self, report: TurnReport) -> StreamResult:
        resp = await self._client.open_stream(
            self._conversation.to_payload(self._system_prompt),
            self._registry.get_openai_schemas(),
        )
        await self._enter(report, TurnState.STREAMING)
        mux = ChannelMultiplexer(self._conversation, self._event_bus)
        try:
            async for chunk in decode_stream(resp.aiter_bytes()):
                if isinstance(chunk, StreamEnd):
                    break
                await mux.feed_chunk(chunk)
        except Exception:
            # Keep any reasoning that already arrived before the failure
            await mux.finish()
            raise
        finally:
            await resp.aclose()
        return await mux.finish()

    async def _enter(self, report: TurnReport, state: TurnState) -> None:
        report.states.append(state)
        _logger.debug("Turn state -> %s", state.value)
        await self._emit(EventType.TURN_STATE, {"state": state.value})

    async def _save(self) -> None:
        if self._store:
            await self._store.save(self._conversation)

    async def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        await self._event_bus.publish(event_type, **data)
