"""Orchestrator tests against a mocked OpenAI-compatible endpoint.

Uses ``httpx.MockTransport`` so the full request → SSE decode → multiplex
→ execute path runs without a server.
"""

from __future__ import annotations

import json

import httpx
import pytest

from turnloop.config import AgentConfig
from turnloop.core.context import Conversation
from turnloop.core.orchestrator import Orchestrator, TurnState
from turnloop.events.bus import EventBus
from turnloop.llm.client import AsyncLLMClient
from turnloop.persistence import ConversationStore
from turnloop.tools.base import Tool
from turnloop.tools.registry import ToolRegistry
from turnloop.types import EventType, Role, ToolParameter


class EchoTool(Tool):
    name = "echo"
    description = "Echo input"
    parameters = [ToolParameter(name="text", type="string", description="Text to echo")]

    async def execute(self, **kwargs):
        return {"echo": kwargs.get("text", "")}


def _sse(*deltas: dict) -> bytes:
    lines = [
        "data: " + json.dumps({"choices": [{"index": 0, "delta": d}]})
        for d in deltas
    ]
    lines.append("data: [DONE]")
    return ("\n\n".join(lines) + "\n\n").encode()


def _tool_delta(index=0, id=None, name=None, arguments=None) -> dict:
    part: dict = {"index": index, "function": {}}
    if id:
        part["id"] = id
        part["type"] = "function"
    if name:
        part["function"]["name"] = name
    if arguments:
        part["function"]["arguments"] = arguments
    return {"tool_calls": [part]}


class _Server:
    """Replays canned responses and records request bodies."""

    def __init__(self, *responses) -> None:
        self._responses = list(responses)
        self.requests: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, int):
            return httpx.Response(item, text="error")
        return httpx.Response(200, content=item, headers={"content-type": "text/event-stream"})


class _BrokenStream(httpx.AsyncByteStream):
    """Yields some bytes, then fails like a dropped connection."""

    def __init__(self, head: bytes) -> None:
        self._head = head

    async def __aiter__(self):
        yield self._head
        raise httpx.ReadError("connection reset")


def _make_orchestrator(server, store=None, bus=None, retry_count=3):
    config = AgentConfig(retry_count=retry_count, retry_backoff=0.0)
    bus = bus or EventBus()
    client = AsyncLLMClient(config, transport=httpx.MockTransport(server), event_bus=bus)
    registry = ToolRegistry()
    registry.register(EchoTool())
    conversation = Conversation()
    orch = Orchestrator(
        conversation, client, registry,
        system_prompt="You are a test.", store=store, event_bus=bus,
    )
    return orch, conversation, client


# ---------------------------------------------------------------------------
# Plain responses
# ---------------------------------------------------------------------------

class TestPlainTurn:
    async def test_content_only(self):
        server = _Server(_sse({"role": "assistant"}, {"content": "Hi"}, {"content": " there"}))
        orch, conv, client = _make_orchestrator(server)
        conv.append_user("hello")

        report = await orch.run_turn()
        await client.close()

        assert report.completed
        assert report.error is None
        assert report.states == [TurnState.SENDING, TurnState.STREAMING, TurnState.DONE]
        assert [m.role for m in conv] == [Role.USER, Role.ASSISTANT]
        assert conv[-1].content == "Hi there"
        assert conv[-1].tool_calls is None

    async def test_payload_shape(self):
        server = _Server(_sse({"content": "ok"}))
        orch, conv, client = _make_orchestrator(server)
        conv.append_user("hello")
        await orch.run_turn()
        await client.close()

        body = server.requests[0]
        assert body["model"] == "gpt-oss-20b"
        assert body["stream"] is True
        assert body["max_tokens"] == -1
        assert body["temperature"] == 0.7
        assert body["messages"][0] == {"role": "system", "content": "You are a test."}
        assert body["messages"][1] == {"role": "user", "content": "hello"}
        assert [t["function"]["name"] for t in body["tools"]] == ["echo"]

    async def test_empty_response_appends_empty_assistant(self):
        server = _Server(_sse())
        orch, conv, client = _make_orchestrator(server)
        conv.append_user("hello")
        report = await orch.run_turn()
        await client.close()

        assert report.completed
        assert conv[-1].role is Role.ASSISTANT
        assert conv[-1].content is None

    async def test_stream_without_done_marker(self):
        body = b'data: {"choices":[{"delta":{"content":"cut"}}]}\n'
        server = _Server(body)
        orch, conv, client = _make_orchestrator(server)
        conv.append_user("hello")
        report = await orch.run_turn()
        await client.close()

        assert report.completed
        assert conv[-1].content == "cut"

    async def test_reasoning_before_content(self):
        server = _Server(_sse({"reasoning": "hmm"}, {"reasoning": "..."}, {"content": "answer"}))
        orch, conv, client = _make_orchestrator(server)
        conv.append_user("q")
        await orch.run_turn()
        await client.close()

        assert [m.content for m in conv] == ["q", "<thinking>hmm...</thinking>", "answer"]


# ---------------------------------------------------------------------------
# Tool loop
# ---------------------------------------------------------------------------

class TestToolLoop:
    async def test_tool_call_then_answer(self):
        server = _Server(
            _sse(
                _tool_delta(0, id="call_1", name="echo"),
                _tool_delta(0, arguments='{"text":'),
                _tool_delta(0, arguments=' "hi"}'),
            ),
            _sse({"content": "done"}),
        )
        orch, conv, client = _make_orchestrator(server)
        conv.append_user("echo hi")

        report = await orch.run_turn()
        await client.close()

        assert report.requests == 2
        assert report.states == [
            TurnState.SENDING, TurnState.STREAMING, TurnState.EXECUTING,
            TurnState.SENDING, TurnState.STREAMING, TurnState.DONE,
        ]
        assert [m.role for m in conv] == [Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT]
        call = conv[1].tool_calls[0]
        assert (call.id, call.name, call.arguments) == ("call_1", "echo", '{"text": "hi"}')
        assert conv[2].tool_call_id == "call_1"
        assert json.loads(conv[2].content) == {"echo": "hi"}
        assert conv[3].content == "done"

        second = server.requests[1]["messages"]
        assert second[2]["tool_calls"][0]["function"]["arguments"] == '{"text": "hi"}'
        assert second[3] == {
            "role": "tool",
            "content": '{"echo": "hi"}',
            "tool_call_id": "call_1",
        }

    async def test_failed_tool_is_reported_to_model(self):
        server = _Server(
            _sse(_tool_delta(0, id="c", name="missing", arguments="{}")),
            _sse({"content": "sorry"}),
        )
        orch, conv, client = _make_orchestrator(server)
        conv.append_user("go")
        report = await orch.run_turn()
        await client.close()

        assert report.completed
        assert json.loads(conv[2].content) == {"error": 'Unknown tool "missing"'}

    async def test_reasoning_then_tool_calls(self):
        server = _Server(
            _sse({"reasoning": "use echo"}, _tool_delta(0, id="c", name="echo", arguments="{}")),
            _sse({"content": "ok"}),
        )
        orch, conv, client = _make_orchestrator(server)
        conv.append_user("go")
        await orch.run_turn()
        await client.close()

        assert conv[1].content == "<thinking>use echo</thinking>"
        assert conv[2].tool_calls is not None
        assert conv[3].role is Role.TOOL


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

class TestFailures:
    async def test_http_error_exhausts_retries(self):
        bus = EventBus()
        server = _Server(500, 500, 500)
        orch, conv, client = _make_orchestrator(server, bus=bus)
        conv.append_user("hello")

        report = await orch.run_turn()
        await client.close()

        assert report.error == "HTTP 500"
        assert not report.completed
        assert len(server.requests) == 3
        assert len(conv) == 1
        assert len(bus.of_type(EventType.LLM_RETRY)) == 3
        assert bus.of_type(EventType.TURN_ERROR)[0].data["error"] == "HTTP 500"
        assert len(bus.of_type(EventType.TURN_DONE)) == 1

    async def test_retry_then_success(self):
        server = _Server(503, _sse({"content": "recovered"}))
        orch, conv, client = _make_orchestrator(server)
        conv.append_user("hello")
        report = await orch.run_turn()
        await client.close()

        assert report.completed
        assert len(server.requests) == 2
        assert conv[-1].content == "recovered"

    async def test_connect_error_is_retried(self):
        server = _Server(httpx.ConnectError("refused"), _sse({"content": "up"}))
        orch, conv, client = _make_orchestrator(server)
        conv.append_user("hello")
        report = await orch.run_turn()
        await client.close()

        assert report.completed
        assert conv[-1].content == "up"

    async def test_failure_after_tool_round_keeps_history(self):
        server = _Server(
            _sse(_tool_delta(0, id="c", name="echo", arguments='{"text": "x"}')),
            500,
        )
        orch, conv, client = _make_orchestrator(server, retry_count=1)
        conv.append_user("go")
        report = await orch.run_turn()
        await client.close()

        assert report.error == "HTTP 500"
        assert [m.role for m in conv] == [Role.USER, Role.ASSISTANT, Role.TOOL]

    async def test_stream_dropped_mid_reasoning(self):
        head = b'data: {"choices":[{"delta":{"reasoning":"partial"}}]}\n\n'

        def handler(request):
            return httpx.Response(200, stream=_BrokenStream(head))

        config = AgentConfig(retry_backoff=0.0)
        client = AsyncLLMClient(config, transport=httpx.MockTransport(handler))
        conv = Conversation()
        conv.append_user("go")
        orch = Orchestrator(conv, client, ToolRegistry())

        report = await orch.run_turn()
        await client.close()

        assert report.error is not None
        assert [m.content for m in conv] == ["go", "<thinking>partial</thinking>"]


# ---------------------------------------------------------------------------
# Persistence and events
# ---------------------------------------------------------------------------

class TestSideEffects:
    async def test_conversation_saved_after_turn(self, tmp_path):
        path = tmp_path / "conv.json"
        server = _Server(_sse({"content": "saved"}))
        orch, conv, client = _make_orchestrator(server, store=ConversationStore(path))
        conv.append_user("hello")
        await orch.run_turn()
        await client.close()

        data = json.loads(path.read_text())
        assert [m["role"] for m in data] == ["user", "assistant"]
        assert data[1]["content"] == "saved"

    async def test_nothing_saved_on_failure(self, tmp_path):
        path = tmp_path / "conv.json"
        server = _Server(500)
        orch, conv, client = _make_orchestrator(
            server, store=ConversationStore(path), retry_count=1,
        )
        conv.append_user("hello")
        await orch.run_turn()
        await client.close()

        assert not path.exists()

    async def test_event_sequence(self):
        bus = EventBus()
        server = _Server(_sse({"content": "a"}))
        orch, conv, client = _make_orchestrator(server, bus=bus)
        conv.append_user("hello")
        await orch.run_turn()
        await client.close()

        types = [e.type for e in bus.history]
        assert types[0] is EventType.TURN_STARTED
        assert types[-1] is EventType.TURN_DONE
        assert EventType.SECTION_START in types
        assert EventType.CONTENT_DELTA in types
        states = [e.data["state"] for e in bus.of_type(EventType.TURN_STATE)]
        assert states == ["sending", "streaming", "done"]
