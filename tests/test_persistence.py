"""Tests for ConversationStore."""

from __future__ import annotations

import json

from turnloop.core.context import Conversation
from turnloop.persistence import ConversationStore
from turnloop.types import Role, ToolCall, ToolSuccess


def _sample() -> Conversation:
    conv = Conversation()
    conv.append_user("read a.txt")
    conv.append_assistant(None, [ToolCall(id="c1", name="read_file", arguments='{"path": "a.txt"}')])
    conv.append_tool_result(ToolSuccess("c1", {"content": "hi"}))
    conv.append_assistant("It says hi")
    return conv


class TestSave:
    async def test_writes_openai_shaped_json(self, tmp_path):
        path = tmp_path / "conv.json"
        store = ConversationStore(path)
        assert await store.save(_sample()) is True

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data[0] == {"role": "user", "content": "read a.txt"}
        assert data[1]["tool_calls"][0] == {
            "id": "c1",
            "type": "function",
            "function": {"name": "read_file", "arguments": '{"path": "a.txt"}'},
        }
        assert data[2]["tool_call_id"] == "c1"

    async def test_creates_parent_directories(self, tmp_path):
        path = tmp_path / "a" / "b" / "conv.json"
        assert await ConversationStore(path).save(_sample()) is True
        assert path.exists()

    async def test_disabled_store(self):
        store = ConversationStore(None)
        assert not store.enabled
        assert await store.save(_sample()) is False
        assert await store.load() == []

    async def test_unwritable_path_is_not_fatal(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        store = ConversationStore(blocker / "conv.json")
        assert await store.save(_sample()) is False

    def test_save_sync(self, tmp_path):
        path = tmp_path / "conv.json"
        assert ConversationStore(path).save_sync(_sample()) is True
        assert len(json.loads(path.read_text())) == 4


class TestLoad:
    async def test_restores_saved_messages(self, tmp_path):
        path = tmp_path / "conv.json"
        store = ConversationStore(path)
        original = _sample()
        await store.save(original)

        loaded = await store.load()
        assert [m.to_dict() for m in loaded] == [m.to_dict() for m in original]
        assert loaded[1].role is Role.ASSISTANT
        assert loaded[1].tool_calls[0].name == "read_file"

    async def test_missing_file(self, tmp_path):
        assert await ConversationStore(tmp_path / "none.json").load() == []

    async def test_corrupt_file(self, tmp_path):
        path = tmp_path / "conv.json"
        path.write_text("{not json")
        assert await ConversationStore(path).load() == []

    async def test_not_a_list(self, tmp_path):
        path = tmp_path / "conv.json"
        path.write_text('{"role": "user"}')
        assert await ConversationStore(path).load() == []

    async def test_unknown_role(self, tmp_path):
        path = tmp_path / "conv.json"
        path.write_text('[{"role": "narrator", "content": "x"}]')
        assert await ConversationStore(path).load() == []
