import json
import tempfile
from pathlib import Path

from research_core.api import service
from research_core.infrastructure.storage.json_store import JsonConversationStore
from research_core.session.controller import SubmissionController


class FakeStream:
    def __init__(self, frames):
        self._frames = frames
        self.closed = False

    def frames(self):
        yield from self._frames

    def close(self):
        self.closed = True


class FakeProvider:
    name = "fake"

    def create_query(self, query):
        return "req-1"

    def open_stream(self, request_id):
        return FakeStream([
            json.dumps({"type": "progress", "step": 1, "trackers": {"actionState": {"action": "searching"}}}),
            json.dumps({"type": "answer", "data": {"answer": "X is Y", "evaluation": {"reason": "r", "definitive": False}}}),
        ])


def test_ask_creates_conversation_and_streams_answer(monkeypatch):
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d) / ".storage")
        monkeypatch.setattr(service, "_controller", SubmissionController(store, FakeProvider()))
        result = service.ask("What is X?")
        assert result["status"] == "completed"
        assert result["completed"] is True
        assert [m["role"] for m in result["messages"]] == ["user", "bot"]
        assert result["messages"][1]["evaluation"] == {"reason": "r", "definitive": False}
        assert result["title"] == "What is X?..."

        listed = service.list_conversations()
        assert listed[0]["id"] == result["id"]
        assert listed[0]["message_count"] == 2
        assert len(service.get_conversation_messages(result["id"])) == 2
