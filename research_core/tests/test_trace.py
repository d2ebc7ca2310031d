import json
import tempfile
from pathlib import Path

from research_core.domain.models import ErrorEvent, SessionStatus
from research_core.session.trace import DebugTraceRecorder


def test_record_and_reset():
    rec = DebugTraceRecorder()
    rec.record("frame", '{"type": "progress"}')
    rec.record("event", "raw", ErrorEvent(message="boom"))
    assert len(rec) == 2
    assert rec.entries[1].derived_event == {"message": "boom", "kind": "error"}
    rec.reset()
    assert len(rec) == 0


def test_unserializable_entry_is_marked_not_dropped():
    rec = DebugTraceRecorder()
    rec.record("frame", object())
    entry = rec.entries[0]
    assert entry.raw_payload["error"] == "unserializable"
    assert "object" in entry.raw_payload["repr"]
    json.loads(rec.export())


def test_export_combines_trace_and_session_state():
    rec = DebugTraceRecorder()
    rec.record("transition", None, {"from": "idle", "to": "submitted"})
    doc = json.loads(rec.export({"status": SessionStatus.STREAMING, "steps": []}))
    assert doc["session"] == {"status": "streaming", "steps": []}
    assert doc["trace"][0]["kind"] == "transition"
    assert "exported_at" in doc


def test_write_export_names_file_with_conversation_id():
    with tempfile.TemporaryDirectory() as d:
        rec = DebugTraceRecorder()
        rec.record("frame", "x")
        path = rec.write_export(Path(d) / "out", "c-123", {"status": "completed"})
        assert path.exists()
        assert path.name.startswith("debug-trace-c-123-")
        assert path.suffix == ".json"
