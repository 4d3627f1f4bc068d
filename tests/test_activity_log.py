"""Activity log sink tests."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from credit_rating.activity.sink import (
    ActivityLogError,
    InMemoryActivityLog,
    JsonlFileActivityLog,
    get_activity_log,
    record_activity,
)


class _BrokenSink:
    def record(self, username: str, action: str, description: str, metadata: Any = None) -> None:
        raise ActivityLogError("disk full")


class TestJsonlFileActivityLog:
    def test_appends_one_line_per_entry(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "activity.jsonl"
        sink = JsonlFileActivityLog(str(path))

        sink.record("author-1", "template_created", "Created template", {"template_id": "t1"})
        sink.record("approver-1", "template_approved", "Approved template")

        lines = path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        first = json.loads(lines[0])
        assert first["username"] == "author-1"
        assert first["action"] == "template_created"
        assert first["metadata"] == {"template_id": "t1"}
        assert first["timestamp"].endswith("Z")
        assert json.loads(lines[1])["metadata"] == {}

    def test_path_from_environment(self, tmp_path: Path) -> None:
        sink = JsonlFileActivityLog()
        assert sink.file_path == tmp_path / "activity.jsonl"

    def test_unwritable_path_raises(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        sink = JsonlFileActivityLog(str(blocker / "activity.jsonl"))

        with pytest.raises(ActivityLogError):
            sink.record("u", "a", "d")


class TestRecordActivity:
    def test_records_to_sink(self) -> None:
        sink = InMemoryActivityLog()

        record_activity(sink, "u", "template_created", "desc", {"template_id": "t"})

        assert sink.actions() == ["template_created"]
        assert sink.entries[0]["metadata"] == {"template_id": "t"}

    def test_swallows_sink_failure(self, caplog: pytest.LogCaptureFixture) -> None:
        record_activity(_BrokenSink(), "u", "template_created", "desc")

        assert "Failed to record activity template_created" in caplog.text

    def test_none_sink_is_a_no_op(self) -> None:
        record_activity(None, "u", "a", "d")

    def test_default_sink_is_jsonl_without_database(self) -> None:
        assert isinstance(get_activity_log(), JsonlFileActivityLog)
