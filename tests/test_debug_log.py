from __future__ import annotations

import json

from geocascade.kernel.debug_log import DebugLogWriter
from geocascade.kernel.eventbus import EventBus


def _read_records(writer):
    lines = writer.active_log_file.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines if line.strip()]


def test_debug_log_rotation_respects_size_and_max_files(tmp_path):
    writer = DebugLogWriter(
        logs_dir=tmp_path / "logs",
        enabled=True,
        log_format="jsonl",
        max_file_bytes=256,
        max_files=2,
        redaction="none",
    )

    for idx in range(40):
        writer.write_entry(
            level="info",
            component="loader",
            context_id="ctx-rotation",
            message="rotation-{0}".format(idx),
            data={"blob": "x" * 80, "idx": idx},
        )

    status = writer.status()
    assert status["logs_enabled"] is True
    assert status["logs_format"] == "jsonl"
    assert status["logs_active_size_bytes"] > 0
    assert status["logs_max_file_bytes"] == 256
    assert len(status["logs_rotated_files"]) == 2
    assert not (tmp_path / "logs" / "debug.log.jsonl.3").exists()


def test_debug_log_fail_open_tracks_write_errors(tmp_path):
    blocked_path = tmp_path / "not-a-dir"
    blocked_path.write_text("file", encoding="utf-8")
    writer = DebugLogWriter(logs_dir=blocked_path, enabled=True, max_file_bytes=1024, max_files=2)

    writer.write_entry(
        level="info",
        component="loader",
        context_id="ctx-fail-open",
        message="should not raise",
        data={"token": "secret"},
    )

    assert writer.status()["logs_write_errors"] >= 1


def test_default_redaction_masks_secrets(tmp_path):
    writer = DebugLogWriter(logs_dir=tmp_path, enabled=True, redaction="default")

    writer.write_entry(
        level="info",
        component="remote",
        context_id="ctx",
        message="GET /countries?api_key=abc123",
        data={
            "api_token": "tok-1",
            "headers": {"Authorization": "Bearer xyz"},
            "note": "sent Bearer xyz to server",
            "url": "http://geo.test/states?token=t0p&page=2",
            "parent_id": 7,
        },
    )

    record = _read_records(writer)[0]
    dumped = json.dumps(record)
    assert "abc123" not in dumped
    assert "tok-1" not in dumped
    assert "xyz" not in dumped
    assert "t0p" not in dumped
    assert record["data"]["parent_id"] == 7
    assert record["data"]["url"].endswith("&page=2")


def test_strict_redaction_masks_all_strings(tmp_path):
    writer = DebugLogWriter(logs_dir=tmp_path, enabled=True, redaction="strict")

    writer.write_entry(
        level="info",
        component="loader",
        context_id="ctx",
        message="plain",
        data={"name": "Texas", "count": 3},
    )

    record = _read_records(writer)[0]
    assert record["data"]["name"] == "***REDACTED***"
    assert record["data"]["count"] == 3


def test_disabled_writer_writes_nothing(tmp_path):
    writer = DebugLogWriter(logs_dir=tmp_path / "logs", enabled=False)

    writer.write_entry(level="info", component="loader", context_id="ctx", message="skip")

    assert not writer.active_log_file.exists()
    assert writer.status()["logs_active_size_bytes"] == 0


def test_bus_events_are_logged_with_levels(tmp_path):
    writer = DebugLogWriter(logs_dir=tmp_path, enabled=True)
    bus = EventBus(context_id="ctx-events")
    bus.subscribe("*", writer.write_event)

    bus.emit("load.started", {"level": "country", "parent_id": -1})
    bus.emit("load.failed", {"level": "country", "error": "timed out"})

    records = _read_records(writer)
    assert [record["event_type"] for record in records] == ["load.started", "load.failed"]
    assert records[0]["component"] == "load"
    assert records[0]["context_id"] == "ctx-events"
    assert records[1]["level"] == "error"


def test_unknown_log_format_falls_back_to_jsonl(tmp_path):
    writer = DebugLogWriter(logs_dir=tmp_path, enabled=True, log_format="xml")

    writer.write_entry(level="info", component="loader", context_id="ctx", message="kept")

    assert writer.status()["logs_format"] == "jsonl"
    assert _read_records(writer)[0]["message"] == "kept"
