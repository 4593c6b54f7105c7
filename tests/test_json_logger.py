import io
import json
from pathlib import Path

import pytest

from order_watch.json_logger import JsonLogger, log_event, timed_event


def _events(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


def test_events_carry_session_and_bound_context() -> None:
    stream = io.StringIO()
    logger = JsonLogger(session_id="abc", stream=stream, log_file_path=None)
    child = logger.bind(component="monitor")

    log_event(logger=child, phase="poll", message="Found unseen orders", count=2)

    (event,) = _events(stream)
    assert event["session_id"] == "abc"
    assert event["component"] == "monitor"
    assert event["phase"] == "poll"
    assert event["status"] == "ok"
    assert event["count"] == 2
    assert "ts" in event


def test_japanese_text_is_written_unescaped() -> None:
    stream = io.StringIO()
    logger = JsonLogger(session_id="abc", stream=stream, log_file_path=None)

    logger.warn(phase="detail", message="注文ID missing")

    assert "注文ID" in stream.getvalue()


def test_log_file_receives_events_and_close_stops_output(tmp_path: Path) -> None:
    stream = io.StringIO()
    log_path = tmp_path / "logs" / "events.jsonl"
    logger = JsonLogger(session_id="abc", stream=stream, log_file_path=str(log_path))

    logger.info(phase="init", message="starting")
    logger.close()
    logger.info(phase="init", message="ignored")

    lines = log_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    assert json.loads(lines[0])["message"] == "starting"
    assert len(_events(stream)) == 1


def test_timed_event_logs_failure_and_reraises() -> None:
    stream = io.StringIO()
    logger = JsonLogger(session_id="abc", stream=stream, log_file_path=None)

    with pytest.raises(ValueError):
        with timed_event(logger=logger, phase="sink", message="Upsert"):
            raise ValueError("boom")

    (event,) = _events(stream)
    assert event["status"] == "error"
    assert event["message"] == "Upsert failed: boom"
    assert "duration_ms" in event
