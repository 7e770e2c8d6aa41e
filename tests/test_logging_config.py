from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from docqa.logging_config import AUDIT_LOGGER_NAME, MinimalJSONFormatter, configure_logging
from docqa.telemetry import log_event


def _record(msg: object, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord("docqa.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_emits_compact_json() -> None:
    payload = json.loads(MinimalJSONFormatter().format(_record("hello")))

    assert payload["level"] == "INFO"
    assert payload["module"] == "docqa.test"
    assert payload["message"] == "hello"
    assert payload["ts"].endswith("Z")


def test_formatter_merges_dict_messages_and_extras() -> None:
    payload = json.loads(MinimalJSONFormatter().format(_record({"step": "index.add", "count": 3}, req_id="abc")))

    assert payload["step"] == "index.add"
    assert payload["count"] == 3
    assert payload["req_id"] == "abc"
    assert "message" not in payload


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    audit = logging.getLogger(AUDIT_LOGGER_NAME)
    saved = (root.handlers[:], root.level, audit.handlers[:], audit.propagate, audit.level)
    yield
    for handler in audit.handlers:
        if handler not in saved[2]:
            handler.close()
    root.handlers[:], root.level = saved[0], saved[1]
    audit.handlers[:], audit.propagate, audit.level = saved[2], saved[3], saved[4]


def test_audit_records_go_to_their_own_file(tmp_path: Path, restore_logging) -> None:
    audit_path = tmp_path / "audit" / "ingest.log"
    configure_logging("WARNING", audit_log_path=audit_path)

    logging.getLogger(AUDIT_LOGGER_NAME).info({"event": "ingest", "document_id": "doc-1"})
    for handler in logging.getLogger(AUDIT_LOGGER_NAME).handlers:
        handler.flush()

    lines = audit_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    record = json.loads(lines[0])
    assert record["event"] == "ingest"
    assert record["document_id"] == "doc-1"
    assert not logging.getLogger(AUDIT_LOGGER_NAME).propagate


def test_log_event_builds_structured_payload(caplog: pytest.LogCaptureFixture) -> None:
    logger = logging.getLogger("docqa.test.events")
    with caplog.at_level(logging.INFO, logger="docqa.test.events"):
        log_event(logger, "retriever.search", req_id="r1", duration_ms=1.23456, details={"top_k": 5})

    event = caplog.records[-1].msg
    assert event == {
        "step": "retriever.search",
        "module": "docqa.test.events",
        "req_id": "r1",
        "duration_ms": 1.235,
        "details": {"top_k": 5},
    }
