"""Tests for logging setup and helpers."""

from __future__ import annotations

import pytest

from dsu_sideloader import logging as logging_module


@pytest.fixture
def captured_records():
    """Replace all sinks with an in-memory sink."""
    logging_module.logger.remove()
    records: list[dict] = []

    def sink(message):
        records.append(message.record)

    logging_module.logger.add(sink, level="TRACE", enqueue=False)
    yield records
    logging_module.logger.remove()


def test_setup_logging_creates_log_files(tmp_path):
    """Test file sinks are created in the requested directory."""
    log_dir = tmp_path / "logs"
    logging_module.setup_logging(debug=True, trace=False, log_dir=log_dir)

    log = logging_module.get_logger(source="test", tags=["unit"])
    log.info("Info message")
    logging_module.logger.complete()
    logging_module.logger.remove()

    assert (log_dir / "operations.log").exists()
    assert (log_dir / "debug.log").exists()
    assert (log_dir / "structured.jsonl").exists()
    assert not (log_dir / "trace.log").exists()
    assert "Info message" in (log_dir / "operations.log").read_text()


def test_get_logger_preserves_context_metadata(captured_records):
    """Test bound logger keeps job_id, tags, and source metadata."""
    log = logging_module.get_logger(job_id="dsu-1234", tags=["install"], source="writer")
    log.info("Context test")

    record = captured_records[0]
    assert record["extra"]["job_id"] == "dsu-1234"
    assert record["extra"]["tags"] == ["install"]
    assert record["extra"]["source"] == "writer"


def test_installer_logger_context(captured_records):
    log = logging_module.LoggerFactory.for_installer("dsu-abcd")
    log.info("hello")

    extra = captured_records[0]["extra"]
    assert extra["job_id"] == "dsu-abcd"
    assert extra["source"] == "installer"
    assert "install" in extra["tags"]


def test_combined_filter_blocks_progress_above_trace():
    """Test combined filter suppresses chunk progress above TRACE level."""
    record = {
        "message": "system: 12%",
        "extra": {"tags": ["install", "progress"]},
        "level": logging_module.logger.level("DEBUG"),
    }

    assert logging_module._combined_filter(record) is False

    record["level"] = logging_module.logger.level("TRACE")
    assert logging_module._combined_filter(record) is True

    record["level"] = logging_module.logger.level("INFO")
    assert logging_module._combined_filter(record) is True


def test_combined_filter_blocks_command_output_above_trace():
    record = {
        "message": "stdout: installing",
        "extra": {"tags": ["privileged", "shell"]},
        "level": logging_module.logger.level("DEBUG"),
    }

    assert logging_module._combined_filter(record) is False

    record["level"] = logging_module.logger.level("WARNING")
    assert logging_module._combined_filter(record) is True


def test_throttled_logger_emits_first_call_then_waits(captured_records, mocker):
    clock = mocker.patch.object(logging_module, "time")
    clock.monotonic.side_effect = [100.0, 101.0, 106.0]
    throttled = logging_module.ThrottledLogger(
        logging_module.get_logger(source="test"), interval_seconds=5.0
    )

    throttled.debug("system", "first")
    throttled.debug("system", "suppressed")
    throttled.debug("system", "second")

    assert [record["message"] for record in captured_records] == ["first", "second"]


def test_throttled_logger_keys_are_independent(captured_records):
    throttled = logging_module.ThrottledLogger(
        logging_module.get_logger(source="test"), interval_seconds=60.0
    )

    throttled.debug("system", "system progress")
    throttled.debug("vendor", "vendor progress")

    assert len(captured_records) == 2


def test_event_logger_fields(captured_records):
    log = logging_module.get_logger(source="test")

    logging_module.EventLogger.log_partition_installed(log, "vendor", 4096)
    logging_module.EventLogger.log_installation_finished(log, "succeeded", 12.3456)

    installed, finished = captured_records
    assert installed["extra"]["event_type"] == "partition_installed"
    assert installed["extra"]["partition"] == "vendor"
    assert installed["extra"]["size_bytes"] == 4096
    assert finished["extra"]["state"] == "succeeded"
    assert finished["extra"]["duration_seconds"] == 12.35


def test_event_logger_keeps_braces_in_values(captured_records):
    """Test that partition names are substituted, not parsed as templates."""
    log = logging_module.get_logger(source="test")

    logging_module.EventLogger.log_partition_installed(log, "{x}", 10)

    assert captured_records[0]["message"] == "Partition {x} installed"
    assert captured_records[0]["extra"]["partition"] == "{x}"
