"""Tests for logging setup and helpers."""

from __future__ import annotations

import pytest

from cvd2img import logging as logging_module


@pytest.fixture
def records():
    logging_module.logger.remove()
    captured: list[dict] = []

    def sink(message):
        captured.append(message.record)

    logging_module.logger.add(sink, level="TRACE")
    yield captured
    logging_module.logger.remove()


def test_setup_logging_writes_operations_log(tmp_path):
    """Test INFO records reach operations.log when a log dir is given."""
    log_dir = tmp_path / "logs"
    logging_module.setup_logging(log_dir=log_dir)

    logging_module.get_logger(source="test").info("Creating system.img disk image")
    logging_module.get_logger(source="test").debug("hidden")
    logging_module.logger.remove()

    text = (log_dir / "operations.log").read_text()
    assert "Creating system.img disk image" in text
    assert "hidden" not in text
    assert not (log_dir / "debug.log").exists()


def test_setup_logging_debug_log(tmp_path):
    log_dir = tmp_path / "logs"
    logging_module.setup_logging(debug=True, log_dir=log_dir)

    logging_module.get_logger(source="test").debug("command line")
    logging_module.logger.remove()

    assert "command line" in (log_dir / "debug.log").read_text()


def test_setup_logging_without_log_dir_creates_no_files(tmp_path, monkeypatch):
    monkeypatch.setattr(logging_module, "DEFAULT_LOG_DIR", None)
    logging_module.setup_logging()
    assert list(tmp_path.iterdir()) == []
    logging_module.logger.remove()


def test_get_logger_preserves_context_metadata(records):
    """Test bound logger keeps job_id, tags, and source metadata."""
    log = logging_module.get_logger(job_id="job-123", tags=["assembly"], source="assembly")
    log.info("Context test")

    record = records[0]
    assert record["extra"]["job_id"] == "job-123"
    assert record["extra"]["tags"] == ["assembly"]
    assert record["extra"]["source"] == "assembly"


def test_operation_context_logs_success(records):
    with logging_module.operation_context("system_image") as log:
        log.info("working")

    messages = [record["message"] for record in records]
    assert messages[0] == "system_image started"
    assert "working" in messages
    assert messages[-1].startswith("system_image completed")
    assert records[-1]["level"].name == "SUCCESS"


def test_operation_context_logs_and_reraises_failure(records):
    with pytest.raises(RuntimeError, match="boom"):
        with logging_module.operation_context("vbmeta"):
            raise RuntimeError("boom")

    assert records[-1]["level"].name == "ERROR"
    assert "vbmeta failed" in records[-1]["message"]
    assert records[-1]["extra"]["error_type"] == "RuntimeError"


def test_chunk_filter_only_passes_trace():
    trace = {"extra": {"tags": ["assembly", "chunk"]}, "level": logging_module.logger.level("TRACE")}
    debug = {"extra": {"tags": ["assembly", "chunk"]}, "level": logging_module.logger.level("DEBUG")}
    other = {"extra": {"tags": ["assembly"]}, "level": logging_module.logger.level("INFO")}
    assert logging_module._should_log_chunk(trace)
    assert not logging_module._should_log_chunk(debug)
    assert logging_module._should_log_chunk(other)


def test_logger_factory_sources(records):
    logging_module.LoggerFactory.for_sparse().info("a")
    logging_module.LoggerFactory.for_partitions().info("b")
    logging_module.LoggerFactory.for_assembly("assemble-1").info("c")

    assert [record["extra"]["source"] for record in records] == ["sparse", "gpt", "assembly"]
    assert records[2]["extra"]["job_id"] == "assemble-1"
