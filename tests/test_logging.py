"""Tests for logging setup and helpers."""

from __future__ import annotations

import sys

import pytest

from backup_vm import logging as logging_module


@pytest.fixture(autouse=True)
def restore_logger():
    yield
    logging_module.logger.remove()
    logging_module.logger.add(sys.stderr)


def _capture() -> list[dict]:
    records: list[dict] = []
    logging_module.logger.add(lambda message: records.append(message.record), level="TRACE")
    return records


def test_setup_logging_creates_operations_log(tmp_path):
    """Test INFO records reach operations.log."""
    log_dir = tmp_path / "logs"
    logging_module.setup_logging(log_dir=log_dir)

    logging_module.get_logger(source="test").info("Backup of VM 1234 finished")
    logging_module.logger.complete()

    content = (log_dir / "operations.log").read_text()
    assert "Backup of VM 1234 finished" in content
    assert not (log_dir / "debug.log").exists()


def test_setup_logging_debug_log(tmp_path):
    """Test --debug adds a debug.log with DEBUG records."""
    log_dir = tmp_path / "logs"
    logging_module.setup_logging(debug=True, log_dir=log_dir)

    logging_module.get_logger(source="test").debug("Running command: kpartx -av x")
    logging_module.logger.complete()

    assert "kpartx -av x" in (log_dir / "debug.log").read_text()
    assert "kpartx -av x" not in (log_dir / "operations.log").read_text()


def test_setup_logging_without_log_dir(tmp_path):
    """Test an unusable log directory only disables file logging."""
    blocker = tmp_path / "logs"
    blocker.write_text("not a directory")

    logging_module.setup_logging(log_dir=blocker / "sub")

    logging_module.get_logger(source="test").info("still logging")


def test_get_logger_preserves_context_metadata():
    """Test bound logger keeps job_id, tags, and source metadata."""
    logging_module.logger.remove()
    records = _capture()

    log = logging_module.get_logger(job_id="job-123", tags=["lvm"], source="lvm")
    log.info("Context test")

    record = records[0]
    assert record["extra"]["job_id"] == "job-123"
    assert record["extra"]["tags"] == ["lvm"]
    assert record["extra"]["source"] == "lvm"


class TestOperationContext:
    """Tests for operation_context()."""

    def test_logs_start_and_finish(self):
        logging_module.logger.remove()
        records = _capture()

        with logging_module.operation_context("backup", vm_id="1234") as log:
            log.info("inside")

        assert [r["message"] for r in records] == [
            "Backup started",
            "inside",
            "Backup finished",
        ]
        job_ids = {r["extra"]["job_id"] for r in records}
        assert len(job_ids) == 1
        assert records[1]["extra"]["vm_id"] == "1234"

    def test_logs_abort_and_reraises(self):
        logging_module.logger.remove()
        records = _capture()

        with pytest.raises(RuntimeError, match="kpartx"):
            with logging_module.operation_context("backup"):
                raise RuntimeError("kpartx failed")

        aborted = records[-1]
        assert aborted["message"] == "Backup aborted"
        assert aborted["level"].name == "ERROR"
        assert aborted["extra"]["error_type"] == "RuntimeError"


class TestLoggerFactory:
    @pytest.mark.parametrize(
        "factory, source",
        [
            (logging_module.LoggerFactory.for_lvm, "lvm"),
            (logging_module.LoggerFactory.for_pipeline, "pipeline"),
            (logging_module.LoggerFactory.for_system, "system"),
        ],
    )
    def test_source_is_bound(self, factory, source):
        logging_module.logger.remove()
        records = _capture()

        factory().info("hello")

        assert records[0]["extra"]["source"] == source

