"""
Tests for log file setup (milkbank.utils.logging_config).
"""
import logging

import pytest

from milkbank.utils.logging_config import TraceabilityFilter, setup_logging


APP = "mbtest"


@pytest.fixture
def app_logger(tmp_path):
    logger = setup_logging(tmp_path / "logs", app_name=APP)
    yield logger
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def log_text(tmp_path, pattern):
    files = list((tmp_path / "logs").glob(pattern))
    assert len(files) == 1
    return files[0].read_text(encoding="utf-8")


def test_traceability_and_error_files(app_logger, tmp_path):
    logging.getLogger(f"{APP}.domain.dosage").info("Batch LP-2024-05-27-001: 100.0 -> 85.0 mL")
    logging.getLogger(f"{APP}.db").info("PRAGMA foreign_keys=ON")
    logging.getLogger(f"{APP}.db").warning("Backup skipped")

    trace = log_text(tmp_path, f"{APP}_trazabilidad_*.log")
    errors = log_text(tmp_path, f"{APP}_2*.log")

    assert "100.0 -> 85.0 mL" in trace
    assert "PRAGMA" not in trace
    assert "Backup skipped" not in trace
    assert "Backup skipped" in errors
    assert "85.0 mL" not in errors


def test_setup_is_idempotent(app_logger, tmp_path):
    assert setup_logging(tmp_path / "logs", app_name=APP) is app_logger
    assert len(app_logger.handlers) == 3


@pytest.mark.parametrize("name, passes", [
    ("milkbank.domain.analysis", True),
    ("milkbank.workflows.pooling", True),
    ("milkbank.domainx", False),
    ("milkbank.repositories", False),
])
def test_filter_by_module(name, passes):
    record = logging.LogRecord(name, logging.INFO, __file__, 1, "msg", None, None)
    assert TraceabilityFilter().filter(record) is passes
