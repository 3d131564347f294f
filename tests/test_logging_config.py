"""Tests for structured logging helpers."""

import json
import logging
import threading

import structlog

from incidentcore.logging_config import (
    StructuredFormatter,
    current_context,
    log_context,
    with_current_context,
)

from conftest import read_log_lines


def log_record(message="Planned cluster", **extra):
    record = logging.LogRecord("incidentcore.test", logging.INFO, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def formatted(**extra):
    return json.loads(StructuredFormatter().format(log_record(**extra)))


class TestStructuredFormatter:
    """Test JSON log output."""

    def test_outputs_json(self):
        data = formatted(cluster_size=3)

        assert data["message"] == "Planned cluster"
        assert data["level"] == "INFO"
        assert data["logger"] == "incidentcore.test"
        assert data["cluster_size"] == 3
        assert "pathname" not in data

    def test_redacts_authorship_fields(self):
        data = formatted(created_by="analyst-1", api_key="k")

        assert data["created_by"] == "[REDACTED]"
        assert data["api_key"] == "[REDACTED]"

    def test_redacts_nested_fields(self):
        data = formatted(error={"error_type": "PersistenceError", "context": {"user_id": "analyst-1"}})

        assert data["error"]["error_type"] == "PersistenceError"
        assert data["error"]["context"]["user_id"] == "[REDACTED]"

    def test_arabic_kept_readable(self):
        output = StructuredFormatter().format(log_record(location="حلب"))
        assert "حلب" in output

    def test_includes_log_context(self):
        with log_context(run_id="run-1"):
            data = formatted()
        assert data["run_id"] == "run-1"


class TestLogContext:
    """Test thread-local context fields."""

    def test_restored_on_exit(self):
        with log_context(run_id="outer"):
            with log_context(run_id="inner", cluster=2):
                assert current_context() == {"run_id": "inner", "cluster": 2}
            assert current_context() == {"run_id": "outer"}
        assert current_context() == {}

    def test_context_not_shared_across_threads(self):
        seen = {}
        with log_context(run_id="run-1"):
            thread = threading.Thread(target=lambda: seen.update(plain=current_context()))
            thread.start()
            thread.join()
        assert seen["plain"] == {}

    def test_with_current_context_carries_fields(self):
        seen = {}
        with log_context(run_id="run-1"):
            task = with_current_context(lambda: seen.update(wrapped=current_context()))
        thread = threading.Thread(target=task)
        thread.start()
        thread.join()
        assert seen["wrapped"] == {"run_id": "run-1"}


class TestSetupLogging:
    """Test structlog events routed through stdlib handlers."""

    def test_event_keys_become_fields(self, configured_logging):
        structlog.get_logger("incidentcore.test.events").info("merge_planned", cluster_size=2)

        data = read_log_lines(configured_logging)[-1]
        assert data["message"] == "merge_planned"
        assert data["cluster_size"] == 2
        assert data["logger"] == "incidentcore.test.events"

    def test_record_attribute_names_are_prefixed(self, configured_logging):
        structlog.get_logger("incidentcore.test.reserved").info(
            "batch_processed", created=1, name="x", message="m", merged=2
        )

        data = read_log_lines(configured_logging)[-1]
        assert data["message"] == "batch_processed"
        assert data["event_created"] == 1
        assert data["event_name"] == "x"
        assert data["event_message"] == "m"
        assert data["merged"] == 2
