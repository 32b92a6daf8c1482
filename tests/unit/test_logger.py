"""Tests for the logging helpers."""

import json
from pathlib import Path

import pytest
import structlog
from structlog.testing import capture_logs

from reved_compliance.utils import logger as logger_module
from reved_compliance.utils.logger import get_audit_logger, setup_logger, setup_structured_logging


@pytest.mark.unit
class TestSetupLogger:
    """Named stdlib loggers."""

    @staticmethod
    def test_logger_is_cached(tmp_path: Path) -> None:
        first = setup_logger("tests.cached", log_dir=tmp_path)
        second = setup_logger("tests.cached", log_dir=tmp_path)

        assert first is second
        assert first.propagate is False

    @staticmethod
    def test_console_handler_attached(tmp_path: Path) -> None:
        log = setup_logger("tests.handlers", log_dir=tmp_path)

        assert log.handlers


@pytest.mark.unit
class TestStructuredLogging:
    """Audit event stream."""

    @staticmethod
    def test_component_is_bound() -> None:
        with capture_logs() as logs:
            get_audit_logger("security").warning("security_alert", alert_type="suspicious_access")

        assert logs == [
            {
                "component": "security",
                "alert_type": "suspicious_access",
                "event": "security_alert",
                "log_level": "warning",
            }
        ]

    @staticmethod
    def test_json_lines_written_to_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(logger_module, "_STRUCTURED_CONFIGURED", False)
        monkeypatch.setattr(logger_module.settings.logging, "format", "json")
        log_file = tmp_path / "audit" / "events.jsonl"

        try:
            setup_structured_logging(log_file)
            get_audit_logger().info("audit_event", action="read")
        finally:
            structlog.reset_defaults()

        lines = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
        assert lines[0]["event"] == "structured_logging_configured"
        assert lines[-1]["event"] == "audit_event"
        assert lines[-1]["component"] == "audit"
        assert lines[-1]["level"] == "info"
        assert "timestamp" in lines[-1]
