"""
Unit tests for the shared structlog configuration.
"""

import json
import logging

import structlog

from services.common.logging_config import (
    EnhancedTextRenderer,
    RequestContextFilter,
    add_request_context,
    add_service_context,
    get_logger,
    request_id_var,
    setup_service_logging,
    user_id_var,
)


class TestContextProcessors:
    def setup_method(self):
        request_id_var.set("uninitialized")
        user_id_var.set("anonymous")

    def test_request_context_skips_defaults(self):
        event_dict = add_request_context(None, "info", {"event": "hello"})
        assert "request_id" not in event_dict
        assert "user_id" not in event_dict

    def test_request_context_adds_values(self):
        request_id_var.set("req-1234")
        user_id_var.set("user-123")
        event_dict = add_request_context(None, "info", {"event": "hello"})
        assert event_dict["request_id"] == "req-1234"
        assert event_dict["user_id"] == "user-123"

    def test_service_context_from_logger_name(self):
        event_dict = add_service_context(
            None, "info", {"logger": "services.sessions.api.schedules"}
        )
        assert event_dict["service"] == "sessions"

    def test_service_context_ignores_foreign_loggers(self):
        event_dict = add_service_context(None, "info", {"logger": "uvicorn.error"})
        assert "service" not in event_dict

    def test_filter_copies_context_to_record(self):
        request_id_var.set("req-9")
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
        assert RequestContextFilter().filter(record) is True
        assert record.request_id == "req-9"
        assert record.user_id == "anonymous"


class TestEnhancedTextRenderer:
    def setup_method(self):
        self.renderer = EnhancedTextRenderer("sessions")

    def test_renders_core_fields(self):
        line = self.renderer(
            None,
            "info",
            {
                "timestamp": "2025-01-15T10:00:00Z",
                "level": "info",
                "logger": "services.sessions.services.scheduler",
                "event": "Joined occurrence",
                "request_id": "abcdef123456",
                "user_id": "user-123",
                "occurrence_id": "occ_1",
            },
        )
        assert line.startswith("2025-01-15T10:00:00Z [sessions] [INFO] [3456]")
        assert "sessions.services.scheduler - Joined occurrence | User: user-123" in line
        assert line.endswith("| occurrence_id=occ_1")

    def test_truncates_long_values(self):
        line = self.renderer(None, "info", {"event": "x", "payload": ["a" * 500]})
        payload = line.split("payload=", 1)[1]
        assert len(payload) == 150


class TestSetupServiceLogging:
    def setup_method(self):
        self.root_handlers = list(logging.getLogger().handlers)
        self.root_level = logging.getLogger().level
        self.record_factory = logging.getLogRecordFactory()

    def teardown_method(self):
        structlog.reset_defaults()
        root = logging.getLogger()
        root.handlers = self.root_handlers
        root.setLevel(self.root_level)
        logging.setLogRecordFactory(self.record_factory)

    def test_json_output(self, capsys):
        setup_service_logging("sessions", log_level="INFO", log_format="json")
        get_logger("services.sessions.tests").info("Schedule created", user_id="u1")

        lines = [line for line in capsys.readouterr().out.splitlines() if line]
        record = json.loads(lines[-1])
        assert record["event"] == "Schedule created"
        assert record["service"] == "sessions"
        assert record["level"] == "info"
        assert "timestamp" in record

    def test_text_output(self, capsys):
        setup_service_logging("sessions", log_level="DEBUG", log_format="text")
        get_logger("services.sessions.tests").debug("Countdown tick", status="ready")

        out = capsys.readouterr().out
        assert "[sessions] [DEBUG]" in out
        assert "status=ready" in out

    def test_level_filters_lower_records(self, capsys):
        setup_service_logging("sessions", log_level="WARNING", log_format="json")
        get_logger("services.sessions.tests").info("quiet")
        assert "quiet" not in capsys.readouterr().out
