"""
Tests for structured security event logging.
"""

import json
import logging

import pytest

from security_logger import SecurityLogger, get_security_logger, sanitize_for_logging


def security_events(caplog):
    return [json.loads(r.getMessage()) for r in caplog.records if r.name == "security"]


@pytest.fixture
def security_logger():
    logger = get_security_logger()
    yield logger
    logger.clear_request_context()


class TestSanitize:
    """Log injection protection."""

    def test_newlines_removed(self):
        assert sanitize_for_logging("Siti\nFAKE ENTRY\r\nroot") == "Siti FAKE ENTRY root"

    def test_control_characters_removed(self):
        assert sanitize_for_logging("a\x00b\x1bc") == "a b c"

    def test_empty_values(self):
        assert sanitize_for_logging(None) == ""
        assert sanitize_for_logging("") == ""

    def test_long_text_truncated(self):
        assert len(sanitize_for_logging("x" * 1000)) == 500


class TestEvents:
    """JSON events written to the 'security' logger."""

    def test_validation_failure_event(self, security_logger, caplog):
        with caplog.at_level(logging.WARNING, logger="security"):
            security_logger.log_validation_failure(
                field="resident.full_name",
                error_code="BLOCKED_CHARACTERS",
                input_value="<script>" + "a" * 100,
                source="issuance.inputs",
            )

        (event,) = security_events(caplog)
        assert event["event_type"] == "VALIDATION_FAILED"
        assert event["field"] == "resident.full_name"
        assert event["error_code"] == "BLOCKED_CHARACTERS"
        assert event["sanitized_input"].endswith("...(truncated)")

    def test_access_denied_event(self, security_logger, caplog):
        with caplog.at_level(logging.WARNING, logger="security"):
            security_logger.log_access_denied(actor_id=7, resource_type="lost_document",
                                              resource_id=12, source="document_update")

        (event,) = security_events(caplog)
        assert event["event_type"] == "ACCESS_DENIED"
        assert event["context"] == {
            "actor_id": 7, "resource_type": "lost_document", "resource_id": 12, "blocked": True,
        }

    def test_request_context_attached(self, security_logger, caplog):
        rid = security_logger.set_request_context(user_id="7", source_ip="10.0.0.5")
        with caplog.at_level(logging.WARNING, logger="security"):
            security_logger.log_security_event("CONFIG_INVALID", severity="ERROR")

        (event,) = security_events(caplog)
        assert rid.startswith("REQ-")
        assert event["request_id"] == rid
        assert event["user_id"] == "7"
        assert event["source_ip"] == "10.0.0.5"

    def test_context_cleared(self, security_logger, caplog):
        security_logger.set_request_context(request_id="abc", user_id="7")
        security_logger.clear_request_context()
        with caplog.at_level(logging.WARNING, logger="security"):
            security_logger.log_security_event("CONFIG_INVALID")

        (event,) = security_events(caplog)
        assert event["request_id"] == ""
        assert event["user_id"] == ""

    def test_security_log_file(self, tmp_path):
        logger = SecurityLogger(log_dir=str(tmp_path))
        logger.log_access_denied(actor_id=1, resource_type="admin_endpoint", resource_id="")
        for handler in logger.logger.handlers:
            handler.flush()
        content = (tmp_path / "security.log").read_text(encoding="utf-8")
        assert "ACCESS_DENIED" in content
        for handler in list(logger.logger.handlers):
            handler.close()
            logger.logger.removeHandler(handler)
