"""
Tests for the structured audit trail.
"""

import json
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from audit_logger import AuditEvent, AuditLogger, get_audit_logger, reset_audit_logger
from classifier import MatchStatus
from log_utils import sanitize_for_logging
from review import ReviewEvent


@pytest.fixture
def audit(tmp_path):
    logger = AuditLogger(log_dir=str(tmp_path))
    yield logger
    for handler in list(logger.logger.handlers):
        handler.close()
    logger.logger.handlers.clear()


def read_events(log_dir):
    lines = (Path(log_dir) / "audit.log").read_text(encoding="utf-8").splitlines()
    # Lines look like "<time> - AUDIT - INFO - {json}"
    return [json.loads(line.split(" - ", 3)[3]) for line in lines if line.strip()]


class TestSanitizeForLogging:
    """Tests for log injection protection."""

    def test_newlines_removed(self):
        """Newlines cannot forge log entries."""
        assert sanitize_for_logging("alice\n2026-01-01 - AUDIT - fake") == "alice 2026-01-01 - AUDIT - fake"

    def test_truncated(self):
        """Long values are cut to 500 characters."""
        assert len(sanitize_for_logging("x" * 1000)) == 500

    def test_empty(self):
        """Empty values stay empty."""
        assert sanitize_for_logging("") == ""


class TestAuditLogger:
    """Tests for AuditLogger events."""

    def test_review_transition(self, audit, tmp_path):
        """Applied transitions are logged with actor and statuses."""
        audit(ReviewEvent(
            match_id="m-1",
            record_id="r1",
            entry_id="OFAC-1",
            list_code="ofac",
            previous_status=MatchStatus.PENDING_REVIEW,
            new_status=MatchStatus.CONFIRMED_MATCH,
            actor="alice\r\nINJECTED",
            at=datetime(2026, 10, 1, tzinfo=timezone.utc),
            notes="checked",
        ))
        event = read_events(tmp_path)[0]
        assert event["event_type"] == "REVIEW_TRANSITION"
        assert event["actor"] == "alice INJECTED"
        assert event["resource_id"] == "m-1"
        assert event["details"]["previous_status"] == "pending_review"
        assert event["details"]["new_status"] == "confirmed_match"

    def test_review_noop(self, audit, tmp_path):
        """Review attempts on resolved matches are logged."""
        audit.log_review_noop("m-1", "bob", "confirmed_match")
        event = read_events(tmp_path)[0]
        assert event["event_type"] == "REVIEW_NOOP"
        assert event["details"] == {"status": "confirmed_match"}

    def test_validation_failure(self, audit, tmp_path):
        """Rejected input is logged as a warning with a truncated value."""
        audit.log_validation_failure("name", "BLOCKED_CHARACTERS", input_value="<" * 100, source="/api")
        event = read_events(tmp_path)[0]
        assert event["severity"] == "WARNING"
        assert event["details"]["error_code"] == "BLOCKED_CHARACTERS"
        assert event["details"]["input"].endswith("...(truncated)")

    def test_batch_screened_counts_only(self, audit, tmp_path):
        """Batch events carry counts and lists, no names."""
        summary = {"total": 2, "clear": 1, "potentialMatches": 1, "confirmedMatches": 0, "totalMatches": 1}
        audit.log_batch_screened("b-1", summary, ("ofac", "un"))
        event = read_events(tmp_path)[0]
        assert event["details"] == {"summary": summary, "lists": ["ofac", "un"]}

    def test_event_json(self):
        """AuditEvent serializes to one JSON object."""
        data = json.loads(AuditEvent(event_type="X", details={"k": 1}).to_json())
        assert data["event_type"] == "X"
        assert data["details"] == {"k": 1}
        assert "timestamp" in data


class TestGlobalAuditLogger:
    """Tests for the process-wide instance."""

    def test_get_and_reset(self, tmp_path):
        """get_audit_logger returns one instance until reset."""
        reset_audit_logger()
        try:
            first = get_audit_logger(log_dir=str(tmp_path))
            assert get_audit_logger() is first
            reset_audit_logger()
            assert get_audit_logger(log_dir=str(tmp_path)) is not first
        finally:
            reset_audit_logger()
