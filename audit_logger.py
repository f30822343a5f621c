"""
Audit Event Logging Module

Provides structured logging for events a compliance team must be able
to reconstruct:
- Review transitions (who resolved which match, when, and how)
- Review attempts on already-resolved matches
- Rejected input
- Completed batches (counts only, never names)

User-supplied values are sanitized before logging.
"""

import json
import logging
from dataclasses import dataclass, field as dataclass_field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from log_utils import sanitize_for_logging


@dataclass
class AuditEvent:
    """Structured audit event for logging"""
    event_type: str  # REVIEW_TRANSITION, REVIEW_NOOP, VALIDATION_FAILED, BATCH_SCREENED
    severity: str = "INFO"
    actor: str = ""
    resource_type: str = ""
    resource_id: str = ""
    details: Dict[str, Any] = dataclass_field(default_factory=dict)
    timestamp: str = dataclass_field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp,
            'event_type': self.event_type,
            'severity': self.severity,
            'actor': self.actor,
            'resource_type': self.resource_type,
            'resource_id': self.resource_id,
            'details': self.details,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


class AuditLogger:
    """Writes audit events as JSON lines to logs/audit.log

    An instance is callable, so it can be registered directly as a
    ReviewWorkflow listener.
    """

    def __init__(
        self,
        log_dir: str = "logs",
        log_level: int = logging.INFO,
        enable_console: bool = False,
        enable_file: bool = True
    ):
        """Initialize audit logger

        Args:
            log_dir: Directory for log files
            log_level: Minimum log level to record
            enable_console: Also output to console
            enable_file: Write to audit.log file
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.logger = logging.getLogger('audit')
        self.logger.setLevel(log_level)
        self.logger.propagate = False
        for handler in list(self.logger.handlers):
            handler.close()
        self.logger.handlers.clear()

        formatter = logging.Formatter('%(asctime)s - AUDIT - %(levelname)s - %(message)s')

        if enable_file:
            file_handler = logging.FileHandler(self.log_dir / "audit.log", encoding='utf-8')
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

        if enable_console:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(log_level)
            console_handler.setFormatter(formatter)
            self.logger.addHandler(console_handler)

    def _sanitize_input(self, text: Any, max_length: int = 200) -> str:
        if text is None or text == "":
            return ""
        sanitized = sanitize_for_logging(str(text))
        if len(sanitized) > max_length:
            return sanitized[:max_length] + "...(truncated)"
        return sanitized

    def _sanitize_context(self, context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Sanitize every value of a context dict, recursing into nested dicts"""
        if not context:
            return {}

        sanitized: Dict[str, Any] = {}
        for key, value in context.items():
            safe_key = self._sanitize_input(key, max_length=100) or "unknown"
            if value is None or isinstance(value, (bool, int, float)):
                sanitized[safe_key] = value
            elif isinstance(value, dict):
                sanitized[safe_key] = self._sanitize_context(value)
            elif isinstance(value, (list, tuple)):
                sanitized[safe_key] = [
                    item if isinstance(item, (bool, int, float, type(None)))
                    else self._sanitize_input(item)
                    for item in value
                ]
            else:
                sanitized[safe_key] = self._sanitize_input(value)
        return sanitized

    def _emit(self, event: AuditEvent) -> None:
        if event.severity == "ERROR":
            self.logger.error(event.to_json())
        elif event.severity == "WARNING":
            self.logger.warning(event.to_json())
        else:
            self.logger.info(event.to_json())

    def log_review_transition(self, event) -> None:
        """Log an applied review transition (a ReviewEvent)"""
        self._emit(AuditEvent(
            event_type="REVIEW_TRANSITION",
            actor=self._sanitize_input(event.actor),
            resource_type="screening_match",
            resource_id=event.match_id,
            details=self._sanitize_context({
                'record_id': event.record_id,
                'entry_id': event.entry_id,
                'list_code': event.list_code,
                'previous_status': event.previous_status.value,
                'new_status': event.new_status.value,
                'at': event.at.isoformat(),
                'notes': event.notes,
            }),
        ))

    __call__ = log_review_transition

    def log_review_noop(self, match_id: str, actor: str, status: str) -> None:
        """Log a review attempt on a match that was already resolved"""
        self._emit(AuditEvent(
            event_type="REVIEW_NOOP",
            actor=self._sanitize_input(actor),
            resource_type="screening_match",
            resource_id=self._sanitize_input(match_id),
            details={'status': status},
        ))

    def log_validation_failure(self, field: str, error_code: str, input_value: str = "",
                               source: str = "") -> None:
        """Log rejected input"""
        self._emit(AuditEvent(
            event_type="VALIDATION_FAILED",
            severity="WARNING",
            details=self._sanitize_context({
                'field': field,
                'error_code': error_code,
                'input': self._sanitize_input(input_value, max_length=50),
                'source': source,
            }),
        ))

    def log_batch_screened(self, batch_id: str, summary: Dict[str, int], lists) -> None:
        """Log a completed batch; the summary holds counts only"""
        self._emit(AuditEvent(
            event_type="BATCH_SCREENED",
            resource_type="screening_batch",
            resource_id=batch_id,
            details=self._sanitize_context({'summary': summary, 'lists': list(lists)}),
        ))


# Global audit logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger(log_dir: str = "logs", enable_console: bool = False) -> AuditLogger:
    """Get or create the global audit logger instance"""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger(log_dir=log_dir, enable_console=enable_console)
    return _audit_logger


def reset_audit_logger() -> None:
    """Reset the global audit logger (for testing)"""
    global _audit_logger
    if _audit_logger is not None:
        for handler in list(_audit_logger.logger.handlers):
            handler.close()
        _audit_logger.logger.handlers.clear()
    _audit_logger = None
