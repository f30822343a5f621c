"""
Input validation for user-provided screening data.

Supports international names (any Unicode letters) and rejects
characters that commonly indicate injection attempts.
"""

import logging
import unicodedata
from typing import Optional

from config_manager import get_config, ConfigManager
from log_utils import sanitize_for_logging

logger = logging.getLogger(__name__)


class InputValidationError(ValueError):
    """Raised when input validation fails

    Attributes:
        field: The field that failed validation
        code: Error code for programmatic handling
        message: Human-readable error message
        suggestion: Optional suggestion for fixing the error
    """
    def __init__(self, message: str, field: str = "unknown", code: str = "VALIDATION_ERROR", suggestion: str = ""):
        self.field = field
        self.code = code
        self.suggestion = suggestion
        super().__init__(message)


def validate_name(name: str, field: str = "name", config: Optional[ConfigManager] = None) -> str:
    """Validate a free-text name for security and correctness

    Args:
        name: Raw name as submitted
        field: Field label used in error reports
        config: Optional configuration manager for validation settings

    Returns:
        The name with surrounding whitespace removed

    Raises:
        InputValidationError: If validation fails with detailed error info
    """
    if config is None:
        config = get_config()

    iv_config = config.input_validation
    stripped = (name or "").strip()

    if len(stripped) < iv_config.name_min_length:
        raise InputValidationError(
            f"{field} is empty or too short (minimum {iv_config.name_min_length} characters)",
            field=field,
            code="NAME_TOO_SHORT",
            suggestion="Provide a non-empty name"
        )

    if len(stripped) > iv_config.name_max_length:
        raise InputValidationError(
            f"{field} too long ({len(stripped)} chars, maximum {iv_config.name_max_length})",
            field=field,
            code="NAME_TOO_LONG",
            suggestion=f"Shorten the name to {iv_config.name_max_length} characters or less"
        )

    found_blocked = sorted({c for c in stripped if c in iv_config.blocked_characters})
    if found_blocked:
        logger.warning("SECURITY: Blocked characters detected in %s input: %s",
                       field, sanitize_for_logging(stripped))
        raise InputValidationError(
            f"{field} contains blocked characters: {found_blocked}",
            field=field,
            code="BLOCKED_CHARACTERS",
            suggestion="Remove special characters like < > { } [ ] | \\ ; ` $"
        )

    for char in stripped:
        # Cc/Cf/Cs/Co/Cn are never part of a real name
        if unicodedata.category(char).startswith('C'):
            logger.warning("SECURITY: Control character detected in %s: %s",
                           field, sanitize_for_logging(stripped))
            raise InputValidationError(
                f"{field} contains invalid control character (code: {ord(char)})",
                field=field,
                code="CONTROL_CHARACTER",
                suggestion="Remove invisible or control characters"
            )

    if not iv_config.allow_unicode_names and not stripped.isascii():
        raise InputValidationError(
            f"{field} contains non-ASCII characters",
            field=field,
            code="UNICODE_NOT_ALLOWED",
            suggestion="Transliterate the name to Latin characters"
        )

    return stripped
