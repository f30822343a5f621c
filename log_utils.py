"""
Logging helpers shared by the screening engine, the CLI and the API.
"""

import re
import logging
from pathlib import Path
from typing import Optional

from config_manager import LoggingConfig


def sanitize_for_logging(text: str) -> str:
    """Sanitize user input for safe logging, preventing log injection

    Removes newlines, carriage returns, and other control characters
    that could be used to inject fake log entries.

    Args:
        text: User input text

    Returns:
        Sanitized text safe for logging
    """
    if not text:
        return ''
    # Remove newlines, carriage returns, and other control characters
    sanitized = re.sub(r'[\r\n\x00-\x1f\x7f-\x9f]', ' ', str(text))
    # Collapse multiple spaces
    sanitized = re.sub(r'\s+', ' ', sanitized).strip()
    return sanitized[:500] if len(sanitized) > 500 else sanitized


def setup_logging(config: Optional[LoggingConfig] = None) -> None:
    """Configure root logging from the logging section of config.yaml

    Args:
        config: Logging configuration, defaults when None
    """
    config = config or LoggingConfig()
    handlers = []

    if config.console:
        handlers.append(logging.StreamHandler())

    if config.file:
        log_path = Path(config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding='utf-8'))

    logging.basicConfig(
        level=getattr(logging, str(config.level).upper(), logging.INFO),
        format=config.format,
        handlers=handlers or None,
        force=True
    )
