"""Structured logging configuration for spotbot.

JSON structured logs go to logs/spotbot.log (10MB rotation, 5 backups) and
human-readable lines go to the console.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from pythonjsonlogger import jsonlogger

REDACTED = "***REDACTED***"
# Structured fields that may carry credentials
SENSITIVE_FIELDS = frozenset(
    {"access_token", "refresh_token", "token", "client_secret", "password", "cookie", "cookies", "authorization"}
)


class CredentialRedactionFilter(logging.Filter):
    """Mask credential-bearing extra fields before any handler formats them."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name in SENSITIVE_FIELDS.intersection(record.__dict__):
            if getattr(record, name):
                setattr(record, name, REDACTED)
        return True


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """Configure structured logging with JSON file output and console output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        Configured root logger instance
    """
    log_dir = Path(__file__).parent.parent / "logs"
    log_dir.mkdir(exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))
    root_logger.handlers.clear()

    json_handler = RotatingFileHandler(
        log_dir / "spotbot.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5,
        encoding="utf-8",
    )
    json_formatter = jsonlogger.JsonFormatter(
        "%(asctime)s %(name)s %(levelname)s %(message)s %(filename)s %(lineno)d",
        timestamp=True,
    )
    json_handler.setFormatter(json_formatter)
    json_handler.setLevel(logging.DEBUG)
    json_handler.addFilter(CredentialRedactionFilter())
    root_logger.addHandler(json_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    console_handler.setFormatter(console_formatter)
    console_handler.setLevel(getattr(logging, log_level.upper()))
    console_handler.addFilter(CredentialRedactionFilter())
    root_logger.addHandler(console_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with structured logging support.

    Args:
        name: Logger name (typically __name__)
    """
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **extra_fields: Any,
) -> None:
    """Log a message with additional structured context fields.

    Args:
        logger: Logger instance
        level: Log level (debug, info, warning, error, critical)
        message: Log message
        **extra_fields: Additional fields to include in JSON log (e.g., device_id, event_type)
    """
    log_method = getattr(logger, level.lower())
    log_method(message, extra=extra_fields)
