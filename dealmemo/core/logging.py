"""Structured logging configuration for the Deal Memo Engine."""

import logging
import sys
from typing import Any


class StructuredFormatter(logging.Formatter):
    """JSON-like structured log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured output."""
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "module": record.module,
            "function": record.funcName,
            "message": record.getMessage(),
        }

        # Memo context passed through `extra`
        for key in ("memo_id", "section_type", "deal_id"):
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        # Add any other extra fields
        if hasattr(record, "extra_data"):
            log_data.update(record.extra_data)

        # Format as key=value pairs for readability
        parts = [f"{k}={v}" for k, v in log_data.items()]
        return " ".join(parts)


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Only configure if not already configured
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)

        # Set level based on environment
        try:
            from dealmemo.core.config import get_settings

            settings = get_settings()
            if settings.MEMO_ENGINE_ENV == "dev":
                logger.setLevel(logging.DEBUG)
            else:
                logger.setLevel(logging.INFO)
        except Exception:
            # Default to INFO if settings not available
            logger.setLevel(logging.INFO)

    return logger


def log_with_context(logger: logging.Logger, level: int, msg: str, **kwargs: Any) -> None:
    """
    Log with additional context fields.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **kwargs: Additional context fields (e.g., memo_id, attempt)
    """
    extra: dict[str, Any] = {}
    for key in ("memo_id", "section_type", "deal_id"):
        if key in kwargs:
            extra[key] = kwargs.pop(key)
    extra["extra_data"] = kwargs

    logger.log(level, msg, extra=extra)
