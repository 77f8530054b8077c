"""Structured logging configuration for the chat engine."""

import logging
import sys
from typing import Any

# Identifiers that tie a log line to one chat request
CORRELATION_FIELDS = ("request_id", "session_id", "user_id")


class StructuredFormatter(logging.Formatter):
    """Formats records as ``key=value`` pairs, correlation ids first."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "module": record.module,
            "function": record.funcName,
        }
        for key in CORRELATION_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_data[key] = value

        log_data["message"] = record.getMessage()

        if hasattr(record, "extra_data"):
            log_data.update(record.extra_data)

        if record.exc_info:
            log_data["exc"] = self.formatException(record.exc_info).splitlines()[-1]

        return " ".join(f"{k}={v}" for k, v in log_data.items())


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger writing structured lines to stdout, DEBUG in dev and INFO elsewhere
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)

        try:
            from consultant.core.config import get_settings

            level = logging.DEBUG if get_settings().CONSULTANT_ENV == "dev" else logging.INFO
        except Exception:
            # Settings not loadable (missing env); stay at INFO
            level = logging.INFO
        logger.setLevel(level)

    return logger


def log_with_context(logger: logging.Logger, level: int, msg: str, **kwargs: Any) -> None:
    """
    Log with correlation ids and free-form context fields.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **kwargs: ``request_id``, ``session_id`` and ``user_id`` become
            correlation fields; anything else is appended as key=value
    """
    extra: dict[str, Any] = {key: kwargs.pop(key) for key in CORRELATION_FIELDS if key in kwargs}
    extra["extra_data"] = kwargs

    logger.log(level, msg, extra=extra)
