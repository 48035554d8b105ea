"""Logging setup for the shortlink service.

Modules log through ``logging.getLogger(__name__)``; this module attaches a
single stream handler to the ``shortlink`` logger at startup.

Output formats::

    text:  2026-01-09 10:00:00,000 - shortlink.worker - INFO - Click worker started (concurrency=4)
    json:  {"timestamp": "2026-01-09T10:00:00.000Z", "level": "INFO", "logger": "shortlink.worker", ...}
"""

import json
import logging
from datetime import UTC, datetime

__all__ = ["JsonFormatter", "TEXT_FORMAT", "configure_logging"]

ROOT_LOGGER_NAME = "shortlink"
TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per line, including ``extra`` fields."""

    STANDARD_ATTRS = frozenset(
        {
            "args",
            "asctime",
            "created",
            "exc_info",
            "exc_text",
            "filename",
            "funcName",
            "levelname",
            "levelno",
            "lineno",
            "message",
            "module",
            "msecs",
            "msg",
            "name",
            "pathname",
            "process",
            "processName",
            "relativeCreated",
            "stack_info",
            "thread",
            "threadName",
            "taskName",
        }
    )

    def format(self, record: logging.LogRecord) -> str:
        timestamp = (
            datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
        )
        log = {
            "timestamp": timestamp,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log["exc_info"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in self.STANDARD_ATTRS and key not in log:
                log[key] = value

        return json.dumps(log, default=str)


def configure_logging(level: str = "INFO", log_format: str = "text") -> logging.Logger:
    """Attach the stream handler once; later calls only update level and format."""
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    formatter = JsonFormatter() if log_format == "json" else logging.Formatter(TEXT_FORMAT)

    if not logger.handlers:
        handler = logging.StreamHandler()
        logger.addHandler(handler)
    for handler in logger.handlers:
        handler.setFormatter(formatter)

    logger.setLevel(level.upper())
    return logger
