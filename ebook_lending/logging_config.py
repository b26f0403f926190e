"""Logging setup for the lending service.

Modules log through ``logging.getLogger(__name__)`` and attach context with
``extra=fields(...)``. ``setup_logging`` decides how those records are
rendered: plain text for development, one JSON object per line otherwise.
"""

import json
import logging
import sys
from typing import Any, Dict


class StructuredFormatter(logging.Formatter):
    """Render a record as a single JSON object, including its context fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


class PlainFormatter(logging.Formatter):
    """Human-readable formatter that appends context fields as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        extra = getattr(record, "extra_fields", None)
        if extra:
            message += " " + " ".join(f"{k}={v}" for k, v in extra.items())
        return message


def fields(**kwargs: Any) -> Dict[str, Any]:
    """Build the ``extra`` mapping for a log call."""
    return {"extra_fields": kwargs}


def setup_logging(log_level: str = "INFO", use_json: bool = False) -> logging.Logger:
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    formatter: logging.Formatter
    if use_json:
        formatter = StructuredFormatter(datefmt="%Y-%m-%d %H:%M:%S")
    else:
        formatter = PlainFormatter("%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
                                   datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    # replace only our own handler so test or host handlers survive
    for existing in [h for h in root_logger.handlers if getattr(h, "_ebook_lending", False)]:
        root_logger.removeHandler(existing)

    handler = logging.StreamHandler(sys.stderr)
    handler._ebook_lending = True  # type: ignore[attr-defined]
    handler.setLevel(numeric_level)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return logging.getLogger("ebook_lending")
