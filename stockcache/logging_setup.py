"""
Root logging configuration for stockcache processes.

Modules log through ``logging.getLogger(__name__)`` and attach context
with ``extra={...}``.  :func:`configure_logging` installs a single root
handler that renders those records either as one JSON object per line or
as plain text.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from stockcache.config import LoggingSettings, get_settings

_TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-32s | %(message)s"


class JSONFormatter(logging.Formatter):
    """Render a log record and its ``extra`` fields as a JSON object."""

    STANDARD_ATTRS = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "message",
        "asctime",
    }

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, val in record.__dict__.items():
            if key in self.STANDARD_ATTRS or key.startswith("_"):
                continue
            log_data[key] = val

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_logging(settings: Optional[LoggingSettings] = None) -> logging.Handler:
    """Install the stockcache root handler.

    Calling this more than once replaces the previously installed
    handler instead of stacking a second one.

    Args:
        settings: Logging settings; defaults to ``get_settings().logging``.

    Returns:
        The handler attached to the root logger.
    """
    if settings is None:
        settings = get_settings().logging

    root = logging.getLogger()
    for existing in list(root.handlers):
        if getattr(existing, "_stockcache_handler", False):
            root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stdout)
    if settings.format.lower() == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
    handler._stockcache_handler = True  # type: ignore[attr-defined]

    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.level.upper(), logging.INFO))
    return handler
