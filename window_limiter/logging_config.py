"""Logging helpers for structured limiter logs."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

PACKAGE_LOGGER = "window_limiter"

# Extras attached by the admission path and the reaper.
_LIMITER_FIELDS = ("client_id", "timestamp", "removed_clients", "tracked_clients")


class JsonFormatter(logging.Formatter):
    """Render limiter log records as JSON, grouping limiter extras under ``limiter``."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: Dict[str, Any] = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        limiter = {
            attr: getattr(record, attr)
            for attr in _LIMITER_FIELDS
            if getattr(record, attr, None) is not None
        }
        if limiter:
            payload["limiter"] = limiter
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(
    level: int = logging.INFO, handler: Optional[logging.Handler] = None
) -> logging.Logger:
    """Send ``window_limiter`` logs through a JSON handler.

    Only the package logger is touched, so an embedding application keeps its
    own root configuration. Calling this again replaces the handler installed
    by the previous call.
    """

    logger = logging.getLogger(PACKAGE_LOGGER)
    for existing in list(logger.handlers):
        if getattr(existing, "_window_limiter_handler", False):
            logger.removeHandler(existing)
            existing.close()

    handler = handler or logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    handler._window_limiter_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger
