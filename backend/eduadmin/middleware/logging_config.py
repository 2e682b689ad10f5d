"""
Structured JSON logging.

Every line carries timestamp, level, logger, message, request_id and, when
someone is signed in, the acting user's email.
"""

import json
import logging
from datetime import datetime, timezone

from eduadmin.middleware.request_context import get_actor, get_request_id


class JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None) or get_request_id(),
        }

        actor = get_actor()
        if actor:
            log_entry["actor"] = actor

        if hasattr(record, "duration_ms"):
            log_entry["duration_ms"] = record.duration_ms

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """Plain text for local runs, JSON lines when LOG_JSON is set."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    if not json_output:
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
        return

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
