"""
Structured JSON logging for the paste service.

Every line carries the id of the HTTP request that produced it (when there
is one), so a failing store call can be traced back to its request. Client
addresses never reach the logs; the traffic limiter only ever logs the HMAC
key derived from them.
"""

import json
import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import IO

# Set per request by the HTTP layer
request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Record attributes passed through `extra=` that end up in the JSON line
EXTRA_FIELDS = (
    "event",
    "backend",
    "operation",
    "key",
    "paste_id",
    "batch_size",
    "removed",
    "duration_ms",
)

# Chatty client libraries, capped at WARNING
QUIET_LOGGERS = ("boto3", "botocore", "urllib3", "sqlalchemy")


# -----------------------------------------------------------------------------
# JSON Formatter
# -----------------------------------------------------------------------------


class JSONFormatter(logging.Formatter):
    """
    One JSON document per record.

    {"timestamp": "...Z", "level": "INFO", "logger": "...", "message": "...",
     "request_id": "...", "event": "paste_created", "backend": "s3", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_data = {
            "timestamp": timestamp.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        log_data.update({name: getattr(record, name) for name in EXTRA_FIELDS if hasattr(record, name)})

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


def _resolve_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def configure_logging(json_format: bool = True, level: str | int = "INFO", stream: IO[str] | None = None) -> None:
    """
    Install a single stream handler on the root logger.

    Args:
        json_format: JSON lines when True, plain text for local runs otherwise
        level: Level name or number (LOG_LEVEL)
        stream: Destination, stdout by default
    """
    numeric_level = _resolve_level(level)
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(TEXT_FORMAT))
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


# -----------------------------------------------------------------------------
# Context Managers
# -----------------------------------------------------------------------------


@contextmanager
def log_store_operation(backend: str, operation: str, key: str):
    """
    Time one storage backend call.

    Success is logged at DEBUG; a failure is logged at ERROR and re-raised
    unchanged, the caller decides what it means.

    Usage:
        with log_store_operation("s3", "create", key):
            client.put_object(...)
    """
    logger = logging.getLogger("cryptbin.storage")
    fields = {"backend": backend, "operation": operation, "key": key}
    start_time = time.monotonic()

    try:
        yield
    except Exception as e:
        duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.error(
            f"{backend} {operation} failed: {key} - {e}",
            extra={"event": f"store_{operation}_failed", "duration_ms": duration_ms, **fields},
        )
        raise

    duration_ms = int((time.monotonic() - start_time) * 1000)
    logger.debug(
        f"{backend} {operation} completed: {key} ({duration_ms}ms)",
        extra={"event": f"store_{operation}_complete", "duration_ms": duration_ms, **fields},
    )
