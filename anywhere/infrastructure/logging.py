"""
Centralized Logging

Architectural Intent:
- Provides structured JSON logging for all orchestrator components
- Carries request and instance correlation ids through contextvars, so async
  workflows and HTTP handlers log with the ids of the work they serve
- Supports configurable log levels via config and CLI flags (--verbose, --debug)
"""

import contextvars
import json
import logging
import os
import sys
import uuid as uuid_lib
from contextlib import contextmanager
from datetime import datetime, UTC
from typing import Iterator, Optional

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "request_id", default=""
)
instance_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "instance_id", default=""
)

LOG_FILE_NAME = "backend.log"

_cloud_logger = logging.getLogger("anywhere.cloud")


class ContextFilter(logging.Filter):
    """Copies correlation ids from the current context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        record.instance_id = instance_id_var.get()
        return True


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in ("request_id", "instance_id"):
            value = getattr(record, key, "")
            if value:
                log_entry[key] = value
        fields = getattr(record, "fields", None)
        if fields:
            log_entry.update(fields)
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


class DevFormatter(logging.Formatter):
    """Human-readable format with correlation ids appended when present."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = [
            f"{key}={getattr(record, key)}"
            for key in ("request_id", "instance_id")
            if getattr(record, key, "")
        ]
        return f"{line} [{' '.join(extras)}]" if extras else line


def configure_logging(
    level: int = logging.INFO,
    json_format: bool = False,
    log_dir: Optional[str] = None,
) -> None:
    """Configure logging for the orchestrator.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, etc.)
        json_format: If True, use JSON structured output. Otherwise human-readable.
        log_dir: If set, also append to <log_dir>/backend.log.
    """
    root = logging.getLogger("anywhere")
    root.setLevel(level)

    # Remove existing handlers
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            logging.FileHandler(os.path.join(log_dir, LOG_FILE_NAME), encoding="utf-8")
        )

    for handler in handlers:
        handler.setLevel(level)
        handler.addFilter(ContextFilter())
        handler.setFormatter(JSONFormatter() if json_format else DevFormatter())
        root.addHandler(handler)


def level_from_name(name: str, default: int = logging.INFO) -> int:
    value = logging.getLevelName(name.upper())
    return value if isinstance(value, int) else default


@contextmanager
def bind_request_id(request_id: Optional[str] = None) -> Iterator[str]:
    """Bind a request id (generated when omitted) for the enclosed block."""
    value = request_id or uuid_lib.uuid4().hex
    token = request_id_var.set(value)
    try:
        yield value
    finally:
        request_id_var.reset(token)


@contextmanager
def bind_instance_id(instance_id: str) -> Iterator[str]:
    token = instance_id_var.set(instance_id)
    try:
        yield instance_id
    finally:
        instance_id_var.reset(token)


def log_cloud_call(
    operation: str,
    region: str,
    cloud_id: str = "",
    error: Optional[BaseException] = None,
    **details,
) -> None:
    """Emit one structured line per cloud API call."""
    fields = {"operation": operation, "region": region, "cloud_id": cloud_id}
    fields.update(details)
    if error is not None:
        fields["error"] = str(error)
        _cloud_logger.error(
            "cloud %s failed in %s: %s", operation, region, error,
            extra={"fields": fields},
        )
    else:
        _cloud_logger.info(
            "cloud %s in %s %s", operation, region, cloud_id,
            extra={"fields": fields},
        )
