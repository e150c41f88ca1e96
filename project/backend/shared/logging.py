"""
JSON logging for the orchestrator.

Every record is one JSON object on stdout (and in LOG_DIR when configured).
The active job's id is carried in a ContextVar so retry, pool and stager logs
for the same job can be joined without threading the id through every call.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from shared.config import settings

LOG_FILE_NAME = "orchestrator.log"
LOG_FILE_MAX_BYTES = 100 * 1024 * 1024
LOG_FILE_BACKUPS = 5

job_id_context: ContextVar[Optional[str]] = ContextVar("job_id", default=None)

# LogRecord attributes that are not caller-supplied `extra` fields
RESERVED_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (str, int, float, bool, type(None))):
        return value
    return str(value)


class JSONFormatter(logging.Formatter):
    """Renders a record, its job id and its `extra` fields as one JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "message": record.getMessage(),
        }

        job_id = job_id_context.get()
        if job_id:
            entry["job_id"] = job_id

        for key, value in record.__dict__.items():
            if key in RESERVED_ATTRS or key.startswith("_"):
                continue
            entry[key] = _jsonable(value)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def _file_handler(log_dir: str) -> logging.Handler:
    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path / LOG_FILE_NAME,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS
    )
    handler.setFormatter(JSONFormatter())
    return handler


def get_logger(name: str) -> logging.Logger:
    """
    Logger for one orchestrator component, e.g. "task_pool".

    Handlers are attached on first use only, so module-level calls are safe
    to repeat. LOG_LEVEL sets the level; LOG_DIR, when non-empty, adds a
    rotating file next to stdout.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    stdout = logging.StreamHandler(sys.stdout)
    stdout.setFormatter(JSONFormatter())
    logger.addHandler(stdout)

    if settings.log_dir:
        logger.addHandler(_file_handler(settings.log_dir))

    return logger


def set_job_id(job_id: Optional[Any]) -> None:
    """Tag subsequent logs in this context with `job_id`; None clears it."""
    job_id_context.set(None if job_id is None else str(job_id))


def get_job_id() -> Optional[str]:
    return job_id_context.get()
