"""
Logging for the pipeline scheduler service.

Every event is a dotted name (``pipeline.run.start``, ``cron.job.failed``)
plus a context dict passed as ``extra={"extra": {...}}`` by log_event()
and log_exception().

Run identifiers are first-class: ``pipeline_id``, ``history_id``,
``trigger_id``, ``trigger_type`` and ``timer`` are top-level keys of every
JSON line (null when unknown) so runs can be grepped across cron threads.
Code running inside ``run_context(...)`` gets those ids attached to every
record it logs, including records from the Executor and the recorder.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from typing import Any, Iterator, Optional

from pipeline_scheduler.config import Config

ROOT_LOGGER = "pipeline_scheduler"
LOG_FILE_NAME = "scheduler.log"

RUN_FIELDS = ("pipeline_id", "history_id", "trigger_id", "trigger_type", "timer")

# Console labels for run fields, in display order
_RUN_LABELS = {
    "pipeline_id": "pipeline",
    "history_id": "run",
    "trigger_id": "trigger",
    "trigger_type": "via",
    "timer": "timer",
}

_run_fields: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "pipeline_scheduler_run_fields", default={}
)


def _context_of(record: logging.LogRecord) -> dict[str, Any]:
    payload = getattr(record, "extra", None)
    return payload if isinstance(payload, dict) else {}


@contextmanager
def run_context(**fields: Any) -> Iterator[dict[str, Any]]:
    """Bind run fields to every record logged inside the block on this thread."""
    unknown = set(fields) - set(RUN_FIELDS)
    if unknown:
        raise ValueError(f"Unknown run field(s): {', '.join(sorted(unknown))}")

    bound = {**_run_fields.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _run_fields.set(bound)
    try:
        yield bound
    finally:
        _run_fields.reset(token)


def current_run_fields() -> dict[str, Any]:
    return dict(_run_fields.get())


class RunContextFilter(logging.Filter):
    """Copies fields bound by run_context() into the record's context."""

    def filter(self, record: logging.LogRecord) -> bool:
        bound = _run_fields.get()
        if bound:
            # Explicit event context wins over bound fields
            record.extra = {**bound, **_context_of(record)}
        return True


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line.

    Run fields are promoted to top-level keys; remaining event context is
    nested under ``context`` so it can never shadow the core keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        context = dict(_context_of(record))
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
            "thread": record.threadName,
        }
        for key in RUN_FIELDS:
            entry[key] = context.pop(key, None)
        if context:
            entry["context"] = context

        if record.exc_info:
            entry["error"] = record.exc_info[0].__name__ if record.exc_info[0] else None
            entry["traceback"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=True, default=str)


class ContextFormatter(logging.Formatter):
    """Plain text line followed by run labels and the event's context."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = dict(_context_of(record))
        if not context:
            return line

        labels = [
            f"{label}={context.pop(key)}"
            for key, label in _RUN_LABELS.items()
            if context.get(key) is not None
        ]
        for key in RUN_FIELDS:
            context.pop(key, None)
        pairs = [f"{key}={value}" for key, value in context.items()]

        suffix = ""
        if labels:
            suffix += f" [{' '.join(labels)}]"
        if pairs:
            suffix += f" {' '.join(pairs)}"
        if record.exc_info and "\n" in line:
            # Keep the context on the message line, above the traceback
            head, _, tail = line.partition("\n")
            return f"{head}{suffix}\n{tail}"
        return f"{line}{suffix}"


def _level(level: str) -> int:
    return getattr(logging, level.upper())


def setup_logging(
    name: str = ROOT_LOGGER,
    level: Optional[str] = None,
    log_to_file: bool = True,
) -> logging.Logger:
    """
    Attach console and (optionally) rotating file handlers to ``name``.

    Both handlers carry a RunContextFilter. The file handler writes JSON
    lines unless LOG_JSON_FORMAT is off. Calling this again for a logger
    that already has handlers only updates its level.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_to_file: Whether to also log to LOG_DIR

    Returns:
        Configured logger instance
    """
    level = level or Config.LOG_LEVEL
    logger = logging.getLogger(name)
    logger.setLevel(_level(level))

    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(_level(level))
    console_handler.addFilter(RunContextFilter())
    console_handler.setFormatter(
        ContextFormatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(console_handler)

    if log_to_file and Config.LOG_TO_FILE:
        Config.LOG_DIR.mkdir(parents=True, exist_ok=True)
        log_file = Config.LOG_DIR / (LOG_FILE_NAME if name == ROOT_LOGGER else f"{name}.log")
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=Config.LOG_FILE_MAX_BYTES,
            backupCount=Config.LOG_FILE_BACKUP_COUNT,
        )
        file_handler.setLevel(_level(level))
        file_handler.addFilter(RunContextFilter())
        if Config.LOG_JSON_FORMAT:
            file_handler.setFormatter(JsonFormatter(datefmt="%Y-%m-%dT%H:%M:%S"))
        else:
            file_handler.setFormatter(
                ContextFormatter(
                    "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s | %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Return ``pipeline_scheduler.<name>``, setting up the service logger on first use."""
    full_name = name if name.startswith(ROOT_LOGGER) else f"{ROOT_LOGGER}.{name}"
    logger = logging.getLogger(full_name)

    if not logging.getLogger(ROOT_LOGGER).handlers:
        setup_logging()

    return logger


def log_exception(logger: logging.Logger, exc: BaseException, event: str, **context: Any) -> None:
    """Log ``event`` at ERROR with the traceback and the exception's own context."""
    pipeline_id = getattr(exc, "pipeline_id", None)
    if pipeline_id is not None:
        context.setdefault("pipeline_id", pipeline_id)
    context.setdefault("error_type", type(exc).__name__)
    logger.error(event, exc_info=exc, extra={"extra": context})


def log_event(logger: logging.Logger, level: str, event: str, **context: Any) -> None:
    """Emit a dotted event name at ``level`` with an optional context payload."""
    log_fn = getattr(logger, level.lower(), logger.info)
    log_fn(event, extra={"extra": context} if context else None)
