"""Logging for ingestion runs.

One stdout handler on the ``event_ingestion`` logger, rendered either as
plain text for terminals or as one JSON object per line for log shippers.
Run context (scraper log id, source name, pipeline step) travels on each
record through ``with_context``. Publish decisions go to a separate audit
logger so they can be routed on their own.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

ROOT_LOGGER = "event_ingestion"
AUDIT_LOGGER = "event_ingestion.audit"

_HANDLER_MARK = "_event_ingestion_handler"

# ---------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------

# record attribute -> short label used by the text format
CONTEXT_FIELDS: dict[str, str] = {"log_id": "log", "source": "source", "step": "step"}


def record_context(record: logging.LogRecord) -> dict[str, Any]:
    """Run context attached to a record, in a stable order."""
    return {
        name: getattr(record, name)
        for name in CONTEXT_FIELDS
        if getattr(record, name, None) is not None
    }


class JsonFormatter(logging.Formatter):
    """One JSON document per record."""

    def format(self, record: logging.LogRecord) -> str:
        doc: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **record_context(record),
        }
        payload = getattr(record, "payload", None)
        if isinstance(payload, dict):
            doc["payload"] = payload
        if record.exc_info:
            doc["exception"] = self.formatException(record.exc_info)
        return json.dumps(doc, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """``2026-03-01 19:00:00 INFO logger [log=3 source=X] message``"""

    def format(self, record: logging.LogRecord) -> str:
        head = f"{self.formatTime(record, '%Y-%m-%d %H:%M:%S')} {record.levelname} {record.name}"
        context = record_context(record)
        if context:
            tags = " ".join(f"{CONTEXT_FIELDS[k]}={v}" for k, v in context.items())
            head = f"{head} [{tags}]"
        line = f"{head} {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


# ---------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class LoggingOptions:
    level: str = "INFO"
    json_logs: bool = False


def setup_logging(options: LoggingOptions | None = None) -> logging.Logger:
    """Attach the package handler, replacing one added by an earlier call."""
    options = options or LoggingOptions()
    level = logging.getLevelName(options.level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    for existing in [h for h in logger.handlers if getattr(h, _HANDLER_MARK, False)]:
        logger.removeHandler(existing)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if options.json_logs else TextFormatter())
    setattr(handler, _HANDLER_MARK, True)
    logger.addHandler(handler)
    logger.propagate = False
    return logger


# ---------------------------------------------------------------------
# Run context
# ---------------------------------------------------------------------


class RunContextAdapter(logging.LoggerAdapter):
    """Adds the bound run context to ``extra``; per-call values win."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def with_context(
    logger: logging.Logger,
    *,
    log_id: int | None = None,
    source: str | None = None,
    step: str | None = None,
) -> RunContextAdapter:
    bound = {"log_id": log_id, "source": source, "step": step}
    return RunContextAdapter(logger, {k: v for k, v in bound.items() if v is not None})
