# src/logging/logger.py - v1
"""Logger setup for the ``prospector`` logger tree.

Every handler carries a ``ContextFilter`` that stamps the batch, item, step
and provider context onto the record. The two formats render it as:

    json  {"timestamp": ..., "level": "INFO", "logger": ..., "message": ...,
           "batch_id": "b1", "item_id": "item-1", "step": "research", ...}
    text  2026-01-05 12:00:00 INFO     prospector.pipeline [b1/item-1 research@perplexity] msg

Structured extras go in ``extra={"data": {...}}``.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from prospector.logging.context import get_context

if TYPE_CHECKING:
    from prospector.config.settings import Settings

ROOT_LOGGER = "prospector"


class ContextFilter(logging.Filter):
    """Attach the current logging context to a record as ``log_context``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "log_context"):
            record.log_context = get_context().as_dict()
        return True


def record_context(record: logging.LogRecord) -> dict[str, Any]:
    """Context stamped on the record, else the context of the caller."""
    stamped = getattr(record, "log_context", None)
    return stamped if stamped is not None else get_context().as_dict()


def _context_tag(context: dict[str, Any]) -> str:
    where = "/".join(context[k] for k in ("batch_id", "item_id") if k in context)
    what = context.get("step", "")
    if "provider" in context:
        what = f"{what}@{context['provider']}"
    tag = " ".join(part for part in (where, what) if part)
    return f" [{tag}]" if tag else ""


class JsonFormatter(logging.Formatter):
    """One JSON object per line. Context keys sit beside the message."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **record_context(record),
        }
        data = getattr(record, "data", None)
        if data:
            entry["data"] = data
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Single-line output for terminals, timestamps in UTC."""

    converter = time.gmtime

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)-8s %(name)s%(context_tag)s %(message)s%(data_suffix)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        record.context_tag = _context_tag(record_context(record))
        data = getattr(record, "data", None)
        record.data_suffix = f" {json.dumps(data, default=str)}" if data else ""
        return super().format(record)


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    log_file: str | Path | None = None,
    rotation: str = "10MB",
    retention: int = 30,
) -> logging.Logger:
    """Configure the ``prospector`` logger, replacing any earlier handlers.

    Args:
        level: Log level name; unknown names fall back to INFO.
        log_format: ``"json"`` or ``"text"``.
        log_file: Also write to this rotating file when set.
        rotation: Max file size before rotation (e.g. ``"10MB"``).
        retention: Number of rotated files to keep.
    """
    root_logger = logging.getLogger(ROOT_LOGGER)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        from prospector.logging.handlers import create_rotating_handler

        handlers.append(
            create_rotating_handler(str(log_file), rotation=rotation, retention=retention)
        )

    formatter = JsonFormatter() if log_format == "json" else TextFormatter()
    context_filter = ContextFilter()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(context_filter)
        root_logger.addHandler(handler)
    return root_logger


def configure_logging(settings: Settings, verbose: bool = False) -> logging.Logger:
    """Apply the ``log_*`` settings. ``verbose`` forces DEBUG."""
    return setup_logging(
        level="DEBUG" if verbose else settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )
