"""
Structured logging for docharvest.

Every record emitted while a document is being processed carries that
document's id, taken from a context variable set by ``document_context()``.
Two renderings are available: one JSON object per line for log shipping, and
a coloured single-line format for terminals.

Console output goes to stderr; stdout is reserved for extraction results.

Usage:
    from docharvest.logging import setup_logging, document_context

    setup_logging(level="DEBUG")

    with document_context("invoice-42.pdf"):
        policy.process(stream)
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator

document_id_var: ContextVar[str | None] = ContextVar("document_id", default=None)

# Third-party loggers that are chatty at INFO
NOISY_LOGGERS = ("PIL", "rapidocr_onnxruntime")

# Attributes every LogRecord has; anything else was passed through extra=
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}


def get_document_id() -> str | None:
    return document_id_var.get()


def set_document_id(document_id: str | None) -> None:
    document_id_var.set(document_id)


@contextmanager
def document_context(document_id: str | None) -> Iterator[None]:
    """Tag log records emitted inside the block with ``document_id``."""
    token = document_id_var.set(document_id)
    try:
        yield
    finally:
        document_id_var.reset(token)


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record.

    Keys: timestamp, level, logger, message, plus document_id when bound,
    source (file/line/function) from WARNING up, exception when exc_info is
    set, and any extra= fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        document_id = get_document_id()
        if document_id:
            entry["document_id"] = document_id

        if record.levelno >= logging.WARNING:
            entry["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        entry.update({key: _jsonable(value) for key, value in _extra_fields(record).items()})
        return json.dumps(entry, default=str)


class DevelopmentFormatter(logging.Formatter):
    """
    Terminal output, e.g.::

        2024-01-15 10:30:00 INFO     [scan-001.pdf] [docharvest.core.policy] Escalating ...
    """

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True) -> None:
        super().__init__(datefmt="%Y-%m-%d %H:%M:%S")
        self.use_colors = use_colors

    def _level(self, record: logging.LogRecord) -> str:
        # pad before colouring so escape codes don't eat the column width
        level = f"{record.levelname:8}"
        if not self.use_colors:
            return level
        return f"{self.LEVEL_COLORS.get(record.levelno, '')}{level}{self.RESET}"

    def format(self, record: logging.LogRecord) -> str:
        parts = [self.formatTime(record, self.datefmt), self._level(record)]

        document_id = get_document_id()
        if document_id:
            parts.append(f"[{document_id}]")

        parts.append(f"[{record.name}] {record.getMessage()}")
        parts.extend(f"{key}={value}" for key, value in _extra_fields(record).items())

        line = " ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: str | None = None,
) -> None:
    """
    Replace the root logger's handlers.

    Args:
        level: Root log level name
        json_format: Render console output as JSON instead of the terminal format
        log_file: Also append JSON records to this file
    """
    root = logging.getLogger()
    root.setLevel(level.upper())

    for handler in list(root.handlers):
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(
        JSONFormatter() if json_format else DevelopmentFormatter(use_colors=sys.stderr.isatty())
    )
    root.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        root.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
