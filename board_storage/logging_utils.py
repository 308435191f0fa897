"""
Logging helpers for the board store.

Backends log through ``StorageLoggerAdapter`` so every record carries the
store context: database path, table prefix and the operation being run,
plus board, block or user ids where the call site knows them.
``StructuredJsonFormatter`` renders that context as one JSON object per
line. ``configure_structured_logging`` installs it on the ``board_storage``
logger; ``SQLiteBackend`` does so at startup when ``SQLiteConfig.log_json``
is set.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import IO, Any

ROOT_LOGGER_NAME = "board_storage"

# Record attributes copied into the JSON line when present and non-empty
STORE_CONTEXT_FIELDS = (
    "operation",
    "db_path",
    "table_prefix",
    "board_id",
    "block_id",
    "user_id",
    "team_id",
)


class StructuredJsonFormatter(logging.Formatter):
    """
    Render a record as a single JSON line.

    ``ts`` is epoch milliseconds, the same unit the store uses for every
    timestamp it writes. Only the store context fields are carried over;
    other ``extra`` keys are ignored.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": int(record.created * 1000),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for name in STORE_CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value not in (None, ""):
                entry[name] = value

        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def configure_structured_logging(
    level: int | str = logging.INFO,
    logger_name: str = ROOT_LOGGER_NAME,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """
    Send store logs to ``stream`` (stdout by default) as JSON lines.

    Calling it again replaces the handler it installed earlier; handlers
    added by the application are left alone.

    Args:
        level: Level name or number for the store logger
        logger_name: Logger to configure (default: the package logger)
        stream: Destination stream

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)

    for handler in list(logger.handlers):
        if isinstance(handler.formatter, StructuredJsonFormatter):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)

    return logger


def get_storage_logger(name: str) -> logging.Logger:
    """Logger named ``board_storage.{name}``."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


class StorageLoggerAdapter(logging.LoggerAdapter):
    """
    Attach store context to every record.

    Context given at a call site through ``extra`` overrides the adapter's
    own values for that record.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs

    def bind(self, **context: Any) -> StorageLoggerAdapter:
        """A new adapter with ``context`` added to this one's."""
        return StorageLoggerAdapter(self.logger, {**(self.extra or {}), **context})
