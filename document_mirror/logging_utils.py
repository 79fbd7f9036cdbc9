"""
Logging helpers for document mirrors.

Every component logs through a standard module logger under the
``document_mirror`` namespace. Each mirror stamps its records with its
kind and path through MirrorLoggerAdapter, and hosts that ship logs to
a collector can switch the namespace to one-JSON-object-per-line
output with configure_structured_logging().
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO, Any

LOGGER_NAMESPACE = "document_mirror"

# Attributes every LogRecord carries; anything else arrived through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class StructuredJsonFormatter(logging.Formatter):
    """Render each log record as a single-line JSON object.

    Keys: ``timestamp`` (record creation time, ISO 8601 UTC), ``level``,
    ``logger``, ``message``, ``exception`` when one is attached, then
    every ``extra`` field (``mirror``, ``path``, ...). Values that JSON
    cannot encode are written as their ``str()``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        payload.update(
            (key, _jsonable(value))
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        )
        return json.dumps(payload, default=str)


def configure_structured_logging(
    level: int | str = logging.INFO,
    logger_name: str | None = LOGGER_NAMESPACE,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """Send a logger's output to ``stream`` (stdout by default) as JSON lines.

    Handlers already attached to that logger are replaced, so repeated
    calls never duplicate output.

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    logger.handlers[:] = [handler]
    logger.setLevel(level)

    return logger


def get_mirror_logger(component: str) -> logging.Logger:
    """Logger named ``document_mirror.<component>``."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{component}")


class MirrorLoggerAdapter(logging.LoggerAdapter):
    """Stamps every record with the owning mirror's context.

    Per-call ``extra`` fields are kept; on a name clash the mirror's
    own fields win.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**kwargs.get("extra", {}), **(self.extra or {})}
        return msg, kwargs
