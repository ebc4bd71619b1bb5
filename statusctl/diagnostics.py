"""Logging setup and the diagnostics sink."""

import json
import logging
import sys
import warnings
from datetime import datetime, timezone
from typing import Any

from .errors import StatusCtlWarning

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_FIELDS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "taskName"}

logger = logging.getLogger("statusctl.diagnostics")


def _normalize(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_normalize(v) for v in value]
    return str(value)


class JsonLogFormatter(logging.Formatter):
    """One JSON object per record, including the fields passed via ``extra``."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in vars(record).items():
            if key in _RECORD_FIELDS or key in payload:
                continue
            payload[key] = _normalize(value)

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False)


def configure_logging(level: str = "INFO") -> None:
    """Send statusctl logs to stderr as JSON lines at the given level."""
    root = logging.getLogger("statusctl")
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonLogFormatter())
    root.handlers = [handler]
    root.setLevel(level.upper())


class Diagnostics:
    """Surfaces namespaced notices about misconfiguration and failed runs.

    Every notice is written to the log. Outside production it is also raised
    as a StatusCtlWarning so that it shows up interactively.
    """

    def __init__(self, source: str, environment: str = "production"):
        self.source = source
        self.environment = environment

    def notice(self, message: str, hidden: bool = False) -> None:
        if hidden:
            return
        message = f"{self.source}: {message}"
        logger.warning(message)
        if self.environment in ("local", "development", "staging"):
            warnings.warn(message, StatusCtlWarning, stacklevel=2)
