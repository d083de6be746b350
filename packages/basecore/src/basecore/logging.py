"""
Logging setup for basecore services.

Configures the root logger once per process. Records carry the current
correlation ID, and anything passed through ``extra=`` is emitted as
structured fields by the JSON formatter.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from basecore.correlation import get_correlation_id
from basecore.settings import get_settings

# Attributes every LogRecord has; anything else came in through extra=
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime", "correlation_id"}

_configured = False


class CorrelationIdFilter(logging.Filter):
    """Attach the current correlation ID to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        return True


class JsonFormatter(logging.Formatter):
    """JSON formatter that includes correlation ID and extra fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = getattr(record, "correlation_id", "")
        if correlation_id:
            log_obj["correlationId"] = correlation_id

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_obj[key] = value

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


def setup_logging(level: str | None = None, fmt: str | None = None, force: bool = False) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name (defaults to LOG_LEVEL)
        fmt: "json" or "text" (defaults to LOG_FORMAT)
        force: Reconfigure even if already set up
    """
    global _configured
    if _configured and not force:
        return

    settings = get_settings()
    level = (level or settings.log_level).upper()
    fmt = fmt or settings.log_format

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(CorrelationIdFilter())
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s")
        )

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    # httpx logs every request at INFO; the platform client does its own
    logging.getLogger("httpx").setLevel(logging.WARNING)

    _configured = True
