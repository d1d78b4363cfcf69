# backend/logging_config.py
"""Structured logging: JSON lines in production, plain text in development."""
import json
import logging
from datetime import datetime, timezone

# Extra fields surfaced in JSON output when a log call passes them.
EXTRA_FIELDS = (
    "transaction_id",
    "user_id",
    "buyer_id",
    "seller_id",
    "user_card_id",
    "status",
    "error_code",
    "path",
)


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in EXTRA_FIELDS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


class _AppHandler(logging.StreamHandler):
    """Marker subclass so setup_logging can replace its own handler."""


def setup_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Configure the root logger; repeated calls replace the previous handler."""
    handler = _AppHandler()
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s - %(message)s",
        ))

    root = logging.getLogger()
    for existing in [h for h in root.handlers if isinstance(h, _AppHandler)]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
