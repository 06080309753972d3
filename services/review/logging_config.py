"""Root logging setup for the review service.

``LOG_FORMAT=json`` emits one JSON object per line and carries the sync
context fields (``user_id``, ``round_id``, ``mode``) passed through
``extra=``; anything else gives plain text lines tagged with the request id.
``LOG_LEVEL`` sets the root level. httpx and httpcore stay at WARNING unless
the root level is DEBUG, since they log every profile call at INFO.
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

from . import settings as _settings
from .request_context import RequestIdFilter

TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] rid=%(request_id)s %(message)s"
CONTEXT_FIELDS = ("user_id", "round_id", "mode")
TRANSPORT_LOGGERS = ("httpx", "httpcore")


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in ("request_id",) + CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value:
                payload[name] = value
        if record.exc_info and record.exc_info[1] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _build_handler(fmt: str) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(_JsonFormatter() if fmt == "json" else logging.Formatter(TEXT_FORMAT))
    return handler


def configure_logging() -> None:
    level = getattr(logging, _settings.log_level(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)
    # replaced on every call so reloads keep a single handler
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(_build_handler(_settings.log_format()))

    transport_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(transport_level)
