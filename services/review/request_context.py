"""Request ID propagation via ContextVar + logging filter.

Usage:
    - The middleware in app.py sets the request_id for each review request.
    - The logging filter attaches request_id to every log record, so sync
      warnings can be correlated with the review call that produced them.
    - Response header ``x-request-id`` is added automatically.
"""
from __future__ import annotations

import logging
import uuid
from contextvars import ContextVar

REQUEST_ID: ContextVar[str] = ContextVar("request_id", default="")
REQUEST_ID_HEADER = "x-request-id"


def new_request_id() -> str:
    return uuid.uuid4().hex[:16]


def resolve_request_id(incoming: str | None) -> str:
    text = str(incoming or "").strip()
    if text and len(text) <= 64:
        return text
    return new_request_id()


class RequestIdFilter(logging.Filter):
    """Inject ``request_id`` into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = REQUEST_ID.get("")  # type: ignore[attr-defined]
        return True
