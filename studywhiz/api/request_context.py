"""Request ID propagation via ContextVar + logging filter.

Usage:
    - The middleware in app.py sets the request_id for each request.
    - The logging filter attaches request_id to every log record.
    - Response header ``x-request-id`` is added automatically.
"""
from __future__ import annotations

import logging
import re
import uuid
from contextvars import ContextVar

REQUEST_ID: ContextVar[str] = ContextVar("request_id", default="")
REQUEST_ID_HEADER = "x-request-id"

_INCOMING_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def new_request_id() -> str:
    return uuid.uuid4().hex[:16]


def accept_request_id(candidate: str) -> str:
    """Reuse a caller-supplied id when it is safe to echo, else mint one."""
    text = str(candidate or "").strip()
    if text and _INCOMING_ID_RE.match(text):
        return text
    return new_request_id()


class RequestIdFilter(logging.Filter):
    """Inject ``request_id`` into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = REQUEST_ID.get("") or "-"  # type: ignore[attr-defined]
        return True
