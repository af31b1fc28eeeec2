"""Correlation context for outgoing backend requests and quiz sessions.

Many backend calls run concurrently on one event loop (the bulk fan-out
issues eight requests at once), so their log lines interleave.  Each
outgoing request gets an id that is sent as X-Request-ID and stamped on
every log record emitted while it is in flight.  Quiz sessions do the
same with their session id.

contextvars (not thread-locals) because everything shares one thread:
each asyncio task gets its own copy of the variable.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
session_id_var: ContextVar[str] = ContextVar("session_id", default="-")


class _RequestContextFilter(logging.Filter):
    """Injects request/session ids into every LogRecord.

    A filter rather than a formatter because formatters can only read
    fields that already exist on the record.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get("-")  # type: ignore[attr-defined]
        if not hasattr(record, "session_id"):
            record.session_id = session_id_var.get("-")  # type: ignore[attr-defined]
        return True


# Records propagated from child loggers skip root-logger filters, so
# setup_logging() also attaches this filter to the handler it installs.
root_logger = logging.getLogger()
if not any(isinstance(f, _RequestContextFilter) for f in root_logger.filters):
    root_logger.addFilter(_RequestContextFilter())


def new_request_id() -> str:
    return uuid.uuid4().hex


@contextmanager
def request_scope(request_id: str | None = None) -> Iterator[str]:
    """Bind a request id for the duration of one backend call."""
    req_id = request_id or new_request_id()
    token = request_id_var.set(req_id)
    try:
        yield req_id
    finally:
        request_id_var.reset(token)


@contextmanager
def session_scope(session_id: str) -> Iterator[str]:
    token = session_id_var.set(session_id)
    try:
        yield session_id
    finally:
        session_id_var.reset(token)
