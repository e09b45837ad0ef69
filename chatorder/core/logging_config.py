"""Structured JSON logging shared by the API and the Celery workers.

Two context variables are stamped on every record:

* ``request_id`` - set by the HTTP middleware and forwarded to the worker
  task a webhook enqueues, so one delivery can be followed end to end.
* ``conversation`` - the ``conversation:{store}:{psid}`` lock key while an
  inbound event is being processed.
"""

import contextvars
import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

from pythonjsonlogger.json import JsonFormatter

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="")
conversation_var: contextvars.ContextVar[str] = contextvars.ContextVar("conversation", default="")

# Loggers whose INFO output is noise or leaks secrets (httpx logs Graph API
# URLs with access_token query params)
QUIET_LOGGERS = ("httpx", "httpcore", "openai", "sqlalchemy.engine")


class ContextFilter(logging.Filter):
    """Copy the request id and conversation key onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("")  # type: ignore[attr-defined]
        record.conversation = conversation_var.get("")  # type: ignore[attr-defined]
        return True


def setup_logging(*, debug: bool = False) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(
        JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s %(conversation)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        )
    )
    handler.addFilter(ContextFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def conversation_context(key: str) -> Iterator[None]:
    """Tag log records emitted inside the block with a conversation key."""
    token = conversation_var.set(key)
    try:
        yield
    finally:
        conversation_var.reset(token)


def generate_request_id() -> str:
    return uuid.uuid4().hex[:16]
