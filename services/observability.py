from __future__ import annotations

import uuid
from contextvars import ContextVar


_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)


def set_request_id(value: str | None) -> None:
    _request_id.set(value)


def get_request_id() -> str | None:
    return _request_id.get()


def new_run_id(prefix: str) -> str:
    """Correlation id for scheduled runs, which have no inbound request."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"
