from __future__ import annotations

from contextvars import ContextVar
from uuid import uuid4

CORRELATION_HEADER = "X-Request-ID"

_user_id: ContextVar[str | None] = ContextVar("user_id", default=None)
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def bind_user(user_id: str | None) -> None:
    _user_id.set(user_id)


def bind_correlation_id(value: str | None) -> str:
    correlation_id = value or uuid4().hex
    _correlation_id.set(correlation_id)
    return correlation_id


def current_user_id() -> str | None:
    return _user_id.get()


def current_correlation_id() -> str | None:
    return _correlation_id.get()
