"""Trace ids bound to structured logs."""

import uuid
from contextvars import ContextVar
from typing import Any

import structlog

_trace_id: ContextVar[str] = ContextVar("trace_id", default="")


def generate_trace_id() -> str:
    return uuid.uuid4().hex[:16]


def set_trace_id(trace_id: str) -> None:
    _trace_id.set(trace_id)
    structlog.contextvars.bind_contextvars(trace_id=trace_id)


def clear_trace_id() -> None:
    _trace_id.set("")
    structlog.contextvars.unbind_contextvars("trace_id")


class TraceContext:
    """Binds a trace ID (a sweep, an API call) for the enclosed block."""

    def __init__(self, trace_id: str | None = None, prefix: str = ""):
        self._trace_id = trace_id or f"{prefix}{generate_trace_id()}"
        self._previous_id: str = ""

    def __enter__(self) -> str:
        self._previous_id = _trace_id.get()
        set_trace_id(self._trace_id)
        return self._trace_id

    def __exit__(self, *args: Any) -> None:
        if self._previous_id:
            set_trace_id(self._previous_id)
        else:
            clear_trace_id()
