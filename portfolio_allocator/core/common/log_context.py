from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Mapping

_LOG_CONTEXT: ContextVar[Mapping[str, Any]] = ContextVar("log_context", default={})


def current_log_context() -> Dict[str, Any]:
    return dict(_LOG_CONTEXT.get())


@contextmanager
def bind_log_context(**fields: Any) -> Iterator[None]:
    """Adds ``fields`` to every log record emitted in the current context until exit."""
    token = _LOG_CONTEXT.set({**_LOG_CONTEXT.get(), **fields})
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)
