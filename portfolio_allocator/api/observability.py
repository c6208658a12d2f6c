import json
import logging
import os
import time
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable, Optional
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from prometheus_fastapi_instrumentator import Instrumentator

from portfolio_allocator.core.common.log_context import bind_log_context, current_log_context

SERVICE_NAME_DEFAULT = "portfolio-allocator"


class JsonFormatter(logging.Formatter):
    """
    One JSON object per record.

    Fields bound with ``bind_log_context`` (request ids, scheduler trigger, portfolio id)
    are merged first; per-call ``extra={"extra_fields": {...}}`` values override them.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "service": os.getenv("SERVICE_NAME", SERVICE_NAME_DEFAULT),
            "environment": os.getenv("ENVIRONMENT", "local"),
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        payload.update(current_log_context())
        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            payload.update(extra_fields)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps({k: v for k, v in payload.items() if v is not None}, default=str)


def trace_id_from(traceparent: Optional[str]) -> str:
    parts = (traceparent or "").split("-")
    if len(parts) >= 4 and len(parts[1]) == 32:
        return parts[1]
    return uuid4().hex


def configure_logging() -> None:
    root_logger = logging.getLogger()
    if root_logger.hasHandlers():
        root_logger.handlers.clear()
    root_logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)


def setup_observability(app: FastAPI) -> None:
    configure_logging()
    Instrumentator().instrument(app).expose(app)
    access_logger = logging.getLogger("http.access")

    @app.middleware("http")
    async def _request_context_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        started = time.perf_counter()
        correlation_id = request.headers.get("X-Correlation-Id") or f"corr_{uuid4().hex[:12]}"
        request_id = request.headers.get("X-Request-Id") or f"req_{uuid4().hex[:12]}"
        trace_id = trace_id_from(request.headers.get("traceparent"))

        with bind_log_context(
            correlation_id=correlation_id,
            request_id=request_id,
            trace_id=trace_id,
            user_id=request.headers.get("X-User-Id"),
        ):
            status_code = 500
            try:
                response = await call_next(request)
                status_code = response.status_code
            finally:
                access_logger.info(
                    "request.completed",
                    extra={
                        "extra_fields": {
                            "http_method": request.method,
                            "endpoint": request.url.path,
                            "status_code": status_code,
                            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
                        }
                    },
                )

        response.headers["X-Correlation-Id"] = correlation_id
        response.headers["X-Request-Id"] = request_id
        response.headers["X-Trace-Id"] = trace_id
        response.headers["traceparent"] = f"00-{trace_id}-0000000000000001-01"
        return response
