"""
FILE: portfolio_allocator/api/main.py
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from portfolio_allocator.api.config import nav_scheduler_enabled
from portfolio_allocator.api.dependencies import get_nav_scheduler
from portfolio_allocator.api.http_errors import HTTP_422_UNPROCESSABLE
from portfolio_allocator.api.observability import setup_observability
from portfolio_allocator.api.routers.allocations import router as allocations_router
from portfolio_allocator.api.routers.nav_scheduler import router as nav_scheduler_router
from portfolio_allocator.api.routers.portfolios import router as portfolios_router
from portfolio_allocator.core.errors import AllocationError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _app_lifespan(_app: FastAPI):
    scheduler = get_nav_scheduler()
    if nav_scheduler_enabled() and not scheduler.is_running():
        scheduler.start()
    try:
        yield
    finally:
        if scheduler.is_running():
            scheduler.stop()


app = FastAPI(
    title="Portfolio Allocation API",
    version="0.1.0",
    description=(
        "Strategy-weighted allocation previews, portfolio persistence and scheduled NAV "
        "tracking.\n\n"
        "Allocation failures are returned as `422` with a typed `{type, message, details}` body."
    ),
    openapi_tags=[
        {"name": "Allocations", "description": "Allocation previews and constraint checks."},
        {"name": "Portfolios", "description": "Portfolio lifecycle, NAV and rebalancing."},
        {"name": "NAV Scheduler", "description": "Background NAV refresh control."},
        {"name": "Health", "description": "Liveness and readiness checks."},
    ],
    lifespan=_app_lifespan,
)

setup_observability(app)

app.include_router(allocations_router)
app.include_router(portfolios_router)
app.include_router(nav_scheduler_router)


@app.exception_handler(AllocationError)
async def allocation_error_to_response(request: Request, exc: AllocationError) -> JSONResponse:
    logger.info(
        "allocation.rejected",
        extra={"extra_fields": {"error_type": exc.type, "endpoint": str(request.url.path)}},
    )
    return JSONResponse(status_code=HTTP_422_UNPROCESSABLE, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_exception_to_problem_details(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception while serving request", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        media_type="application/problem+json",
        content={
            "type": "about:blank",
            "title": "Internal Server Error",
            "status": 500,
            "detail": "An unexpected error occurred.",
            "instance": str(request.url.path),
        },
    )


@app.get("/health", tags=["Health"], summary="Health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/health/live", tags=["Health"], summary="Liveness")
def health_live() -> dict[str, str]:
    return {"status": "live"}


@app.get("/health/ready", tags=["Health"], summary="Readiness")
def health_ready() -> dict[str, str]:
    return {"status": "ready"}
