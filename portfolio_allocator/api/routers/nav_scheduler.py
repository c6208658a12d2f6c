from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, status

from portfolio_allocator.api.dependencies import get_nav_scheduler, get_portfolio_service
from portfolio_allocator.api.http_errors import raise_http_exception
from portfolio_allocator.api.request_models import NavRefreshResponse, NavSchedulerStatusResponse
from portfolio_allocator.core.errors import (
    NavUpdateError,
    PortfolioNotFoundError,
    SchedulerStateError,
)
from portfolio_allocator.core.nav_scheduler import NavScheduler
from portfolio_allocator.core.portfolio_service import PortfolioService

router = APIRouter(prefix="/nav-scheduler", tags=["NAV Scheduler"])


def _status(scheduler: NavScheduler) -> NavSchedulerStatusResponse:
    metrics = scheduler.get_metrics()
    return NavSchedulerStatusResponse(
        running=metrics["running"],
        last_update_time=metrics["last_update_time"],
        success_count=metrics["success_count"],
        error_count=metrics["error_count"],
        total_portfolios=metrics["total_portfolios"],
        update_interval_seconds=metrics["update_interval"],
        in_flight_cycles=metrics["in_flight_cycles"],
    )


@router.get(
    "/status",
    response_model=NavSchedulerStatusResponse,
    status_code=status.HTTP_200_OK,
    summary="Get NAV Scheduler Status",
)
def get_status(
    scheduler: Annotated[NavScheduler, Depends(get_nav_scheduler)] = None,
) -> NavSchedulerStatusResponse:
    return _status(scheduler)


@router.post(
    "/start",
    response_model=NavSchedulerStatusResponse,
    status_code=status.HTTP_200_OK,
    summary="Start NAV Scheduler",
    description="Starts periodic NAV refresh and runs one cycle immediately.",
    responses={409: {"description": "Scheduler already running."}},
)
def start_scheduler(
    scheduler: Annotated[NavScheduler, Depends(get_nav_scheduler)] = None,
) -> NavSchedulerStatusResponse:
    try:
        scheduler.start()
    except SchedulerStateError as exc:
        raise_http_exception(exc)
    return _status(scheduler)


@router.post(
    "/stop",
    response_model=NavSchedulerStatusResponse,
    status_code=status.HTTP_200_OK,
    summary="Stop NAV Scheduler",
    description="Cancels the timer and waits for in-flight cycles to drain.",
    responses={409: {"description": "Scheduler not running."}},
)
def stop_scheduler(
    scheduler: Annotated[NavScheduler, Depends(get_nav_scheduler)] = None,
) -> NavSchedulerStatusResponse:
    try:
        scheduler.stop()
    except SchedulerStateError as exc:
        raise_http_exception(exc)
    return _status(scheduler)


@router.post(
    "/force-update",
    response_model=NavSchedulerStatusResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Force NAV Update Cycle",
    description="Triggers an out-of-schedule cycle in the background.",
    responses={409: {"description": "Scheduler not running."}},
)
def force_update(
    scheduler: Annotated[NavScheduler, Depends(get_nav_scheduler)] = None,
) -> NavSchedulerStatusResponse:
    try:
        scheduler.force_update()
    except SchedulerStateError as exc:
        raise_http_exception(exc)
    return _status(scheduler)


@router.post(
    "/portfolios/{portfolio_id}",
    response_model=NavRefreshResponse,
    status_code=status.HTTP_200_OK,
    summary="Refresh Single Portfolio NAV",
    description="Synchronously refreshes one portfolio using the scheduler retry policy.",
)
def update_single_portfolio(
    portfolio_id: Annotated[
        str, Path(description="Persisted portfolio identifier.", examples=["pf_3f9a1c2b7d10"])
    ],
    scheduler: Annotated[NavScheduler, Depends(get_nav_scheduler)] = None,
    service: Annotated[PortfolioService, Depends(get_portfolio_service)] = None,
) -> NavRefreshResponse:
    try:
        service.get_portfolio(portfolio_id)
    except PortfolioNotFoundError as exc:
        raise_http_exception(exc)
    try:
        scheduler.update_single_portfolio(portfolio_id)
    except NavUpdateError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return NavRefreshResponse(portfolio_id=portfolio_id, status="UPDATED")
