from typing import NoReturn

from fastapi import HTTPException, status

from portfolio_allocator.core.errors import (
    InvalidRequestError,
    MarketDataError,
    PortfolioNotFoundError,
    RebalanceError,
    SchedulerStateError,
    StockNotFoundError,
    StrategyNotFoundError,
)

HTTP_422_UNPROCESSABLE = getattr(
    status,
    "HTTP_422_UNPROCESSABLE_CONTENT",
    status.HTTP_422_UNPROCESSABLE_ENTITY,
)


def raise_http_exception(exc: Exception) -> NoReturn:
    if isinstance(exc, (PortfolioNotFoundError, StrategyNotFoundError, StockNotFoundError)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, InvalidRequestError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, SchedulerStateError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, RebalanceError):
        raise HTTPException(status_code=HTTP_422_UNPROCESSABLE, detail=str(exc)) from exc
    if isinstance(exc, MarketDataError):
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    raise exc
