from datetime import datetime
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Header, Path, Query, Response, status

from portfolio_allocator.api.dependencies import get_portfolio_service
from portfolio_allocator.api.http_errors import raise_http_exception
from portfolio_allocator.api.request_models import RebalanceRequest
from portfolio_allocator.core.errors import (
    InvalidRequestError,
    MarketDataError,
    PortfolioNotFoundError,
    RebalanceError,
    StockNotFoundError,
)
from portfolio_allocator.core.models import (
    AllocationPreview,
    CreatePortfolioRequest,
    NavHistory,
    PerformanceMetrics,
    Portfolio,
    UpdatePortfolioRequest,
)
from portfolio_allocator.core.portfolio_service import PortfolioService

router = APIRouter(tags=["Portfolios"])

PortfolioIdPath = Annotated[
    str, Path(description="Persisted portfolio identifier.", examples=["pf_3f9a1c2b7d10"])
]
UserIdHeader = Annotated[
    str,
    Header(
        alias="X-User-Id",
        description="Identifier of the user owning the portfolios.",
        examples=["usr_001"],
    ),
]


@router.post(
    "/portfolios",
    response_model=Portfolio,
    status_code=status.HTTP_201_CREATED,
    summary="Create Portfolio",
    description=(
        "Persists a portfolio with its positions and an initial NAV point equal to the "
        "total investment."
    ),
)
def create_portfolio(
    payload: CreatePortfolioRequest,
    user_id: UserIdHeader,
    service: Annotated[PortfolioService, Depends(get_portfolio_service)] = None,
) -> Portfolio:
    try:
        return service.create_portfolio(payload, user_id)
    except (InvalidRequestError, StockNotFoundError) as exc:
        raise_http_exception(exc)


@router.get(
    "/portfolios",
    response_model=List[Portfolio],
    status_code=status.HTTP_200_OK,
    summary="List User Portfolios",
    description="Returns the caller's portfolios, newest first, enriched with live quotes.",
)
def list_portfolios(
    user_id: UserIdHeader,
    service: Annotated[PortfolioService, Depends(get_portfolio_service)] = None,
) -> List[Portfolio]:
    return service.get_user_portfolios(user_id)


@router.get(
    "/portfolios/{portfolio_id}",
    response_model=Portfolio,
    status_code=status.HTTP_200_OK,
    summary="Get Portfolio",
)
def get_portfolio(
    portfolio_id: PortfolioIdPath,
    service: Annotated[PortfolioService, Depends(get_portfolio_service)] = None,
) -> Portfolio:
    try:
        return service.get_portfolio(portfolio_id)
    except PortfolioNotFoundError as exc:
        raise_http_exception(exc)


@router.patch(
    "/portfolios/{portfolio_id}",
    response_model=Portfolio,
    status_code=status.HTTP_200_OK,
    summary="Update Portfolio",
    description="Renames the portfolio and/or changes its recorded total investment.",
)
def update_portfolio(
    portfolio_id: PortfolioIdPath,
    payload: UpdatePortfolioRequest,
    service: Annotated[PortfolioService, Depends(get_portfolio_service)] = None,
) -> Portfolio:
    try:
        return service.update_portfolio(portfolio_id, payload)
    except (PortfolioNotFoundError, InvalidRequestError) as exc:
        raise_http_exception(exc)


@router.delete(
    "/portfolios/{portfolio_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Portfolio",
    description="Removes the portfolio together with its positions and NAV history.",
)
def delete_portfolio(
    portfolio_id: PortfolioIdPath,
    service: Annotated[PortfolioService, Depends(get_portfolio_service)] = None,
) -> Response:
    try:
        service.delete_portfolio(portfolio_id)
    except PortfolioNotFoundError as exc:
        raise_http_exception(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/portfolios/{portfolio_id}/nav",
    response_model=NavHistory,
    status_code=status.HTTP_200_OK,
    summary="Refresh Portfolio NAV",
    description="Marks positions to market and appends a NAV history entry.",
)
def update_portfolio_nav(
    portfolio_id: PortfolioIdPath,
    service: Annotated[PortfolioService, Depends(get_portfolio_service)] = None,
) -> NavHistory:
    try:
        return service.update_portfolio_nav(portfolio_id)
    except (PortfolioNotFoundError, MarketDataError) as exc:
        raise_http_exception(exc)


@router.get(
    "/portfolios/{portfolio_id}/history",
    response_model=List[NavHistory],
    status_code=status.HTTP_200_OK,
    summary="Get NAV History",
)
def get_portfolio_history(
    portfolio_id: PortfolioIdPath,
    start: Annotated[
        Optional[datetime],
        Query(
            description="Inclusive lower bound (UTC ISO8601).",
            examples=["2026-01-01T00:00:00Z"],
        ),
    ] = None,
    end: Annotated[
        Optional[datetime],
        Query(
            description="Inclusive upper bound (UTC ISO8601).",
            examples=["2026-12-31T23:59:59Z"],
        ),
    ] = None,
    service: Annotated[PortfolioService, Depends(get_portfolio_service)] = None,
) -> List[NavHistory]:
    try:
        return service.get_portfolio_history(portfolio_id, start=start, end=end)
    except PortfolioNotFoundError as exc:
        raise_http_exception(exc)


@router.get(
    "/portfolios/{portfolio_id}/performance",
    response_model=PerformanceMetrics,
    status_code=status.HTTP_200_OK,
    summary="Get Performance Metrics",
    description="Total and annualized return, drawdowns and high-water mark over NAV history.",
)
def get_portfolio_performance(
    portfolio_id: PortfolioIdPath,
    service: Annotated[PortfolioService, Depends(get_portfolio_service)] = None,
) -> PerformanceMetrics:
    try:
        return service.get_portfolio_performance_metrics(portfolio_id)
    except PortfolioNotFoundError as exc:
        raise_http_exception(exc)


@router.post(
    "/portfolios/{portfolio_id}/rebalance/preview",
    response_model=AllocationPreview,
    status_code=status.HTTP_200_OK,
    summary="Preview Portfolio Rebalance",
    description="Computes a fresh allocation over the strategies the portfolio was built from.",
)
def preview_rebalance(
    portfolio_id: PortfolioIdPath,
    payload: RebalanceRequest,
    service: Annotated[PortfolioService, Depends(get_portfolio_service)] = None,
) -> AllocationPreview:
    try:
        return service.generate_rebalance_preview(
            portfolio_id, payload.total_investment, payload.constraints
        )
    except (PortfolioNotFoundError, InvalidRequestError, RebalanceError) as exc:
        raise_http_exception(exc)


@router.post(
    "/portfolios/{portfolio_id}/rebalance",
    response_model=Portfolio,
    status_code=status.HTTP_200_OK,
    summary="Rebalance Portfolio",
    description=(
        "Applies a fresh allocation: held stocks are resized, new stocks are added and "
        "positions outside the new allocation are kept."
    ),
)
def rebalance_portfolio(
    portfolio_id: PortfolioIdPath,
    payload: RebalanceRequest,
    service: Annotated[PortfolioService, Depends(get_portfolio_service)] = None,
) -> Portfolio:
    try:
        return service.rebalance_portfolio(
            portfolio_id, payload.total_investment, payload.constraints
        )
    except (PortfolioNotFoundError, InvalidRequestError, RebalanceError) as exc:
        raise_http_exception(exc)
