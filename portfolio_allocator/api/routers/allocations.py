from typing import Annotated

from fastapi import APIRouter, Depends, status

from portfolio_allocator.api.dependencies import get_allocation_engine, get_portfolio_service
from portfolio_allocator.api.http_errors import raise_http_exception
from portfolio_allocator.api.request_models import (
    AllocationExclusionsRequest,
    ConstraintCheckResponse,
)
from portfolio_allocator.core.allocation_engine import AllocationEngine
from portfolio_allocator.core.errors import InvalidRequestError, StrategyNotFoundError
from portfolio_allocator.core.models import AllocationPreview, AllocationRequest
from portfolio_allocator.core.portfolio_service import PortfolioService

router = APIRouter(tags=["Allocations"])

_ALLOCATION_ERROR_RESPONSE = {
    422: {
        "description": "Allocation could not be produced (weights, budgets, constraints, quotes).",
        "content": {
            "application/json": {
                "example": {
                    "type": "INVALID_STRATEGY_WEIGHTS",
                    "message": "Strategy percentage weights exceed 100%",
                    "details": {"total_percentage": "120", "max_allowed": "100"},
                }
            }
        },
    }
}


@router.post(
    "/allocations/preview",
    response_model=AllocationPreview,
    status_code=status.HTTP_200_OK,
    summary="Preview Allocation",
    description=(
        "Splits the investment across the requested strategies and their Buy-signalled "
        "stocks, applies constraints and prices whole-share quantities. Nothing is persisted."
    ),
    responses=_ALLOCATION_ERROR_RESPONSE,
)
def preview_allocation(
    payload: AllocationRequest,
    service: Annotated[PortfolioService, Depends(get_portfolio_service)] = None,
) -> AllocationPreview:
    try:
        return service.generate_allocation_preview(payload)
    except (InvalidRequestError, StrategyNotFoundError) as exc:
        raise_http_exception(exc)


@router.post(
    "/allocations/preview/exclusions",
    response_model=AllocationPreview,
    status_code=status.HTTP_200_OK,
    summary="Preview Allocation With Exclusions",
    description="Recomputes a preview after removing additional stocks from consideration.",
    responses=_ALLOCATION_ERROR_RESPONSE,
)
def preview_allocation_with_exclusions(
    payload: AllocationExclusionsRequest,
    service: Annotated[PortfolioService, Depends(get_portfolio_service)] = None,
) -> AllocationPreview:
    try:
        return service.generate_allocation_preview_with_exclusions(
            payload.request, payload.excluded_stocks
        )
    except (InvalidRequestError, StrategyNotFoundError) as exc:
        raise_http_exception(exc)


@router.post(
    "/allocations/constraints/validate",
    response_model=ConstraintCheckResponse,
    status_code=status.HTTP_200_OK,
    summary="Validate Allocation Constraints",
    description=(
        "Checks constraint settings against the investment without allocating and returns "
        "suggested adjustments for the requested strategies."
    ),
)
def validate_constraints(
    payload: AllocationRequest,
    engine: Annotated[AllocationEngine, Depends(get_allocation_engine)] = None,
) -> ConstraintCheckResponse:
    return ConstraintCheckResponse(
        validation=engine.validate_constraints_config(
            payload.constraints, payload.total_investment
        ),
        suggestions=engine.suggest_constraint_adjustments(payload),
    )
