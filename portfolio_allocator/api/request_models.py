from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from portfolio_allocator.core.models import (
    AllocationConstraints,
    AllocationRequest,
    ValidationResult,
)


class AllocationExclusionsRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "request": {
                    "strategy_ids": ["st_growth", "st_value"],
                    "total_investment": "10000",
                    "constraints": {
                        "max_allocation_per_stock": "20",
                        "min_allocation_amount": "100",
                    },
                    "excluded_stocks": [],
                },
                "excluded_stocks": ["stk_tsla"],
            }
        }
    }

    request: AllocationRequest
    excluded_stocks: List[str] = Field(
        default_factory=list,
        description="Additional stock identifiers removed from the original request.",
        examples=[["stk_tsla"]],
    )


class ConstraintCheckResponse(BaseModel):
    validation: ValidationResult
    suggestions: List[str] = Field(
        default_factory=list,
        description="Human-readable adjustments derived from the requested strategies.",
    )


class RebalanceRequest(BaseModel):
    total_investment: Decimal = Field(
        description="New total investment for the portfolio.", examples=["12000"]
    )
    constraints: Optional[AllocationConstraints] = Field(
        default=None,
        description="Constraints for the fresh allocation; defaults to 20% cap and 100 floor.",
    )


class NavSchedulerStatusResponse(BaseModel):
    running: bool
    last_update_time: Optional[datetime] = None
    success_count: int
    error_count: int
    total_portfolios: int
    update_interval_seconds: float
    in_flight_cycles: int


class NavRefreshResponse(BaseModel):
    portfolio_id: str
    status: str = Field(examples=["UPDATED"])
