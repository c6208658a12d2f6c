from decimal import Decimal
from typing import Any, Dict, List, Optional

from portfolio_allocator.core.models import ConstraintViolation


class AllocationError(Exception):
    """Typed allocation failure carrying a machine-readable type and structured details."""

    def __init__(
        self, type: str, message: str, details: Optional[Dict[str, Any]] = None
    ) -> None:
        super().__init__(message)
        self.type = type
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "message": self.message, "details": _jsonable(self.details)}

    @classmethod
    def invalid_strategy_weights(cls, total_percentage: Decimal) -> "AllocationError":
        return cls(
            "INVALID_STRATEGY_WEIGHTS",
            "Strategy percentage weights exceed 100%",
            {"total_percentage": total_percentage, "max_allowed": Decimal("100")},
        )

    @classmethod
    def budget_exceeds_investment(
        cls, total_budget: Decimal, total_investment: Decimal
    ) -> "AllocationError":
        return cls(
            "BUDGET_EXCEEDS_INVESTMENT",
            "Total budget allocation exceeds investment amount",
            {
                "total_budget": total_budget,
                "total_investment": total_investment,
                "excess_amount": total_budget - total_investment,
            },
        )

    @classmethod
    def no_eligible_stocks(cls, strategy_name: str) -> "AllocationError":
        return cls(
            "NO_ELIGIBLE_STOCKS",
            f"No eligible stocks found for strategy: {strategy_name}",
            {
                "strategy_name": strategy_name,
                "suggestion": "Check that stocks have Buy signals and are marked as eligible",
            },
        )

    @classmethod
    def constraint_violation(
        cls, violations: List[ConstraintViolation]
    ) -> "AllocationError":
        message = "Allocation constraints violated"
        if violations:
            message = f"{message}: {violations[0].message}"
        return cls(
            "CONSTRAINT_VIOLATION",
            message,
            {"violations": [violation.model_dump(mode="json") for violation in violations]},
        )

    @classmethod
    def insufficient_allocation(
        cls, total_allocated: Decimal, total_investment: Decimal
    ) -> "AllocationError":
        unallocated = total_investment - total_allocated
        percentage = Decimal("0")
        if total_investment > 0:
            percentage = unallocated / total_investment * 100
        return cls(
            "INSUFFICIENT_ALLOCATION",
            "Unable to allocate sufficient funds due to constraints",
            {
                "total_allocated": total_allocated,
                "total_investment": total_investment,
                "unallocated_cash": unallocated,
                "unallocated_percentage": percentage.quantize(Decimal("0.01")),
            },
        )

    @classmethod
    def no_strategies_found(cls, strategy_ids: List[str]) -> "AllocationError":
        return cls("NO_STRATEGIES_FOUND", "no strategies found", {"strategy_ids": strategy_ids})

    @classmethod
    def missing_market_data(cls, tickers: List[str]) -> "AllocationError":
        return cls(
            "MISSING_MARKET_DATA",
            f"no quote available for symbol {tickers[0]}" if tickers else "market data unavailable",
            {"tickers": tickers},
        )


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_jsonable(item) for item in value]
    return value


class InvalidRequestError(Exception):
    pass


class StrategyNotFoundError(Exception):
    pass


class StockNotFoundError(Exception):
    pass


class PortfolioNotFoundError(Exception):
    pass


class RebalanceError(Exception):
    pass


class MarketDataError(Exception):
    pass


class MarketDataNotSupportedError(MarketDataError):
    pass


class SchedulerStateError(Exception):
    pass


class NavUpdateError(Exception):
    pass


class NavUpdateCancelledError(NavUpdateError):
    pass
