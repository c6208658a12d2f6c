"""
FILE: portfolio_allocator/core/constraints.py
Business-rule checks over a constraint pair and over a computed allocation set.
"""

from decimal import Decimal
from typing import List, Sequence

from portfolio_allocator.core.models import (
    AllocationConstraints,
    ConstraintViolation,
    StockAllocation,
    Strategy,
    ValidationResult,
)

MIN_ALLOCATION_RATIO = Decimal("0.5")
MIN_DIVERSIFIED_HOLDINGS = 3
ESTIMATED_STOCKS_PER_STRATEGY = 5
_HUNDRED = Decimal("100")


def _fixed(value: Decimal, places: int) -> str:
    return f"{value:.{places}f}"


class ConstraintValidator:
    """
    Stateless validator. Every check returns structured violations with remediation
    suggestions; nothing here raises, so callers decide whether to block or warn.
    """

    def validate_allocations(
        self,
        allocations: Sequence[StockAllocation],
        constraints: AllocationConstraints,
        total_investment: Decimal,
    ) -> ValidationResult:
        violations: List[ConstraintViolation] = []
        for allocation in allocations:
            violations.extend(
                self._validate_single_allocation(allocation, constraints, total_investment)
            )
        violations.extend(self._validate_totals(allocations, total_investment))
        return ValidationResult(is_valid=not violations, violations=violations)

    def _validate_single_allocation(
        self,
        allocation: StockAllocation,
        constraints: AllocationConstraints,
        total_investment: Decimal,
    ) -> List[ConstraintViolation]:
        violations = []
        minimum = constraints.min_allocation_amount
        if allocation.allocation_value < minimum:
            violations.append(
                ConstraintViolation(
                    type="MIN_ALLOCATION_VIOLATION",
                    message=(
                        f"Stock {allocation.ticker} allocation ({allocation.allocation_value}) "
                        f"is below minimum required ({minimum})"
                    ),
                    stock_ticker=allocation.ticker,
                    current_value=allocation.allocation_value,
                    limit_value=minimum,
                    suggestions=[
                        f"Increase allocation to at least {minimum}",
                        "Consider removing this stock if minimum allocation cannot be met",
                        "Reduce the number of stocks in your strategies to increase "
                        "individual allocations",
                    ],
                )
            )

        max_percent = constraints.max_allocation_per_stock
        max_amount = total_investment * max_percent / _HUNDRED
        if allocation.allocation_value > max_amount:
            violations.append(
                ConstraintViolation(
                    type="MAX_ALLOCATION_VIOLATION",
                    message=(
                        f"Stock {allocation.ticker} allocation ({allocation.weight}%) "
                        f"exceeds maximum allowed ({max_percent}%)"
                    ),
                    stock_ticker=allocation.ticker,
                    current_value=allocation.weight,
                    limit_value=max_percent,
                    suggestions=[
                        f"Reduce allocation to maximum {max_percent}% ({max_amount})",
                        "Add more stocks to your strategies to distribute the allocation",
                        "Consider increasing your total investment amount",
                        "Adjust strategy weights to reduce concentration in this stock",
                    ],
                )
            )
        return violations

    def _validate_totals(
        self, allocations: Sequence[StockAllocation], total_investment: Decimal
    ) -> List[ConstraintViolation]:
        violations = []
        total_allocated = sum((a.allocation_value for a in allocations), Decimal("0"))

        if total_investment > 0:
            ratio = total_allocated / total_investment
            if ratio < MIN_ALLOCATION_RATIO:
                unallocated = total_investment - total_allocated
                unallocated_pct = unallocated / total_investment * _HUNDRED
                violations.append(
                    ConstraintViolation(
                        type="LOW_ALLOCATION_RATIO",
                        message=(
                            f"Only {_fixed(ratio * _HUNDRED, 1)}% of total investment is "
                            f"allocated, leaving {unallocated} ({_fixed(unallocated_pct, 1)}%) "
                            "unallocated"
                        ),
                        current_value=unallocated_pct,
                        limit_value=MIN_ALLOCATION_RATIO * _HUNDRED,
                        suggestions=[
                            "Consider lowering the minimum allocation amount constraint",
                            "Add more stocks with 'Buy' signals to your strategies",
                            "Review your strategy stock eligibility settings",
                            "Consider adjusting your maximum allocation percentage to allow "
                            "larger positions",
                        ],
                    )
                )

        if 0 < len(allocations) < MIN_DIVERSIFIED_HOLDINGS:
            violations.append(
                ConstraintViolation(
                    type="CONCENTRATION_RISK",
                    message=(
                        f"Portfolio has only {len(allocations)} stocks, which may increase "
                        "concentration risk"
                    ),
                    suggestions=[
                        "Consider adding more stocks to your strategies for better "
                        "diversification",
                        "Review your stock signals - ensure more stocks have 'Buy' signals",
                        "Check strategy stock eligibility settings",
                    ],
                )
            )
        return violations

    def validate_constraints_config(
        self, constraints: AllocationConstraints, total_investment: Decimal
    ) -> ValidationResult:
        violations: List[ConstraintViolation] = []
        max_percent = constraints.max_allocation_per_stock
        minimum = constraints.min_allocation_amount

        if max_percent <= 0:
            violations.append(
                ConstraintViolation(
                    type="INVALID_MAX_ALLOCATION",
                    message="Maximum allocation per stock must be greater than 0%",
                    current_value=max_percent,
                    limit_value=Decimal("0"),
                    suggestions=["Set maximum allocation per stock to a positive percentage"],
                )
            )
        if max_percent > _HUNDRED:
            violations.append(
                ConstraintViolation(
                    type="INVALID_MAX_ALLOCATION",
                    message="Maximum allocation per stock cannot exceed 100%",
                    current_value=max_percent,
                    limit_value=_HUNDRED,
                    suggestions=["Set maximum allocation per stock to 100% or less"],
                )
            )

        if total_investment == 0:
            violations.append(
                ConstraintViolation(
                    type="ZERO_INVESTMENT",
                    message="Total investment cannot be zero",
                    suggestions=["Set a positive total investment amount"],
                )
            )
            return ValidationResult(is_valid=False, violations=violations)

        min_percent = minimum / total_investment * _HUNDRED
        if min_percent > max_percent:
            violations.append(
                ConstraintViolation(
                    type="CONFLICTING_CONSTRAINTS",
                    message=(
                        f"Minimum allocation amount ({minimum}, {_fixed(min_percent, 2)}% of "
                        f"total) exceeds maximum allocation percentage ({max_percent}%)"
                    ),
                    current_value=min_percent,
                    limit_value=max_percent,
                    suggestions=[
                        "Reduce minimum allocation amount",
                        "Increase maximum allocation percentage",
                        "Increase total investment amount",
                    ],
                )
            )

        if minimum != 0 and total_investment / minimum < 2:
            violations.append(
                ConstraintViolation(
                    type="HIGH_MIN_ALLOCATION",
                    message=(
                        f"Minimum allocation amount ({minimum}) is too high - would allow "
                        "fewer than 2 stocks in portfolio"
                    ),
                    current_value=minimum,
                    limit_value=total_investment / 2,
                    suggestions=[
                        "Reduce minimum allocation amount to allow more diversification",
                        "Increase total investment amount",
                    ],
                )
            )

        return ValidationResult(is_valid=not violations, violations=violations)

    def suggest_constraint_adjustments(
        self,
        strategies: Sequence[Strategy],
        total_investment: Decimal,
        constraints: AllocationConstraints,
    ) -> List[str]:
        # Approximation: membership counts are not consulted.
        estimated_stocks = len(strategies) * ESTIMATED_STOCKS_PER_STRATEGY
        if estimated_stocks <= 0:
            return []

        suggestions = []
        suggested_min = total_investment / Decimal(estimated_stocks * 2)
        if suggested_min < constraints.min_allocation_amount:
            suggestions.append(
                f"Consider reducing minimum allocation to {_fixed(suggested_min, 0)} "
                "to allow more diversification"
            )
        suggested_max = _HUNDRED / Decimal(estimated_stocks // 2)
        if suggested_max > constraints.max_allocation_per_stock:
            suggestions.append(
                f"Consider increasing maximum allocation to {_fixed(suggested_max, 0)}% "
                "to allow proper distribution"
            )
        return suggestions
