"""
FILE: portfolio_allocator/core/allocation_engine.py
Strategy-weighted cash allocation across Buy-signalled stocks.

Pipeline: strategy weights -> equal split per strategy -> constraint config check ->
cap/floor -> normalization -> whole-share pricing -> diagnostics.
"""

import logging
from decimal import ROUND_FLOOR, Decimal
from typing import Dict, List, Optional, Sequence

from portfolio_allocator.core.constraints import MIN_ALLOCATION_RATIO, ConstraintValidator
from portfolio_allocator.core.errors import AllocationError, MarketDataError
from portfolio_allocator.core.models import (
    AllocationConstraints,
    AllocationPreview,
    AllocationRequest,
    ConstraintViolation,
    SignalType,
    StockAllocation,
    Strategy,
    ValidationResult,
    WeightMode,
)
from portfolio_allocator.core.repositories import (
    QuoteSource,
    SignalRepository,
    StockRepository,
    StrategyRepository,
)

logger = logging.getLogger(__name__)

_HUNDRED = Decimal("100")
_ZERO = Decimal("0")


def _whole_shares(value: Decimal, price: Decimal) -> int:
    if price <= 0:
        return 0
    quantity = int((value / price).to_integral_value(rounding=ROUND_FLOOR))
    # Division is rounded to context precision; never let that buy an extra share.
    while quantity > 0 and price * quantity > value:
        quantity -= 1
    return max(quantity, 0)


class AllocationEngine:
    def __init__(
        self,
        *,
        strategy_repository: StrategyRepository,
        stock_repository: StockRepository,
        signal_repository: SignalRepository,
        quote_source: QuoteSource,
        constraint_validator: Optional[ConstraintValidator] = None,
    ) -> None:
        self._strategies = strategy_repository
        self._stocks = stock_repository
        self._signals = signal_repository
        self._quotes = quote_source
        self._validator = constraint_validator or ConstraintValidator()

    def calculate_allocations(self, request: AllocationRequest) -> AllocationPreview:
        strategies = self._load_strategies(request.strategy_ids)
        if not strategies:
            raise AllocationError.no_strategies_found(list(request.strategy_ids))

        total = request.total_investment
        strategy_amounts = self.calculate_strategy_weights(strategies, total)
        allocations = self.distribute_to_stocks(
            strategies, strategy_amounts, request.excluded_stocks
        )

        config_result = self.validate_constraints_config(request.constraints, total)
        if not config_result.is_valid:
            raise AllocationError.constraint_violation(config_result.violations)

        allocations = self.apply_constraints(allocations, request.constraints, total)
        allocations = self.normalize_allocations(allocations, total)
        allocations = self.add_prices_and_quantities(allocations)

        diagnostics = self.validate_constraints_detailed(allocations, request.constraints, total)
        if not diagnostics.is_valid:
            logger.warning(
                "allocation.validation_warnings",
                extra={
                    "extra_fields": {
                        "violation_types": [v.type for v in diagnostics.violations],
                        "violation_count": len(diagnostics.violations),
                    }
                },
            )

        total_allocated = sum((a.actual_value for a in allocations), _ZERO)
        if total > 0 and total_allocated / total < MIN_ALLOCATION_RATIO:
            logger.warning(
                "allocation.insufficient",
                extra={
                    "extra_fields": AllocationError.insufficient_allocation(
                        total_allocated, total
                    ).to_dict()
                },
            )

        return AllocationPreview(
            total_investment=total,
            allocations=allocations,
            unallocated_cash=total - total_allocated,
            total_allocated=total_allocated,
            constraints=request.constraints,
            warnings=diagnostics.violations,
        )

    def recalculate_with_exclusions(
        self, request: AllocationRequest, excluded_stocks: Sequence[str]
    ) -> AllocationPreview:
        merged = list(dict.fromkeys([*request.excluded_stocks, *excluded_stocks]))
        return self.calculate_allocations(request.model_copy(update={"excluded_stocks": merged}))

    def rebalance_allocations(
        self, portfolio_id: str, new_total_investment: Decimal
    ) -> AllocationPreview:
        # Rebalancing needs persisted positions; PortfolioService owns it.
        raise NotImplementedError("REBALANCE_REQUIRES_PORTFOLIO_SERVICE")

    def _load_strategies(self, strategy_ids: Sequence[str]) -> List[Strategy]:
        strategies = self._strategies.get_by_ids(strategy_ids=list(strategy_ids))
        order = {strategy_id: index for index, strategy_id in enumerate(strategy_ids)}
        return sorted(strategies, key=lambda s: order.get(s.id, len(order)))

    def calculate_strategy_weights(
        self, strategies: Sequence[Strategy], total_investment: Decimal
    ) -> Dict[str, Decimal]:
        """
        Resolves each strategy to a cash amount.

        Budget strategies reserve their literal amount first; percent strategies then
        share whatever remains.
        """
        budget = [s for s in strategies if s.weight_mode == WeightMode.BUDGET]
        percent = [s for s in strategies if s.weight_mode == WeightMode.PERCENT]

        total_budget = sum((s.weight_value for s in budget), _ZERO)
        if total_budget > total_investment:
            raise AllocationError.budget_exceeds_investment(total_budget, total_investment)
        remaining = total_investment - total_budget

        total_percent = sum((s.weight_value for s in percent), _ZERO)
        if total_percent > _HUNDRED:
            raise AllocationError.invalid_strategy_weights(total_percent)

        amounts: Dict[str, Decimal] = {}
        for strategy in strategies:
            if strategy.weight_mode == WeightMode.BUDGET:
                amounts[strategy.id] = strategy.weight_value
            else:
                amounts[strategy.id] = remaining * strategy.weight_value / _HUNDRED
        return amounts

    def distribute_to_stocks(
        self,
        strategies: Sequence[Strategy],
        strategy_amounts: Dict[str, Decimal],
        excluded_stocks: Sequence[str],
    ) -> List[StockAllocation]:
        excluded = set(excluded_stocks)
        memberships: Dict[str, List[str]] = {}
        candidate_ids: Dict[str, None] = {}
        for strategy in strategies:
            stock_ids = [
                member.stock_id
                for member in self._strategies.get_strategy_stocks(strategy_id=strategy.id)
                if member.eligible and member.stock_id not in excluded
            ]
            memberships[strategy.id] = list(dict.fromkeys(stock_ids))
            candidate_ids.update(dict.fromkeys(stock_ids))

        candidates = list(candidate_ids)
        stocks = {stock.id: stock for stock in self._stocks.get_by_ids(stock_ids=candidates)}
        signals = self._signals.get_latest_signals(stock_ids=candidates)

        allocations: Dict[str, StockAllocation] = {}
        for strategy in strategies:
            amount = strategy_amounts.get(strategy.id, _ZERO)
            if amount == 0:
                continue
            eligible = [
                stock_id
                for stock_id in memberships[strategy.id]
                if stock_id in signals and signals[stock_id].signal == SignalType.BUY
            ]
            if not eligible:
                # Cash for this strategy stays unallocated.
                logger.warning(
                    "allocation.strategy_without_eligible_stocks",
                    extra={
                        "extra_fields": {
                            "strategy_id": strategy.id,
                            **AllocationError.no_eligible_stocks(strategy.name).to_dict(),
                        }
                    },
                )
                continue

            per_stock = amount / Decimal(len(eligible))
            for stock_id in eligible:
                stock = stocks.get(stock_id)
                if stock is None:
                    continue
                allocation = allocations.get(stock_id)
                if allocation is None:
                    allocation = StockAllocation(
                        stock_id=stock.id, ticker=stock.ticker, name=stock.name
                    )
                    allocations[stock_id] = allocation
                allocation.allocation_value += per_stock
                allocation.strategy_contrib[strategy.id] = (
                    allocation.strategy_contrib.get(strategy.id, _ZERO) + per_stock
                )
        return list(allocations.values())

    def apply_constraints(
        self,
        allocations: Sequence[StockAllocation],
        constraints: AllocationConstraints,
        total_investment: Decimal,
    ) -> List[StockAllocation]:
        cap = total_investment * constraints.max_allocation_per_stock / _HUNDRED
        kept = []
        for allocation in allocations:
            value = allocation.allocation_value
            contrib = dict(allocation.strategy_contrib)
            if value > cap:
                ratio = cap / value
                contrib = {key: amount * ratio for key, amount in contrib.items()}
                value = cap
            if value < constraints.min_allocation_amount:
                continue
            kept.append(
                allocation.model_copy(
                    update={"allocation_value": value, "strategy_contrib": contrib}
                )
            )
        return kept

    def normalize_allocations(
        self, allocations: Sequence[StockAllocation], total_investment: Decimal
    ) -> List[StockAllocation]:
        current_total = sum((a.allocation_value for a in allocations), _ZERO)
        if not allocations or current_total == 0 or total_investment == 0:
            return list(allocations)

        factor = total_investment / current_total
        normalized = []
        for allocation in allocations:
            value = allocation.allocation_value * factor
            contrib = {k: amount * factor for k, amount in allocation.strategy_contrib.items()}
            normalized.append(
                allocation.model_copy(
                    update={
                        "allocation_value": value,
                        "weight": value / total_investment * _HUNDRED,
                        "strategy_contrib": contrib,
                    }
                )
            )
        return normalized

    def add_prices_and_quantities(
        self, allocations: Sequence[StockAllocation]
    ) -> List[StockAllocation]:
        if not allocations:
            return []
        tickers = [a.ticker for a in allocations]
        try:
            quotes = self._quotes.get_batch_quotes(symbols=tickers)
        except MarketDataError as exc:
            raise AllocationError.missing_market_data(tickers) from exc

        missing = [ticker for ticker in tickers if ticker not in quotes]
        if missing:
            raise AllocationError.missing_market_data(missing)

        priced = []
        for allocation in allocations:
            price = quotes[allocation.ticker].price
            quantity = _whole_shares(allocation.allocation_value, price)
            priced.append(
                allocation.model_copy(
                    update={
                        "price": price,
                        "quantity": quantity,
                        "actual_value": price * quantity if quantity else _ZERO,
                    }
                )
            )
        return priced

    def validate_constraints(
        self, allocations: Sequence[StockAllocation], constraints: AllocationConstraints
    ) -> None:
        for allocation in allocations:
            if allocation.allocation_value < constraints.min_allocation_amount:
                violation = ConstraintViolation(
                    type="MIN_ALLOCATION_VIOLATION",
                    message=(
                        f"stock {allocation.ticker} allocation ({allocation.allocation_value}) "
                        f"is below minimum ({constraints.min_allocation_amount})"
                    ),
                    stock_ticker=allocation.ticker,
                    current_value=allocation.allocation_value,
                    limit_value=constraints.min_allocation_amount,
                )
                raise AllocationError.constraint_violation([violation])
            if allocation.weight > constraints.max_allocation_per_stock:
                violation = ConstraintViolation(
                    type="MAX_ALLOCATION_VIOLATION",
                    message=(
                        f"stock {allocation.ticker} allocation ({allocation.weight}%) "
                        f"exceeds maximum ({constraints.max_allocation_per_stock}%)"
                    ),
                    stock_ticker=allocation.ticker,
                    current_value=allocation.weight,
                    limit_value=constraints.max_allocation_per_stock,
                )
                raise AllocationError.constraint_violation([violation])

    def validate_constraints_detailed(
        self,
        allocations: Sequence[StockAllocation],
        constraints: AllocationConstraints,
        total_investment: Decimal,
    ) -> ValidationResult:
        return self._validator.validate_allocations(allocations, constraints, total_investment)

    def validate_constraints_config(
        self, constraints: AllocationConstraints, total_investment: Decimal
    ) -> ValidationResult:
        return self._validator.validate_constraints_config(constraints, total_investment)

    def suggest_constraint_adjustments(self, request: AllocationRequest) -> List[str]:
        strategies = self._load_strategies(request.strategy_ids)
        return self._validator.suggest_constraint_adjustments(
            strategies, request.total_investment, request.constraints
        )
