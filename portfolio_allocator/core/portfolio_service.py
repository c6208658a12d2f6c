import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, List, Optional, Sequence

from portfolio_allocator.core.allocation_engine import AllocationEngine
from portfolio_allocator.core.errors import (
    InvalidRequestError,
    MarketDataError,
    PortfolioNotFoundError,
    RebalanceError,
    StockNotFoundError,
    StrategyNotFoundError,
)
from portfolio_allocator.core.models import (
    AllocationConstraints,
    AllocationPreview,
    AllocationRequest,
    CreatePortfolioRequest,
    NavHistory,
    PerformanceMetrics,
    Portfolio,
    Position,
    UpdatePortfolioRequest,
)
from portfolio_allocator.core.performance import calculate_performance_metrics
from portfolio_allocator.core.preview_cache import AllocationPreviewCache, generate_cache_key
from portfolio_allocator.core.repositories import (
    PortfolioRepository,
    QuoteSource,
    StockRepository,
    StrategyRepository,
)

logger = logging.getLogger(__name__)

DEFAULT_REBALANCE_CONSTRAINTS = AllocationConstraints(
    max_allocation_per_stock=Decimal("20"),
    min_allocation_amount=Decimal("100"),
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PortfolioService:
    def __init__(
        self,
        *,
        allocation_engine: AllocationEngine,
        strategy_repository: StrategyRepository,
        stock_repository: StockRepository,
        portfolio_repository: PortfolioRepository,
        quote_source: QuoteSource,
        preview_cache: Optional[AllocationPreviewCache] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._engine = allocation_engine
        self._strategies = strategy_repository
        self._stocks = stock_repository
        self._portfolios = portfolio_repository
        self._quotes = quote_source
        self._preview_cache = preview_cache
        self._clock = clock

    def validate_allocation_request(self, request: Optional[AllocationRequest]) -> None:
        if request is None:
            raise InvalidRequestError("ALLOCATION_REQUEST_REQUIRED")
        if not request.strategy_ids:
            raise InvalidRequestError("STRATEGY_IDS_REQUIRED")
        if request.total_investment <= 0:
            raise InvalidRequestError("TOTAL_INVESTMENT_MUST_BE_POSITIVE")
        max_percent = request.constraints.max_allocation_per_stock
        if max_percent <= 0 or max_percent > 100:
            raise InvalidRequestError("MAX_ALLOCATION_PER_STOCK_OUT_OF_RANGE")
        if request.constraints.min_allocation_amount < 0:
            raise InvalidRequestError("MIN_ALLOCATION_AMOUNT_NEGATIVE")

    def _assert_strategies_resolve(self, strategy_ids: Sequence[str]) -> None:
        found = {s.id for s in self._strategies.get_by_ids(strategy_ids=list(strategy_ids))}
        if set(strategy_ids) - found:
            raise StrategyNotFoundError("STRATEGIES_NOT_FOUND")

    def _cached_or_calculate(
        self, request: AllocationRequest, calculate: Callable[[], AllocationPreview]
    ) -> AllocationPreview:
        if self._preview_cache is None:
            return calculate()
        key = generate_cache_key(request)
        cached = self._preview_cache.get(key)
        if cached is not None:
            logger.debug("allocation.preview_cache_hit", extra={"extra_fields": {"key": key}})
            return cached
        preview = calculate()
        self._preview_cache.set(key, preview)
        return preview

    def generate_allocation_preview(self, request: AllocationRequest) -> AllocationPreview:
        self.validate_allocation_request(request)
        self._assert_strategies_resolve(request.strategy_ids)
        return self._cached_or_calculate(
            request, lambda: self._engine.calculate_allocations(request)
        )

    def generate_allocation_preview_with_exclusions(
        self, request: AllocationRequest, excluded_stocks: Sequence[str]
    ) -> AllocationPreview:
        self.validate_allocation_request(request)
        self._assert_strategies_resolve(request.strategy_ids)
        merged = request.model_copy(
            update={
                "excluded_stocks": list(
                    dict.fromkeys([*request.excluded_stocks, *excluded_stocks])
                )
            }
        )
        return self._cached_or_calculate(
            merged, lambda: self._engine.recalculate_with_exclusions(request, excluded_stocks)
        )

    def create_portfolio(self, request: CreatePortfolioRequest, user_id: str) -> Portfolio:
        if request is None:
            raise InvalidRequestError("CREATE_PORTFOLIO_REQUEST_REQUIRED")
        if not request.name.strip():
            raise InvalidRequestError("PORTFOLIO_NAME_REQUIRED")
        if request.total_investment <= 0:
            raise InvalidRequestError("TOTAL_INVESTMENT_MUST_BE_POSITIVE")
        if not request.positions:
            raise InvalidRequestError("PORTFOLIO_POSITIONS_REQUIRED")

        stock_ids = [p.stock_id for p in request.positions]
        if len(set(stock_ids)) != len(stock_ids):
            raise InvalidRequestError("DUPLICATE_POSITION_STOCK")
        stocks = {s.id: s for s in self._stocks.get_by_ids(stock_ids=stock_ids)}
        missing = [stock_id for stock_id in stock_ids if stock_id not in stocks]
        if missing:
            raise StockNotFoundError("STOCK_NOT_FOUND")

        now = self._clock()
        portfolio = Portfolio(
            id=f"pf_{uuid.uuid4().hex[:12]}",
            user_id=user_id,
            name=request.name.strip(),
            total_investment=request.total_investment,
            created_at=now,
            updated_at=now,
        )
        positions = [
            Position(
                portfolio_id=portfolio.id,
                stock_id=item.stock_id,
                ticker=stocks[item.stock_id].ticker,
                quantity=item.quantity,
                entry_price=item.entry_price,
                allocation_value=item.allocation_value,
                strategy_contrib=dict(item.strategy_contrib),
                created_at=now,
                updated_at=now,
            )
            for item in request.positions
        ]
        initial_nav = NavHistory(
            portfolio_id=portfolio.id,
            timestamp=now,
            nav=request.total_investment,
            pnl=Decimal("0"),
            drawdown=Decimal("0"),
            created_at=now,
        )
        self._portfolios.create_portfolio_with_positions(portfolio, positions, initial_nav)
        logger.info(
            "portfolio.created",
            extra={
                "extra_fields": {
                    "portfolio_id": portfolio.id,
                    "position_count": len(positions),
                }
            },
        )
        return self._require_portfolio(portfolio.id)

    def _require_portfolio(self, portfolio_id: str) -> Portfolio:
        portfolio = self._portfolios.get_by_id(portfolio_id=portfolio_id)
        if portfolio is None:
            raise PortfolioNotFoundError("PORTFOLIO_NOT_FOUND")
        return portfolio

    def _enrich_positions(self, positions: List[Position]) -> None:
        tickers = list(dict.fromkeys(p.ticker for p in positions if p.ticker))
        if not tickers:
            return
        quotes = self._quotes.get_batch_quotes(symbols=tickers)
        for position in positions:
            quote = quotes.get(position.ticker)
            if quote is not None:
                position.calculate_metrics(quote.price)

    def _enrich_quietly(self, portfolio: Portfolio) -> None:
        try:
            self._enrich_positions(portfolio.positions)
        except MarketDataError as exc:
            logger.warning(
                "portfolio.market_data_enrichment_failed",
                extra={"extra_fields": {"portfolio_id": portfolio.id, "error": str(exc)}},
            )

    def get_portfolio(self, portfolio_id: str) -> Portfolio:
        portfolio = self._require_portfolio(portfolio_id)
        self._enrich_quietly(portfolio)
        return portfolio

    def get_user_portfolios(self, user_id: str) -> List[Portfolio]:
        portfolios = self._portfolios.get_by_user_id(user_id=user_id)
        for portfolio in portfolios:
            self._enrich_quietly(portfolio)
        return portfolios

    def update_portfolio(self, portfolio_id: str, request: UpdatePortfolioRequest) -> Portfolio:
        portfolio = self._require_portfolio(portfolio_id)
        if request.name is not None:
            if not request.name.strip():
                raise InvalidRequestError("PORTFOLIO_NAME_REQUIRED")
            portfolio.name = request.name.strip()
        if request.total_investment is not None:
            if request.total_investment <= 0:
                raise InvalidRequestError("TOTAL_INVESTMENT_MUST_BE_POSITIVE")
            portfolio.total_investment = request.total_investment
        portfolio.updated_at = self._clock()
        self._portfolios.update(portfolio)
        return self.get_portfolio(portfolio_id)

    def delete_portfolio(self, portfolio_id: str) -> None:
        if not self._portfolios.delete(portfolio_id=portfolio_id):
            raise PortfolioNotFoundError("PORTFOLIO_NOT_FOUND")
        logger.info("portfolio.deleted", extra={"extra_fields": {"portfolio_id": portfolio_id}})

    def update_portfolio_nav(self, portfolio_id: str) -> NavHistory:
        """
        Marks the portfolio to market and appends a NAV row.

        Positions without a live quote contribute their allocation value. Quote source
        failures propagate so callers such as the scheduler can retry.
        """
        portfolio = self._require_portfolio(portfolio_id)
        now = self._clock()

        if not portfolio.positions:
            nav = portfolio.total_investment
            pnl = Decimal("0")
        else:
            self._enrich_positions(portfolio.positions)
            nav = Decimal("0")
            pnl = Decimal("0")
            for position in portfolio.positions:
                if position.current_value is not None:
                    nav += position.current_value
                else:
                    nav += position.allocation_value
                if position.pnl is not None:
                    pnl += position.pnl

        entry = NavHistory(
            portfolio_id=portfolio_id, timestamp=now, nav=nav, pnl=pnl, created_at=now
        )
        entry.calculate_drawdown(self._high_water_mark(portfolio_id, entry))
        self._portfolios.create_nav_history(entry)
        return entry

    def _high_water_mark(self, portfolio_id: str, entry: NavHistory) -> Decimal:
        history = self._portfolios.get_nav_history(portfolio_id=portfolio_id, end=entry.timestamp)
        return max([entry.nav, *(row.nav for row in history)])

    def get_portfolio_history(
        self,
        portfolio_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[NavHistory]:
        self._require_portfolio(portfolio_id)
        return self._portfolios.get_nav_history(portfolio_id=portfolio_id, start=start, end=end)

    def get_portfolio_performance_metrics(self, portfolio_id: str) -> PerformanceMetrics:
        portfolio = self._require_portfolio(portfolio_id)
        history = self._portfolios.get_nav_history(portfolio_id=portfolio_id)
        return calculate_performance_metrics(history, portfolio.total_investment)

    def generate_rebalance_preview(
        self,
        portfolio_id: str,
        new_total_investment: Decimal,
        constraints: Optional[AllocationConstraints] = None,
    ) -> AllocationPreview:
        portfolio = self._require_portfolio(portfolio_id)
        if new_total_investment <= 0:
            raise InvalidRequestError("TOTAL_INVESTMENT_MUST_BE_POSITIVE")
        if not portfolio.positions:
            raise RebalanceError("PORTFOLIO_HAS_NO_POSITIONS")

        strategy_ids: dict[str, None] = {}
        for position in portfolio.positions:
            strategy_ids.update(dict.fromkeys(position.strategy_contrib))
        if not strategy_ids:
            raise RebalanceError("REBALANCE_STRATEGIES_UNRESOLVED")

        request = AllocationRequest(
            strategy_ids=list(strategy_ids),
            total_investment=new_total_investment,
            constraints=constraints or DEFAULT_REBALANCE_CONSTRAINTS,
        )
        return self._engine.calculate_allocations(request)

    def rebalance_portfolio(
        self,
        portfolio_id: str,
        new_total_investment: Decimal,
        constraints: Optional[AllocationConstraints] = None,
    ) -> Portfolio:
        """
        Applies a fresh allocation to the portfolio.

        Held stocks are updated in place and new stocks are inserted. Positions that
        drop out of the new allocation are left untouched.
        """
        preview = self.generate_rebalance_preview(portfolio_id, new_total_investment, constraints)
        portfolio = self._require_portfolio(portfolio_id)
        now = self._clock()

        portfolio.total_investment = new_total_investment
        portfolio.updated_at = now
        self._portfolios.update(portfolio)

        held = {position.stock_id: position for position in portfolio.positions}
        for allocation in preview.allocations:
            existing = held.get(allocation.stock_id)
            if existing is not None:
                existing.quantity = allocation.quantity
                existing.allocation_value = allocation.actual_value
                existing.updated_at = now
                self._portfolios.update_position(existing)
                continue
            self._portfolios.create_position(
                Position(
                    portfolio_id=portfolio_id,
                    stock_id=allocation.stock_id,
                    ticker=allocation.ticker,
                    quantity=allocation.quantity,
                    entry_price=allocation.price,
                    allocation_value=allocation.actual_value,
                    strategy_contrib=dict(allocation.strategy_contrib),
                    created_at=now,
                    updated_at=now,
                )
            )

        try:
            self.update_portfolio_nav(portfolio_id)
        except MarketDataError as exc:
            logger.warning(
                "portfolio.rebalance_nav_refresh_failed",
                extra={"extra_fields": {"portfolio_id": portfolio_id, "error": str(exc)}},
            )
        logger.info(
            "portfolio.rebalanced",
            extra={
                "extra_fields": {
                    "portfolio_id": portfolio_id,
                    "total_investment": str(new_total_investment),
                    "allocation_count": len(preview.allocations),
                }
            },
        )
        return self.get_portfolio(portfolio_id)
