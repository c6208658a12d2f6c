from datetime import datetime
from typing import Dict, List, Optional, Protocol, Sequence

from portfolio_allocator.core.models import (
    Bar,
    BarInterval,
    NavHistory,
    Portfolio,
    Position,
    Quote,
    Signal,
    Stock,
    Strategy,
    StrategyStock,
)


class StrategyRepository(Protocol):
    def get_by_ids(self, *, strategy_ids: Sequence[str]) -> List[Strategy]: ...

    def get_strategy_stocks(self, *, strategy_id: str) -> List[StrategyStock]: ...


class StockRepository(Protocol):
    def get_by_ids(self, *, stock_ids: Sequence[str]) -> List[Stock]: ...


class SignalRepository(Protocol):
    def get_latest_signals(self, *, stock_ids: Sequence[str]) -> Dict[str, Signal]: ...


class QuoteSource(Protocol):
    def get_quote(self, *, symbol: str) -> Quote: ...

    def get_batch_quotes(self, *, symbols: Sequence[str]) -> Dict[str, Quote]: ...

    def get_historical_bars(
        self,
        *,
        symbol: str,
        start: datetime,
        end: datetime,
        interval: BarInterval,
    ) -> List[Bar]: ...


class PortfolioRepository(Protocol):
    def create(self, portfolio: Portfolio) -> None: ...

    def get_by_id(self, *, portfolio_id: str) -> Optional[Portfolio]: ...

    def get_by_user_id(self, *, user_id: str) -> List[Portfolio]: ...

    def get_all_portfolio_ids(self) -> List[str]: ...

    def update(self, portfolio: Portfolio) -> None: ...

    def delete(self, *, portfolio_id: str) -> bool: ...

    def create_position(self, position: Position) -> None: ...

    def get_positions(self, *, portfolio_id: str) -> List[Position]: ...

    def update_position(self, position: Position) -> None: ...

    def delete_position(self, *, portfolio_id: str, stock_id: str) -> bool: ...

    def create_nav_history(self, entry: NavHistory) -> None: ...

    def get_nav_history(
        self,
        *,
        portfolio_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[NavHistory]: ...

    def get_latest_nav(self, *, portfolio_id: str) -> Optional[NavHistory]: ...

    def create_portfolio_with_positions(
        self,
        portfolio: Portfolio,
        positions: Sequence[Position],
        initial_nav: NavHistory,
    ) -> None: ...
