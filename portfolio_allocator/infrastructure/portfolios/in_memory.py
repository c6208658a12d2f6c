from copy import deepcopy
from datetime import datetime
from threading import Lock
from typing import Optional, Sequence

from portfolio_allocator.core.models import NavHistory, Portfolio, Position
from portfolio_allocator.core.repositories import PortfolioRepository


class InMemoryPortfolioRepository(PortfolioRepository):
    def __init__(self) -> None:
        self._lock = Lock()
        self._portfolios: dict[str, Portfolio] = {}
        self._positions: dict[str, dict[str, Position]] = {}
        self._nav_history: dict[str, list[NavHistory]] = {}

    def create(self, portfolio: Portfolio) -> None:
        with self._lock:
            self._insert_portfolio(portfolio)

    def _insert_portfolio(self, portfolio: Portfolio) -> None:
        if portfolio.id in self._portfolios:
            raise ValueError("PORTFOLIO_ALREADY_EXISTS")
        self._portfolios[portfolio.id] = deepcopy(
            portfolio.model_copy(update={"positions": [], "nav_history": []})
        )
        self._positions.setdefault(portfolio.id, {})
        self._nav_history.setdefault(portfolio.id, [])

    def _hydrate(self, portfolio_id: str) -> Portfolio:
        portfolio = deepcopy(self._portfolios[portfolio_id])
        portfolio.positions = [deepcopy(p) for p in self._positions[portfolio_id].values()]
        history = self._nav_history[portfolio_id]
        if history:
            portfolio.nav_history = [deepcopy(max(history, key=lambda item: item.timestamp))]
        else:
            portfolio.nav_history = []
        return portfolio

    def get_by_id(self, *, portfolio_id: str) -> Optional[Portfolio]:
        with self._lock:
            if portfolio_id not in self._portfolios:
                return None
            return self._hydrate(portfolio_id)

    def get_by_user_id(self, *, user_id: str) -> list[Portfolio]:
        with self._lock:
            owned = [p for p in self._portfolios.values() if p.user_id == user_id]
            owned.sort(key=lambda item: (item.created_at, item.id), reverse=True)
            return [self._hydrate(p.id) for p in owned]

    def get_all_portfolio_ids(self) -> list[str]:
        with self._lock:
            ordered = sorted(self._portfolios.values(), key=lambda item: (item.created_at, item.id))
            return [p.id for p in ordered]

    def update(self, portfolio: Portfolio) -> None:
        with self._lock:
            if portfolio.id not in self._portfolios:
                raise KeyError(portfolio.id)
            self._portfolios[portfolio.id] = deepcopy(
                portfolio.model_copy(update={"positions": [], "nav_history": []})
            )

    def delete(self, *, portfolio_id: str) -> bool:
        with self._lock:
            if self._portfolios.pop(portfolio_id, None) is None:
                return False
            self._positions.pop(portfolio_id, None)
            self._nav_history.pop(portfolio_id, None)
            return True

    def create_position(self, position: Position) -> None:
        with self._lock:
            positions = self._positions.get(position.portfolio_id)
            if positions is None:
                raise KeyError(position.portfolio_id)
            positions[position.stock_id] = deepcopy(position)

    def get_positions(self, *, portfolio_id: str) -> list[Position]:
        with self._lock:
            return [deepcopy(p) for p in self._positions.get(portfolio_id, {}).values()]

    def update_position(self, position: Position) -> None:
        with self._lock:
            positions = self._positions.get(position.portfolio_id, {})
            if position.stock_id not in positions:
                raise KeyError(position.stock_id)
            positions[position.stock_id] = deepcopy(position)

    def delete_position(self, *, portfolio_id: str, stock_id: str) -> bool:
        with self._lock:
            return self._positions.get(portfolio_id, {}).pop(stock_id, None) is not None

    def create_nav_history(self, entry: NavHistory) -> None:
        with self._lock:
            history = self._nav_history.get(entry.portfolio_id)
            if history is None:
                raise KeyError(entry.portfolio_id)
            history.append(deepcopy(entry))

    def get_nav_history(
        self,
        *,
        portfolio_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[NavHistory]:
        with self._lock:
            rows = [
                entry
                for entry in self._nav_history.get(portfolio_id, [])
                if (start is None or entry.timestamp >= start)
                and (end is None or entry.timestamp <= end)
            ]
            rows.sort(key=lambda item: item.timestamp)
            return deepcopy(rows)

    def get_latest_nav(self, *, portfolio_id: str) -> Optional[NavHistory]:
        with self._lock:
            history = self._nav_history.get(portfolio_id)
            if not history:
                return None
            return deepcopy(max(history, key=lambda item: item.timestamp))

    def create_portfolio_with_positions(
        self,
        portfolio: Portfolio,
        positions: Sequence[Position],
        initial_nav: NavHistory,
    ) -> None:
        with self._lock:
            if portfolio.id in self._portfolios:
                raise ValueError("PORTFOLIO_ALREADY_EXISTS")
            staged = {position.stock_id: deepcopy(position) for position in positions}
            self._insert_portfolio(portfolio)
            self._positions[portfolio.id] = staged
            self._nav_history[portfolio.id] = [deepcopy(initial_nav)]
