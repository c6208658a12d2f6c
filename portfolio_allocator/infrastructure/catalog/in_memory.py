from copy import deepcopy
from threading import Lock
from typing import Iterable, Optional, Sequence

from portfolio_allocator.core.models import Signal, Stock, Strategy, StrategyStock
from portfolio_allocator.core.repositories import (
    SignalRepository,
    StockRepository,
    StrategyRepository,
)


class InMemoryStrategyRepository(StrategyRepository):
    def __init__(self, strategies: Optional[Iterable[Strategy]] = None) -> None:
        self._lock = Lock()
        self._strategies: dict[str, Strategy] = {}
        for strategy in strategies or []:
            self.save(strategy)

    def save(self, strategy: Strategy) -> None:
        with self._lock:
            self._strategies[strategy.id] = deepcopy(strategy)

    def get_by_ids(self, *, strategy_ids: Sequence[str]) -> list[Strategy]:
        with self._lock:
            found = []
            seen: set[str] = set()
            for strategy_id in strategy_ids:
                strategy = self._strategies.get(strategy_id)
                if strategy is None or strategy_id in seen:
                    continue
                seen.add(strategy_id)
                found.append(deepcopy(strategy))
            return found

    def get_strategy_stocks(self, *, strategy_id: str) -> list[StrategyStock]:
        with self._lock:
            strategy = self._strategies.get(strategy_id)
            return deepcopy(strategy.stocks) if strategy is not None else []


class InMemoryStockRepository(StockRepository):
    def __init__(self, stocks: Optional[Iterable[Stock]] = None) -> None:
        self._lock = Lock()
        self._stocks: dict[str, Stock] = {}
        for stock in stocks or []:
            self.save(stock)

    def save(self, stock: Stock) -> None:
        with self._lock:
            duplicate = next(
                (s for s in self._stocks.values() if s.ticker == stock.ticker and s.id != stock.id),
                None,
            )
            if duplicate is not None:
                raise ValueError("STOCK_TICKER_ALREADY_EXISTS")
            self._stocks[stock.id] = deepcopy(stock)

    def get_by_ids(self, *, stock_ids: Sequence[str]) -> list[Stock]:
        with self._lock:
            return [
                deepcopy(self._stocks[stock_id])
                for stock_id in dict.fromkeys(stock_ids)
                if stock_id in self._stocks
            ]


class InMemorySignalRepository(SignalRepository):
    def __init__(self, signals: Optional[Iterable[Signal]] = None) -> None:
        self._lock = Lock()
        self._signals: dict[str, list[Signal]] = {}
        for signal in signals or []:
            self.add(signal)

    def add(self, signal: Signal) -> None:
        with self._lock:
            self._signals.setdefault(signal.stock_id, []).append(deepcopy(signal))

    def get_latest_signals(self, *, stock_ids: Sequence[str]) -> dict[str, Signal]:
        with self._lock:
            latest = {}
            for stock_id in stock_ids:
                history = self._signals.get(stock_id)
                if history:
                    latest[stock_id] = deepcopy(max(reversed(history), key=lambda item: item.date))
            return latest
