"""
FILE: portfolio_allocator/api/dependencies.py
Process-wide service graph shared by the routers.
"""

from threading import Lock
from typing import Optional

from portfolio_allocator.api.config import (
    catalog_seed_json,
    nav_scheduler_config,
    preview_cache_ttl_seconds,
    quote_default_price,
)
from portfolio_allocator.core.allocation_engine import AllocationEngine
from portfolio_allocator.core.nav_scheduler import NavScheduler
from portfolio_allocator.core.portfolio_service import PortfolioService
from portfolio_allocator.core.preview_cache import AllocationPreviewCache
from portfolio_allocator.infrastructure.catalog import (
    InMemorySignalRepository,
    InMemoryStockRepository,
    InMemoryStrategyRepository,
    parse_catalog_seed,
)
from portfolio_allocator.infrastructure.market_data import StaticQuoteSource
from portfolio_allocator.infrastructure.portfolios import InMemoryPortfolioRepository


class Runtime:
    def __init__(self) -> None:
        seed = parse_catalog_seed(catalog_seed_json())
        self.strategy_repository = InMemoryStrategyRepository(seed.strategies)
        self.stock_repository = InMemoryStockRepository(seed.stocks)
        self.signal_repository = InMemorySignalRepository(seed.signals)
        self.quote_source = StaticQuoteSource(default_price=quote_default_price())
        self.portfolio_repository = InMemoryPortfolioRepository()
        self.preview_cache = AllocationPreviewCache(ttl_seconds=preview_cache_ttl_seconds())
        self.allocation_engine = AllocationEngine(
            strategy_repository=self.strategy_repository,
            stock_repository=self.stock_repository,
            signal_repository=self.signal_repository,
            quote_source=self.quote_source,
        )
        self.portfolio_service = PortfolioService(
            allocation_engine=self.allocation_engine,
            strategy_repository=self.strategy_repository,
            stock_repository=self.stock_repository,
            portfolio_repository=self.portfolio_repository,
            quote_source=self.quote_source,
            preview_cache=self.preview_cache,
        )
        self.nav_scheduler = NavScheduler(
            portfolio_service=self.portfolio_service,
            portfolio_repository=self.portfolio_repository,
            config=nav_scheduler_config(),
        )


_RUNTIME: Optional[Runtime] = None
_RUNTIME_LOCK = Lock()


def get_runtime() -> Runtime:
    global _RUNTIME
    with _RUNTIME_LOCK:
        if _RUNTIME is None:
            _RUNTIME = Runtime()
        return _RUNTIME


def get_allocation_engine() -> AllocationEngine:
    return get_runtime().allocation_engine


def get_portfolio_service() -> PortfolioService:
    return get_runtime().portfolio_service


def get_nav_scheduler() -> NavScheduler:
    return get_runtime().nav_scheduler


def reset_runtime_for_tests() -> None:
    global _RUNTIME
    with _RUNTIME_LOCK:
        previous = _RUNTIME
        _RUNTIME = None
    if previous is not None and previous.nav_scheduler.is_running():
        previous.nav_scheduler.stop()
