from portfolio_allocator.infrastructure.catalog.in_memory import (
    InMemorySignalRepository,
    InMemoryStockRepository,
    InMemoryStrategyRepository,
)
from portfolio_allocator.infrastructure.catalog.seed import CatalogSeed, parse_catalog_seed

__all__ = [
    "CatalogSeed",
    "InMemorySignalRepository",
    "InMemoryStockRepository",
    "InMemoryStrategyRepository",
    "parse_catalog_seed",
]
