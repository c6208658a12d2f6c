from portfolio_allocator.infrastructure.portfolios.in_memory import InMemoryPortfolioRepository

__all__ = [
    "InMemoryPortfolioRepository",
]
