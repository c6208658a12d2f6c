from portfolio_allocator.infrastructure.market_data.static_quotes import (
    StaticQuoteSource,
    sample_quotes,
)

__all__ = [
    "StaticQuoteSource",
    "sample_quotes",
]
