from datetime import timedelta
from decimal import Decimal

import pytest

from portfolio_allocator.core.errors import MarketDataError, MarketDataNotSupportedError
from portfolio_allocator.core.models import BarInterval
from portfolio_allocator.infrastructure.market_data import StaticQuoteSource
from tests.factories import T0, quote


def test_sample_table_is_loaded_by_default():
    source = StaticQuoteSource()

    assert source.get_quote(symbol="aapl").price == Decimal("150.25")
    assert source.get_quote(symbol="NVDA").price == Decimal("875.30")


def test_batch_quotes_omit_unknown_symbols():
    source = StaticQuoteSource([quote("AAPL", "150.25")])

    quotes = source.get_batch_quotes(symbols=["AAPL", "ZZZZ"])

    assert list(quotes) == ["AAPL"]
    with pytest.raises(MarketDataError, match="QUOTE_NOT_FOUND: ZZZZ"):
        source.get_quote(symbol="ZZZZ")


def test_default_price_covers_unknown_symbols():
    source = StaticQuoteSource([], default_price=Decimal("100"))

    fallback = source.get_quote(symbol="zzzz")

    assert fallback.symbol == "ZZZZ"
    assert fallback.price == Decimal("100")
    assert fallback.high == Decimal("102.00")
    assert fallback.low == Decimal("98.00")
    assert source.get_batch_quotes(symbols=["ZZZZ"])["ZZZZ"].price == Decimal("100")


def test_quotes_can_be_replaced_and_removed():
    source = StaticQuoteSource([quote("AAPL", "150.25")])

    source.add_quote("aapl", Decimal("160"))
    assert source.get_quote(symbol="AAPL").price == Decimal("160")

    source.remove_quote("AAPL")
    assert source.get_batch_quotes(symbols=["AAPL"]) == {}


def test_historical_bars_are_deterministic_and_inclusive():
    source = StaticQuoteSource([quote("AAPL", "150.25")])
    end = T0 + timedelta(hours=2)

    first = source.get_historical_bars(
        symbol="AAPL", start=T0, end=end, interval=BarInterval.HOUR
    )
    second = source.get_historical_bars(
        symbol="AAPL", start=T0, end=end, interval=BarInterval.HOUR
    )

    assert [bar.timestamp for bar in first] == [
        T0,
        T0 + timedelta(hours=1),
        T0 + timedelta(hours=2),
    ]
    assert first == second
    for bar in first:
        assert bar.low <= min(bar.open, bar.close)
        assert bar.high >= max(bar.open, bar.close)


def test_historical_bars_edge_cases():
    source = StaticQuoteSource([quote("AAPL", "150.25")])

    assert (
        source.get_historical_bars(
            symbol="AAPL", start=T0, end=T0 - timedelta(days=1), interval=BarInterval.DAY
        )
        == []
    )
    with pytest.raises(MarketDataError, match="HISTORICAL_RANGE_TOO_LARGE"):
        source.get_historical_bars(
            symbol="AAPL", start=T0, end=T0 + timedelta(days=30), interval=BarInterval.MINUTE
        )


def test_sources_without_history_say_so():
    source = StaticQuoteSource(supports_history=False)

    with pytest.raises(MarketDataNotSupportedError, match="HISTORICAL_BARS_NOT_SUPPORTED"):
        source.get_historical_bars(symbol="AAPL", start=T0, end=T0, interval=BarInterval.DAY)
