from datetime import datetime, timedelta, timezone
from decimal import Decimal
from threading import Lock
from typing import Optional, Sequence

from portfolio_allocator.core.errors import MarketDataError, MarketDataNotSupportedError
from portfolio_allocator.core.models import Bar, BarInterval, Quote
from portfolio_allocator.core.repositories import QuoteSource

MAX_HISTORICAL_BARS = 10000

_INTERVAL_STEPS = {
    BarInterval.MINUTE: timedelta(minutes=1),
    BarInterval.HOUR: timedelta(hours=1),
    BarInterval.DAY: timedelta(days=1),
}

# symbol, price, change, change %, volume, high, low, open, previous close
_SAMPLE_QUOTES = (
    ("AAPL", "150.25", "2.15", "1.45", 1000000, "152.00", "148.50", "149.00", "148.10"),
    ("GOOGL", "2750.80", "-15.20", "-0.55", 500000, "2770.00", "2745.00", "2766.00", "2766.00"),
    ("MSFT", "305.45", "5.30", "1.77", 800000, "307.00", "300.15", "301.00", "300.15"),
    ("TSLA", "245.67", "-8.45", "-3.32", 1200000, "255.00", "244.00", "254.12", "254.12"),
    ("NVDA", "875.30", "12.80", "1.48", 600000, "880.00", "862.50", "865.00", "862.50"),
)


def sample_quotes() -> list[Quote]:
    quotes = []
    for symbol, price, change, change_pct, volume, high, low, open_, prev_close in _SAMPLE_QUOTES:
        quotes.append(
            Quote(
                symbol=symbol,
                price=Decimal(price),
                change=Decimal(change),
                change_percent=Decimal(change_pct),
                volume=volume,
                high=Decimal(high),
                low=Decimal(low),
                open=Decimal(open_),
                previous_close=Decimal(prev_close),
            )
        )
    return quotes


class StaticQuoteSource(QuoteSource):
    """
    Quote source backed by an in-process table. Unknown symbols are priced at
    ``default_price`` when one is configured and are otherwise absent from batch results.
    """

    def __init__(
        self,
        quotes: Optional[Sequence[Quote]] = None,
        *,
        default_price: Optional[Decimal] = None,
        supports_history: bool = True,
    ) -> None:
        self._lock = Lock()
        self._quotes: dict[str, Quote] = {}
        self._default_price = default_price
        self._supports_history = supports_history
        for quote in sample_quotes() if quotes is None else quotes:
            self._quotes[quote.symbol.upper()] = quote

    def set_quote(self, quote: Quote) -> None:
        with self._lock:
            self._quotes[quote.symbol.upper()] = quote

    def add_quote(self, symbol: str, price: Decimal) -> None:
        self.set_quote(Quote(symbol=symbol.upper(), price=price, previous_close=price))

    def remove_quote(self, symbol: str) -> None:
        with self._lock:
            self._quotes.pop(symbol.upper(), None)

    def _lookup(self, symbol: str) -> Optional[Quote]:
        with self._lock:
            quote = self._quotes.get(symbol.upper())
        if quote is not None:
            return quote.model_copy(update={"timestamp": datetime.now(timezone.utc)})
        if self._default_price is None:
            return None
        price = self._default_price
        return Quote(
            symbol=symbol.upper(),
            price=price,
            high=price * Decimal("1.02"),
            low=price * Decimal("0.98"),
            open=price * Decimal("0.995"),
            previous_close=price,
        )

    def get_quote(self, *, symbol: str) -> Quote:
        quote = self._lookup(symbol)
        if quote is None:
            raise MarketDataError(f"QUOTE_NOT_FOUND: {symbol}")
        return quote

    def get_batch_quotes(self, *, symbols: Sequence[str]) -> dict[str, Quote]:
        quotes = {}
        for symbol in symbols:
            quote = self._lookup(symbol)
            if quote is not None:
                quotes[symbol] = quote
        return quotes

    def get_historical_bars(
        self,
        *,
        symbol: str,
        start: datetime,
        end: datetime,
        interval: BarInterval,
    ) -> list[Bar]:
        if not self._supports_history:
            raise MarketDataNotSupportedError("HISTORICAL_BARS_NOT_SUPPORTED")
        step = _INTERVAL_STEPS[BarInterval(interval)]
        if end < start:
            return []
        if (end - start) / step >= MAX_HISTORICAL_BARS:
            raise MarketDataError("HISTORICAL_RANGE_TOO_LARGE")

        quote = self._lookup(symbol)
        base = quote.price if quote is not None else Decimal("100")
        bars = []
        current = start
        while current <= end:
            # Deterministic wiggle derived from the epoch second.
            seconds = int(current.timestamp())
            open_ = base + Decimal((seconds % 10) - 5) * Decimal("0.5")
            close = open_ + Decimal((seconds % 8) - 4) * Decimal("0.1")
            high = max(open_ + Decimal(seconds % 5) * Decimal("0.3"), open_, close)
            low = min(open_ - Decimal(seconds % 3) * Decimal("0.2"), open_, close)
            bars.append(
                Bar(
                    timestamp=current,
                    open=open_,
                    high=high,
                    low=low,
                    close=close,
                    volume=100000 + seconds % 500000,
                )
            )
            current = current + step
        return bars
