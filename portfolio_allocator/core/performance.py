from decimal import Decimal
from typing import Optional, Sequence

from portfolio_allocator.core.models import NavHistory, PerformanceMetrics

_HUNDRED = Decimal("100")
_DAYS_PER_YEAR = Decimal("365.25")
_SECONDS_PER_DAY = 86400


def _drawdown(nav: Decimal, high_water_mark: Decimal) -> Optional[Decimal]:
    if high_water_mark > 0 and nav < high_water_mark:
        return (nav - high_water_mark) / high_water_mark * _HUNDRED
    return None


def calculate_performance_metrics(
    history: Sequence[NavHistory], initial_investment: Decimal
) -> PerformanceMetrics:
    """
    Derives return and drawdown figures from a NAV series.

    The annualized figure is a linear (non-compounding) projection of the total return
    over the active period.
    """
    if not history:
        return PerformanceMetrics()

    ordered = sorted(history, key=lambda entry: entry.timestamp)
    latest = ordered[-1]

    total_return = latest.nav - initial_investment
    total_return_pct = Decimal("0")
    if initial_investment > 0:
        total_return_pct = total_return / initial_investment * _HUNDRED

    high_water_mark = initial_investment
    max_drawdown: Optional[Decimal] = None
    for entry in ordered:
        if entry.nav > high_water_mark:
            high_water_mark = entry.nav
        if entry.drawdown is not None and (max_drawdown is None or entry.drawdown < max_drawdown):
            max_drawdown = entry.drawdown

    days_active = 0
    if len(ordered) > 1:
        elapsed = latest.timestamp - ordered[0].timestamp
        days_active = int(elapsed.total_seconds() // _SECONDS_PER_DAY)

    annualized_return = None
    if days_active > 0 and initial_investment > 0:
        ratio = latest.nav / initial_investment
        if ratio > 0:
            years = Decimal(days_active) / _DAYS_PER_YEAR
            annualized_return = (ratio - 1) / years * _HUNDRED

    return PerformanceMetrics(
        total_return=total_return,
        total_return_pct=total_return_pct,
        annualized_return=annualized_return,
        max_drawdown=max_drawdown,
        current_drawdown=_drawdown(latest.nav, high_water_mark),
        days_active=days_active,
        high_water_mark=high_water_mark,
    )
