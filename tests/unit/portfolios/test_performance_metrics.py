from datetime import timedelta
from decimal import Decimal

from portfolio_allocator.core.models import NavHistory, PerformanceMetrics, Position
from portfolio_allocator.core.performance import calculate_performance_metrics
from tests.factories import T0


def _nav(days: int, nav: str, drawdown: str | None = "0") -> NavHistory:
    return NavHistory(
        portfolio_id="pf_perf",
        timestamp=T0 + timedelta(days=days),
        nav=Decimal(nav),
        pnl=Decimal(nav) - Decimal("10000"),
        drawdown=None if drawdown is None else Decimal(drawdown),
    )


def test_empty_history_yields_zeroed_metrics():
    assert calculate_performance_metrics([], Decimal("10000")) == PerformanceMetrics()


def test_metrics_over_unordered_history():
    history = [
        _nav(73, "11000", "-8.3333"),
        _nav(0, "10000"),
        _nav(20, "9000", "-25"),
        _nav(10, "12000"),
    ]

    metrics = calculate_performance_metrics(history, Decimal("10000"))

    assert metrics.total_return == Decimal("1000")
    assert metrics.total_return_pct == Decimal("10")
    assert metrics.high_water_mark == Decimal("12000")
    assert metrics.max_drawdown == Decimal("-25")
    assert metrics.current_drawdown == Decimal("-1000") / Decimal("12000") * 100
    assert metrics.days_active == 73
    years = Decimal(73) / Decimal("365.25")
    assert metrics.annualized_return == Decimal("0.1") / years * 100


def test_annualized_return_needs_positive_span_and_value():
    same_day = calculate_performance_metrics([_nav(0, "10000"), _nav(0, "10500")], Decimal("10000"))
    wiped_out = calculate_performance_metrics([_nav(0, "10000"), _nav(30, "0")], Decimal("10000"))

    assert same_day.days_active == 0
    assert same_day.annualized_return is None
    assert wiped_out.days_active == 30
    assert wiped_out.annualized_return is None
    assert wiped_out.total_return_pct == Decimal("-100")


def test_missing_drawdowns_are_ignored_for_max_drawdown():
    metrics = calculate_performance_metrics(
        [_nav(0, "10000", None), _nav(1, "10100", None)], Decimal("10000")
    )

    assert metrics.max_drawdown is None
    assert metrics.current_drawdown is None


def test_position_metrics_follow_live_price():
    position = Position(
        portfolio_id="pf_perf",
        stock_id="stk_aapl",
        ticker="AAPL",
        quantity=10,
        entry_price=Decimal("150"),
        allocation_value=Decimal("1500"),
    )

    position.calculate_metrics(Decimal("135"))

    assert position.current_value == Decimal("1350")
    assert position.pnl == Decimal("-150")
    assert position.pnl_percentage == Decimal("-10.0000")


def test_zero_cost_position_reports_flat_percentage():
    position = Position(
        portfolio_id="pf_perf",
        stock_id="stk_gift",
        quantity=3,
        entry_price=Decimal("1"),
        allocation_value=Decimal("0"),
    )

    position.calculate_metrics(Decimal("2"))

    assert position.pnl == Decimal("6")
    assert position.pnl_percentage == Decimal("0")


def test_nav_drawdown_is_zero_at_or_above_high_water_mark():
    entry = _nav(0, "10500", None)
    entry.calculate_drawdown(Decimal("10000"))
    assert entry.drawdown == Decimal("0")

    entry = _nav(0, "9000", None)
    entry.calculate_drawdown(Decimal("12000"))
    assert entry.drawdown == Decimal("-25.0000")
