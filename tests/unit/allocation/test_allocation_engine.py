import logging
from decimal import ROUND_FLOOR, Decimal

import pytest

from portfolio_allocator.core.errors import AllocationError
from portfolio_allocator.core.models import StockAllocation
from tests.factories import (
    allocation_request,
    build_catalog,
    constraints,
    strategy,
)


def _by_ticker(preview):
    return {allocation.ticker: allocation for allocation in preview.allocations}


def _allocation(ticker: str, value: str, contrib: dict[str, str] | None = None) -> StockAllocation:
    return StockAllocation(
        stock_id=f"stk_{ticker.lower()}",
        ticker=ticker,
        name=ticker,
        allocation_value=Decimal(value),
        strategy_contrib={k: Decimal(v) for k, v in (contrib or {}).items()},
    )


def test_percent_weights_resolve_to_weighted_share_of_investment(catalog):
    engine = catalog.engine()
    strategies = [strategy("st_a", "percent", "60"), strategy("st_b", "percent", "30")]

    amounts = engine.calculate_strategy_weights(strategies, Decimal("10000"))

    assert amounts == {"st_a": Decimal("6000"), "st_b": Decimal("3000")}
    assert sum(amounts.values()) == Decimal("10000") * Decimal("90") / Decimal("100")


def test_budget_strategies_reserve_cash_before_percent_strategies(catalog):
    engine = catalog.engine()
    strategies = [
        strategy("st_budget_a", "budget", "5000"),
        strategy("st_budget_b", "budget", "3000"),
        strategy("st_pct", "percent", "60"),
    ]

    amounts = engine.calculate_strategy_weights(strategies, Decimal("10000"))

    assert amounts["st_budget_a"] == Decimal("5000")
    assert amounts["st_budget_b"] == Decimal("3000")
    assert amounts["st_pct"] == Decimal("1200")


def test_budget_above_investment_is_rejected_with_excess(catalog):
    engine = catalog.engine()
    strategies = [strategy("st_budget", "budget", "12000"), strategy("st_pct", "percent", "10")]

    with pytest.raises(AllocationError) as exc_info:
        engine.calculate_strategy_weights(strategies, Decimal("10000"))

    assert exc_info.value.type == "BUDGET_EXCEEDS_INVESTMENT"
    assert exc_info.value.details["excess_amount"] == Decimal("2000")
    assert exc_info.value.to_dict()["details"]["excess_amount"] == "2000"


def test_percent_weights_above_hundred_are_rejected(catalog):
    engine = catalog.engine()
    strategies = [strategy("st_a", "percent", "70"), strategy("st_b", "percent", "40")]

    with pytest.raises(AllocationError) as exc_info:
        engine.calculate_strategy_weights(strategies, Decimal("10000"))

    assert exc_info.value.type == "INVALID_STRATEGY_WEIGHTS"
    assert exc_info.value.details["total_percentage"] == Decimal("110")


def test_two_strategy_scenario_respects_cap_and_buys_whole_shares(catalog):
    request = allocation_request(["st_growth", "st_value"], "10000", max_pct="50", min_amount="100")

    preview = catalog.engine().calculate_allocations(request)

    allocations = _by_ticker(preview)
    assert list(allocations) == ["AAPL", "MSFT", "NVDA"]
    assert {t: a.quantity for t, a in allocations.items()} == {"AAPL": 19, "MSFT": 16, "NVDA": 2}
    assert allocations["AAPL"].actual_value == Decimal("2854.75")
    assert allocations["MSFT"].actual_value == Decimal("4887.20")
    assert allocations["NVDA"].actual_value == Decimal("1750.60")
    assert allocations["MSFT"].weight == Decimal("50")
    assert allocations["MSFT"].strategy_contrib == {
        "st_growth": Decimal("3000"),
        "st_value": Decimal("2000"),
    }
    assert all(a.actual_value <= Decimal("5000") for a in preview.allocations)
    assert preview.total_allocated == Decimal("9492.55")
    assert preview.unallocated_cash == Decimal("507.45")
    assert preview.warnings == []


def test_preview_never_spends_more_than_investment(catalog):
    for total in ("999.99", "2500", "10000", "123456.78"):
        preview = catalog.engine().calculate_allocations(
            allocation_request(["st_growth", "st_value"], total)
        )

        assert preview.total_allocated <= Decimal(total)
        assert preview.unallocated_cash == Decimal(total) - preview.total_allocated
        for allocation in preview.allocations:
            expected = int(
                (allocation.allocation_value / allocation.price).to_integral_value(
                    rounding=ROUND_FLOOR
                )
            )
            assert allocation.quantity == expected
            assert allocation.actual_value == allocation.price * allocation.quantity


def test_larger_investment_never_buys_fewer_shares(catalog):
    engine = catalog.engine()
    small = _by_ticker(
        engine.calculate_allocations(allocation_request(["st_growth", "st_value"], "10000"))
    )
    large = _by_ticker(
        engine.calculate_allocations(allocation_request(["st_growth", "st_value"], "20000"))
    )

    assert set(small) == set(large)
    assert all(large[t].quantity >= small[t].quantity for t in small)


def test_exclusions_remove_stock_and_flag_concentration(catalog):
    request = allocation_request(["st_growth", "st_value"], "10000")

    preview = catalog.engine().recalculate_with_exclusions(request, ["stk_msft"])

    allocations = _by_ticker(preview)
    assert list(allocations) == ["AAPL", "NVDA"]
    assert allocations["AAPL"].quantity == 39
    assert allocations["AAPL"].actual_value == Decimal("5859.75")
    assert allocations["AAPL"].strategy_contrib == {"st_growth": Decimal("6000")}
    assert allocations["NVDA"].quantity == 4
    assert allocations["NVDA"].actual_value == Decimal("3501.20")
    assert [w.type for w in preview.warnings] == ["CONCENTRATION_RISK"]


def test_exclusions_merge_with_existing_request_exclusions(catalog):
    request = allocation_request(["st_growth", "st_value"], "10000", excluded=["stk_nvda"])

    preview = catalog.engine().recalculate_with_exclusions(request, ["stk_msft", "stk_nvda"])

    allocations = _by_ticker(preview)
    assert list(allocations) == ["AAPL"]
    assert allocations["AAPL"].allocation_value == Decimal("10000")
    assert allocations["AAPL"].quantity == 66
    assert allocations["AAPL"].actual_value == Decimal("9916.50")


def test_hold_signal_and_ineligible_membership_receive_nothing():
    catalog = build_catalog(
        strategies=[
            ("st_growth", "percent", "60", ["stk_aapl", "stk_tsla"]),
            ("st_value", "percent", "40", ["stk_msft", "stk_nvda"]),
        ],
        buy=["stk_aapl", "stk_msft", "stk_nvda"],
        hold=["stk_tsla"],
    )
    catalog.strategies.save(
        strategy(
            "st_value", "percent", "40", ["stk_msft", "stk_nvda"], ineligible=["stk_nvda"]
        )
    )

    preview = catalog.engine().calculate_allocations(
        allocation_request(["st_growth", "st_value"], "10000")
    )

    allocations = _by_ticker(preview)
    assert list(allocations) == ["AAPL", "MSFT"]
    assert allocations["AAPL"].allocation_value == Decimal("6000")
    assert allocations["MSFT"].strategy_contrib == {"st_value": Decimal("4000")}


def test_strategy_without_buy_stocks_is_logged_and_skipped(catalog, caplog):
    catalog.strategies.save(strategy("st_idle", "budget", "1000", ["stk_tsla"]))
    caplog.set_level(logging.WARNING, logger="portfolio_allocator.core.allocation_engine")

    preview = catalog.engine().calculate_allocations(
        allocation_request(["st_idle", "st_growth"], "10000")
    )

    assert "TSLA" not in _by_ticker(preview)
    assert any(
        record.getMessage() == "allocation.strategy_without_eligible_stocks"
        and record.extra_fields["type"] == "NO_ELIGIBLE_STOCKS"
        for record in caplog.records
    )


def test_unaffordable_allocation_logs_insufficient_allocation(caplog):
    catalog = build_catalog(
        strategies=[("st_big", "percent", "100", ["stk_googl"])],
        buy=["stk_googl"],
    )
    caplog.set_level(logging.WARNING, logger="portfolio_allocator.core.allocation_engine")

    preview = catalog.engine().calculate_allocations(allocation_request(["st_big"], "1000"))

    assert preview.allocations[0].quantity == 0
    assert preview.total_allocated == Decimal("0")
    assert preview.unallocated_cash == Decimal("1000")
    assert "allocation.insufficient" in [record.getMessage() for record in caplog.records]


def test_missing_quote_fails_whole_calculation(catalog):
    catalog.quotes.remove_quote("NVDA")

    with pytest.raises(AllocationError) as exc_info:
        catalog.engine().calculate_allocations(
            allocation_request(["st_growth", "st_value"], "10000")
        )

    assert exc_info.value.type == "MISSING_MARKET_DATA"
    assert str(exc_info.value) == "no quote available for symbol NVDA"
    assert exc_info.value.details == {"tickers": ["NVDA"]}


def test_unknown_strategies_fail_with_no_strategies_found(catalog):
    with pytest.raises(AllocationError) as exc_info:
        catalog.engine().calculate_allocations(allocation_request(["st_missing"], "10000"))

    assert exc_info.value.type == "NO_STRATEGIES_FOUND"


def test_invalid_constraint_config_aborts_with_constraint_violation(catalog):
    with pytest.raises(AllocationError) as exc_info:
        catalog.engine().calculate_allocations(
            allocation_request(["st_growth"], "10000", max_pct="0")
        )

    error = exc_info.value
    assert error.type == "CONSTRAINT_VIOLATION"
    assert error.message == (
        "Allocation constraints violated: Maximum allocation per stock must be greater than 0%"
    )
    assert [v["type"] for v in error.details["violations"]] == ["INVALID_MAX_ALLOCATION"]


def test_cap_scales_strategy_contributions_proportionally(catalog):
    capped = catalog.engine().apply_constraints(
        [_allocation("MSFT", "5000", {"st_growth": "3000", "st_value": "2000"})],
        constraints(max_pct="30"),
        Decimal("10000"),
    )

    assert capped[0].allocation_value == Decimal("3000")
    assert capped[0].strategy_contrib == {
        "st_growth": Decimal("1800"),
        "st_value": Decimal("1200"),
    }


def test_constraint_changes_are_monotonic(catalog):
    engine = catalog.engine()
    allocations = [
        _allocation("AAPL", "4500"),
        _allocation("MSFT", "2500"),
        _allocation("NVDA", "80"),
    ]
    total = Decimal("10000")

    tight = engine.apply_constraints(allocations, constraints("20", "100"), total)
    loose = engine.apply_constraints(allocations, constraints("40", "50"), total)

    tight_values = {a.ticker: a.allocation_value for a in tight}
    loose_values = {a.ticker: a.allocation_value for a in loose}
    assert list(tight_values) == ["AAPL", "MSFT"]
    assert list(loose_values) == ["AAPL", "MSFT", "NVDA"]
    assert all(loose_values[t] >= tight_values[t] for t in tight_values)


def test_normalization_scales_to_total_and_is_idempotent(catalog):
    engine = catalog.engine()
    total = Decimal("10000")
    allocations = [
        _allocation("AAPL", "3000", {"st_growth": "3000"}),
        _allocation("MSFT", "2000", {"st_value": "2000"}),
    ]

    once = engine.normalize_allocations(allocations, total)
    twice = engine.normalize_allocations(once, total)

    assert [a.allocation_value for a in once] == [Decimal("6000"), Decimal("4000")]
    assert [a.weight for a in once] == [Decimal("60"), Decimal("40")]
    assert once[0].strategy_contrib == {"st_growth": Decimal("6000")}
    assert [a.allocation_value for a in twice] == [a.allocation_value for a in once]
    assert engine.normalize_allocations([], total) == []


def test_exact_multiple_buys_exact_share_count(catalog):
    priced = catalog.engine().add_prices_and_quantities([_allocation("AAPL", "1502.50")])

    assert priced[0].price == Decimal("150.25")
    assert priced[0].quantity == 10
    assert priced[0].actual_value == Decimal("1502.50")


def test_simple_validation_raises_on_first_breach(catalog):
    with pytest.raises(AllocationError) as exc_info:
        catalog.engine().validate_constraints(
            [_allocation("AAPL", "50")], constraints(min_amount="100")
        )

    violation = exc_info.value.details["violations"][0]
    assert violation["type"] == "MIN_ALLOCATION_VIOLATION"
    assert violation["stock_ticker"] == "AAPL"


def test_engine_level_rebalance_is_delegated(catalog):
    with pytest.raises(NotImplementedError, match="REBALANCE_REQUIRES_PORTFOLIO_SERVICE"):
        catalog.engine().rebalance_allocations("pf_any", Decimal("1000"))


def test_constraint_suggestions_use_strategy_count(catalog):
    request = allocation_request(
        ["st_growth", "st_value"], "10000", max_pct="10", min_amount="1000"
    )

    suggestions = catalog.engine().suggest_constraint_adjustments(request)

    assert suggestions == [
        "Consider reducing minimum allocation to 500 to allow more diversification",
        "Consider increasing maximum allocation to 20% to allow proper distribution",
    ]
