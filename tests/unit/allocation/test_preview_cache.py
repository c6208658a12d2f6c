from decimal import Decimal

from portfolio_allocator.core.models import AllocationPreview, StockAllocation
from portfolio_allocator.core.preview_cache import AllocationPreviewCache, generate_cache_key
from tests.factories import allocation_request, constraints


class FakeMonotonic:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _preview(total: str = "10000") -> AllocationPreview:
    return AllocationPreview(
        total_investment=Decimal(total),
        unallocated_cash=Decimal(total),
        total_allocated=Decimal("0"),
        constraints=constraints(),
    )


def test_cache_key_is_stable_and_ignores_exclusion_order():
    first = allocation_request(["st_a", "st_b"], excluded=["stk_b", "stk_a", "stk_b"])
    second = allocation_request(["st_a", "st_b"], excluded=["stk_a", "stk_b"])

    assert generate_cache_key(first) == generate_cache_key(second)
    assert generate_cache_key(first).startswith("alloc_sha256:")


def test_cache_key_changes_with_inputs_that_change_the_result():
    base = allocation_request(["st_a", "st_b"])

    variants = [
        allocation_request(["st_b", "st_a"]),
        allocation_request(["st_a", "st_b"], "10001"),
        allocation_request(["st_a", "st_b"], max_pct="50"),
        allocation_request(["st_a", "st_b"], min_amount="1"),
        allocation_request(["st_a", "st_b"], excluded=["stk_a"]),
    ]

    keys = {generate_cache_key(variant) for variant in variants}
    assert generate_cache_key(base) not in keys
    assert len(keys) == len(variants)


def test_entries_expire_after_ttl():
    clock = FakeMonotonic()
    cache = AllocationPreviewCache(ttl_seconds=300, clock=clock)
    preview = _preview()
    cache.set("alloc_1", preview)

    clock.now += 300
    assert cache.get("alloc_1") == preview

    clock.now += 0.5
    assert cache.get("alloc_1") is None
    assert len(cache) == 0


def test_per_entry_ttl_overrides_default():
    clock = FakeMonotonic()
    cache = AllocationPreviewCache(ttl_seconds=300, clock=clock)
    cache.set("alloc_short", _preview(), ttl_seconds=10)

    clock.now += 11

    assert cache.get("alloc_short") is None


def test_oldest_entries_are_evicted_beyond_capacity():
    cache = AllocationPreviewCache(max_entries=2, clock=FakeMonotonic())
    cache.set("alloc_1", _preview("1"))
    cache.set("alloc_2", _preview("2"))
    cache.set("alloc_1", _preview("11"))
    cache.set("alloc_3", _preview("3"))

    assert cache.get("alloc_2") is None
    assert cache.get("alloc_1").total_investment == Decimal("11")
    assert cache.get("alloc_3") is not None


def test_clear_drops_everything():
    cache = AllocationPreviewCache(clock=FakeMonotonic())
    cache.set("alloc_1", _preview())

    cache.clear()

    assert len(cache) == 0
    assert cache.get("alloc_1") is None


def test_cached_previews_do_not_share_nested_state():
    cache = AllocationPreviewCache(clock=FakeMonotonic())
    allocation = StockAllocation(
        stock_id="stk_aapl",
        ticker="AAPL",
        name="Apple Inc.",
        allocation_value=Decimal("5000"),
        strategy_contrib={"st_growth": Decimal("5000")},
    )
    stored = AllocationPreview(
        total_investment=Decimal("10000"),
        allocations=[allocation],
        unallocated_cash=Decimal("5000"),
        total_allocated=Decimal("5000"),
        constraints=constraints(),
    )
    cache.set("alloc_1", stored)
    allocation.strategy_contrib["st_value"] = Decimal("1")

    hit = cache.get("alloc_1")
    hit.allocations[0].strategy_contrib.clear()
    hit.allocations[0].quantity = 99

    again = cache.get("alloc_1")
    assert again.allocations[0].strategy_contrib == {"st_growth": Decimal("5000")}
    assert again.allocations[0].quantity == 0
