"""
FILE: tests/conftest.py
Shared fixtures for allocation, portfolio and scheduler tests.
"""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from portfolio_allocator.api.dependencies import reset_runtime_for_tests
from portfolio_allocator.api.main import app
from tests.factories import CatalogFixture, build_catalog, catalog_seed_json


def _has_marker(item: pytest.Item, name: str) -> bool:
    return item.get_closest_marker(name) is not None


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    for item in items:
        if (
            _has_marker(item, "unit")
            or _has_marker(item, "integration")
            or _has_marker(item, "e2e")
        ):
            continue

        path = Path(str(item.fspath)).as_posix().lower()
        if "/tests/integration/" in path or "_integration.py" in path:
            item.add_marker(pytest.mark.integration)
            continue
        if "/tests/e2e/" in path:
            item.add_marker(pytest.mark.e2e)
            continue
        item.add_marker(pytest.mark.unit)


@pytest.fixture
def catalog() -> CatalogFixture:
    """Two percent strategies (60/40) over AAPL, MSFT, NVDA with Buy signals."""
    return build_catalog(
        strategies=[
            ("st_growth", "percent", "60", ["stk_aapl", "stk_msft"]),
            ("st_value", "percent", "40", ["stk_msft", "stk_nvda"]),
        ],
        buy=["stk_aapl", "stk_msft", "stk_nvda"],
    )


@pytest.fixture(autouse=True)
def isolated_runtime(monkeypatch: pytest.MonkeyPatch):
    """Keep API tests on a fresh in-memory runtime with the scheduler disabled."""
    monkeypatch.delenv("ALLOCATION_CATALOG_JSON", raising=False)
    monkeypatch.delenv("QUOTE_DEFAULT_PRICE", raising=False)
    monkeypatch.setenv("NAV_SCHEDULER_ENABLED", "false")
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch):
    """API client over a runtime seeded with the 60/40 catalog and the sample quote table."""
    monkeypatch.setenv("ALLOCATION_CATALOG_JSON", catalog_seed_json())
    reset_runtime_for_tests()
    with TestClient(app) as test_client:
        yield test_client
