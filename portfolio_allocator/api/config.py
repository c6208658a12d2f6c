import os
from decimal import Decimal, InvalidOperation
from typing import Optional

from portfolio_allocator.core.nav_scheduler import NavSchedulerConfig
from portfolio_allocator.core.preview_cache import DEFAULT_PREVIEW_TTL_SECONDS


def env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return parsed if parsed >= 1 else default


def env_non_negative_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return parsed if parsed >= 0 else default


def env_decimal(name: str, default: Optional[Decimal]) -> Optional[Decimal]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        parsed = Decimal(value.strip())
    except InvalidOperation:
        return default
    return parsed if parsed.is_finite() and parsed > 0 else default


def nav_scheduler_enabled() -> bool:
    return env_flag("NAV_SCHEDULER_ENABLED", False)


def nav_scheduler_config() -> NavSchedulerConfig:
    return NavSchedulerConfig(
        update_interval_seconds=env_int("NAV_UPDATE_INTERVAL_SECONDS", 900),
        max_retries=env_non_negative_int("NAV_MAX_RETRIES", 3),
        retry_delay_seconds=env_non_negative_int("NAV_RETRY_DELAY_SECONDS", 30),
        batch_size=env_int("NAV_BATCH_SIZE", 10),
        batch_delay_seconds=env_non_negative_int("NAV_BATCH_DELAY_SECONDS", 1),
    )


def preview_cache_ttl_seconds() -> int:
    return env_non_negative_int("ALLOCATION_PREVIEW_CACHE_TTL_SECONDS", DEFAULT_PREVIEW_TTL_SECONDS)


def quote_default_price() -> Optional[Decimal]:
    return env_decimal("QUOTE_DEFAULT_PRICE", None)


def catalog_seed_json() -> Optional[str]:
    return os.getenv("ALLOCATION_CATALOG_JSON")
