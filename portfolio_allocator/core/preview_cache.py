import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Optional

from portfolio_allocator.core.common.canonical import hash_canonical_payload
from portfolio_allocator.core.models import AllocationPreview, AllocationRequest

DEFAULT_PREVIEW_TTL_SECONDS = 300
DEFAULT_PREVIEW_CACHE_SIZE = 1000


@dataclass(frozen=True)
class _CachedPreview:
    preview: AllocationPreview
    stored_at: float
    ttl_seconds: float


def generate_cache_key(request: AllocationRequest) -> str:
    payload = {
        "total_investment": request.total_investment,
        "max_allocation_per_stock": request.constraints.max_allocation_per_stock,
        "min_allocation_amount": request.constraints.min_allocation_amount,
        "strategy_ids": list(request.strategy_ids),
        "excluded_stocks": sorted(set(request.excluded_stocks)),
    }
    return f"alloc_{hash_canonical_payload(payload)}"


class AllocationPreviewCache:
    """
    Thread-safe TTL cache of allocation previews, oldest entries evicted first.

    Previews are deep-copied on the way in and out so callers never share nested state.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_PREVIEW_TTL_SECONDS,
        max_entries: int = DEFAULT_PREVIEW_CACHE_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = Lock()
        self._entries: "OrderedDict[str, _CachedPreview]" = OrderedDict()
        self._ttl_seconds = ttl_seconds
        self._max_entries = max(1, max_entries)
        self._clock = clock

    def get(self, key: str) -> Optional[AllocationPreview]:
        with self._lock:
            cached = self._entries.get(key)
            if cached is None:
                return None
            if self._clock() - cached.stored_at > cached.ttl_seconds:
                del self._entries[key]
                return None
            preview = cached.preview
        return preview.model_copy(deep=True)

    def set(
        self, key: str, preview: AllocationPreview, ttl_seconds: Optional[float] = None
    ) -> None:
        ttl = self._ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._entries[key] = _CachedPreview(
                preview=preview.model_copy(deep=True), stored_at=self._clock(), ttl_seconds=ttl
            )
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
