"""
FILE: portfolio_allocator/core/nav_scheduler.py
Background NAV refresh for every persisted portfolio.

A timer thread triggers a full cycle every ``update_interval_seconds``. Each cycle walks
the portfolio ids in fixed-size batches; a batch fans out one worker per portfolio and is
joined before the next batch starts. All waits observe the run's cancellation event.

Only one cycle runs at a time. A trigger that arrives mid-cycle queues a single follow-up
cycle; further triggers are dropped until that follow-up starts. A portfolio id is never
refreshed by two threads at once.
"""

import contextvars
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from pydantic import BaseModel, Field

from portfolio_allocator.core.common.log_context import bind_log_context
from portfolio_allocator.core.errors import (
    NavUpdateCancelledError,
    NavUpdateError,
    SchedulerStateError,
)
from portfolio_allocator.core.portfolio_service import PortfolioService
from portfolio_allocator.core.repositories import PortfolioRepository

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class NavSchedulerConfig(BaseModel):
    update_interval_seconds: float = Field(default=900, gt=0)
    max_retries: int = Field(default=3, ge=0)
    retry_delay_seconds: float = Field(default=30, ge=0)
    batch_size: int = Field(default=10, ge=1)
    batch_delay_seconds: float = Field(default=1, ge=0)


class NavBatchResult(BaseModel):
    success_count: int = 0
    error_count: int = 0
    errors: List[str] = Field(default_factory=list)


class NavCycleResult(BaseModel):
    portfolio_count: int = 0
    batch_sizes: List[int] = Field(default_factory=list)
    success_count: int = 0
    error_count: int = 0
    errors: List[str] = Field(default_factory=list)
    cancelled: bool = False
    message: str = ""


class NavScheduler:
    def __init__(
        self,
        *,
        portfolio_service: PortfolioService,
        portfolio_repository: PortfolioRepository,
        config: Optional[NavSchedulerConfig] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._service = portfolio_service
        self._repository = portfolio_repository
        self._config = config or NavSchedulerConfig()
        self._clock = clock

        self._lock = threading.Lock()
        self._running = False
        self._cancel_event = threading.Event()
        self._timer_thread: Optional[threading.Thread] = None
        self._cycle_threads: set[threading.Thread] = set()
        self._cycle_active = False
        self._follow_up_pending = False
        self._cycle_mutex = threading.Lock()
        self._in_flight_ids: set[str] = set()
        self._in_flight_cond = threading.Condition()

        self._last_update_time: Optional[datetime] = None
        self._success_count = 0
        self._error_count = 0
        self._total_portfolios = 0

    @property
    def config(self) -> NavSchedulerConfig:
        return self._config

    def start(self) -> None:
        with self._lock:
            if self._running:
                raise SchedulerStateError("NAV_SCHEDULER_ALREADY_RUNNING")
            self._running = True
            cancel = threading.Event()
            self._cancel_event = cancel
            self._timer_thread = threading.Thread(
                target=self._timer_loop,
                args=(cancel,),
                name="nav-scheduler-timer",
                daemon=True,
            )
            self._timer_thread.start()
            self._spawn_cycle_locked(cancel, trigger="startup")
        logger.info(
            "nav_scheduler.started",
            extra={
                "extra_fields": {
                    "update_interval_seconds": self._config.update_interval_seconds,
                    "batch_size": self._config.batch_size,
                }
            },
        )

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                raise SchedulerStateError("NAV_SCHEDULER_NOT_RUNNING")
            self._running = False
            self._cancel_event.set()
            timer = self._timer_thread
            self._timer_thread = None
            in_flight = list(self._cycle_threads)

        if timer is not None:
            timer.join()
        for thread in in_flight:
            thread.join()
        logger.info("nav_scheduler.stopped", extra={"extra_fields": {"drained": len(in_flight)}})

    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def get_metrics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "running": self._running,
                "last_update_time": self._last_update_time,
                "success_count": self._success_count,
                "error_count": self._error_count,
                "total_portfolios": self._total_portfolios,
                "update_interval": self._config.update_interval_seconds,
                "in_flight_cycles": len(self._cycle_threads),
            }

    def force_update(self) -> None:
        with self._lock:
            if not self._running:
                raise SchedulerStateError("NAV_SCHEDULER_NOT_RUNNING")
            self._spawn_cycle_locked(self._cancel_event, trigger="forced")

    def update_single_portfolio(self, portfolio_id: str) -> None:
        self._update_with_retry(portfolio_id, self._active_cancel_event())
        logger.info(
            "nav_scheduler.portfolio_updated",
            extra={"extra_fields": {"portfolio_id": portfolio_id}},
        )

    def update_all_portfolio_navs(self) -> NavCycleResult:
        return self._run_cycle(self._active_cancel_event())

    def process_batch(self, portfolio_ids: Sequence[str]) -> NavBatchResult:
        return self._process_batch(portfolio_ids, self._active_cancel_event())

    def _active_cancel_event(self) -> threading.Event:
        with self._lock:
            return self._cancel_event if self._running else threading.Event()

    def _timer_loop(self, cancel: threading.Event) -> None:
        while not cancel.wait(self._config.update_interval_seconds):
            with self._lock:
                if not self._running or cancel.is_set():
                    return
                self._spawn_cycle_locked(cancel, trigger="scheduled")

    def _spawn_cycle_locked(self, cancel: threading.Event, *, trigger: str) -> None:
        if self._cycle_active:
            if self._follow_up_pending:
                logger.info(
                    "nav_scheduler.cycle_skipped", extra={"extra_fields": {"trigger": trigger}}
                )
                return
            self._follow_up_pending = True
            logger.info("nav_scheduler.cycle_queued", extra={"extra_fields": {"trigger": trigger}})
            return

        self._cycle_active = True
        thread = threading.Thread(
            target=self._background_cycle,
            args=(cancel, trigger),
            name=f"nav-update-{trigger}",
            daemon=True,
        )
        self._cycle_threads.add(thread)
        thread.start()

    def _release_cycle_locked(self) -> None:
        self._cycle_threads.discard(threading.current_thread())
        self._cycle_active = False
        self._follow_up_pending = False

    def _background_cycle(self, cancel: threading.Event, trigger: str) -> None:
        released = False
        try:
            while True:
                with bind_log_context(nav_trigger=trigger):
                    result = self._run_cycle(cancel)
                    self._log_cycle(result)

                with self._lock:
                    if not self._running or not self._follow_up_pending:
                        self._release_cycle_locked()
                        released = True
                        return
                    self._follow_up_pending = False
                    cancel = self._cancel_event
                trigger = "follow_up"
        finally:
            if not released:
                with self._lock:
                    self._release_cycle_locked()

    def _log_cycle(self, result: NavCycleResult) -> None:
        log = logger.warning if result.error_count or result.cancelled else logger.info
        log(
            "nav_scheduler.cycle_completed",
            extra={
                "extra_fields": {
                    "portfolio_count": result.portfolio_count,
                    "success_count": result.success_count,
                    "error_count": result.error_count,
                    "cancelled": result.cancelled,
                    "detail": result.message,
                }
            },
        )

    @contextmanager
    def _portfolio_slot(self, portfolio_id: str) -> Iterator[None]:
        with self._in_flight_cond:
            self._in_flight_cond.wait_for(lambda: portfolio_id not in self._in_flight_ids)
            self._in_flight_ids.add(portfolio_id)
        try:
            yield
        finally:
            with self._in_flight_cond:
                self._in_flight_ids.discard(portfolio_id)
                self._in_flight_cond.notify_all()

    def _load_portfolio_ids(self) -> List[str]:
        try:
            return list(self._repository.get_all_portfolio_ids())
        except Exception:
            logger.exception("nav_scheduler.portfolio_ids_unavailable")
            return []

    def _run_cycle(self, cancel: threading.Event) -> NavCycleResult:
        with self._cycle_mutex:
            return self._run_cycle_locked(cancel)

    def _run_cycle_locked(self, cancel: threading.Event) -> NavCycleResult:
        portfolio_ids = self._load_portfolio_ids()
        result = NavCycleResult(portfolio_count=len(portfolio_ids))
        if portfolio_ids:
            with self._lock:
                self._total_portfolios = len(portfolio_ids)
            self._process_batches(portfolio_ids, cancel, result)

        with self._lock:
            self._last_update_time = self._clock()

        if result.cancelled:
            result.message = "NAV update cancelled"
        elif result.errors:
            result.message = (
                f"NAV update completed with {len(result.errors)} errors: {result.errors[0]}"
            )
        elif not portfolio_ids:
            result.message = "No portfolios found for NAV update"
        else:
            result.message = "NAV update completed"
        return result

    def _process_batches(
        self, portfolio_ids: List[str], cancel: threading.Event, result: NavCycleResult
    ) -> None:
        size = self._config.batch_size
        for start in range(0, len(portfolio_ids), size):
            if cancel.is_set():
                result.cancelled = True
                return
            batch = portfolio_ids[start : start + size]
            batch_result = self._process_batch(batch, cancel)
            result.batch_sizes.append(len(batch))
            result.success_count += batch_result.success_count
            result.error_count += batch_result.error_count
            result.errors.extend(batch_result.errors)

            is_last = start + size >= len(portfolio_ids)
            if not is_last and cancel.wait(self._config.batch_delay_seconds):
                result.cancelled = True
                return

    def _process_batch(
        self, portfolio_ids: Sequence[str], cancel: threading.Event
    ) -> NavBatchResult:
        result = NavBatchResult()
        if not portfolio_ids:
            return result
        with ThreadPoolExecutor(
            max_workers=len(portfolio_ids), thread_name_prefix="nav-update-worker"
        ) as executor:
            futures = {
                executor.submit(
                    contextvars.copy_context().run, self._update_with_retry, portfolio_id, cancel
                ): portfolio_id
                for portfolio_id in portfolio_ids
            }
            for future in as_completed(futures):
                portfolio_id = futures[future]
                try:
                    future.result()
                except NavUpdateError as exc:
                    result.error_count += 1
                    result.errors.append(f"portfolio {portfolio_id}: {exc}")
                    with self._lock:
                        self._error_count += 1
                else:
                    result.success_count += 1
                    with self._lock:
                        self._success_count += 1
        return result

    def _update_with_retry(self, portfolio_id: str, cancel: threading.Event) -> None:
        with self._portfolio_slot(portfolio_id), bind_log_context(portfolio_id=portfolio_id):
            self._attempt_updates(portfolio_id, cancel)

    def _attempt_updates(self, portfolio_id: str, cancel: threading.Event) -> None:
        attempts = self._config.max_retries + 1
        last_error: Optional[Exception] = None
        for attempt in range(attempts):
            if cancel.is_set():
                raise NavUpdateCancelledError("update cancelled")
            try:
                self._service.update_portfolio_nav(portfolio_id)
            except Exception as exc:
                last_error = exc
                if attempt + 1 < attempts:
                    logger.warning(
                        "nav_scheduler.update_retry",
                        extra={
                            "extra_fields": {
                                "portfolio_id": portfolio_id,
                                "attempt": attempt + 1,
                                "max_attempts": attempts,
                                "error": str(exc),
                            }
                        },
                    )
                    if cancel.wait(self._config.retry_delay_seconds):
                        raise NavUpdateCancelledError("update cancelled during retry") from exc
                continue
            if attempt:
                logger.info(
                    "nav_scheduler.update_recovered",
                    extra={"extra_fields": {"portfolio_id": portfolio_id, "retries": attempt}},
                )
            return

        logger.error(
            "nav_scheduler.update_failed",
            extra={
                "extra_fields": {
                    "portfolio_id": portfolio_id,
                    "attempts": attempts,
                    "error": str(last_error),
                }
            },
        )
        raise NavUpdateError(f"failed after {attempts} attempts: {last_error}") from last_error
