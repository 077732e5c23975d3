"""
Dashboard View Controller

Owns the dashboard's filter/sort/paging state and keeps the stream table and
KPI row consistent with the remote data source:

- filter changes that invalidate the page position reset to page 1
- pages are memoized by query key for ``page_stale_seconds``
- a response is applied only if it is the newest one for the current key
- text search filters the loaded page locally and never refetches
- polling refreshes the page (and the memoized KPI sweep) on an interval
"""

from __future__ import annotations

import asyncio
import math
import time
from typing import Any, Callable, List, Optional, Tuple

from schemas.streams import FetchResult, SortBy, SortOrder, Stream
from streampulse.config import Settings, settings
from streampulse.ingest.aggregates import KpiAccumulator, PageFetcher
from streampulse.schemas.view import (
    DashboardView,
    GlobalAggregates,
    KpiSnapshot,
    StreamFilters,
)
from streampulse.utils.cache import AsyncTTLMemo
from streampulse.utils.logging import get_logger
from streampulse.view.poller import PollingScheduler, SleepFunc, TickCallback
from streampulse.view.url_state import filters_from_query, filters_to_query

logger = get_logger(__name__, category="view")

# Changing any of these invalidates the current page position
PAGE_RESET_FIELDS = frozenset({"search", "sort_by", "sort_order", "limit"})

QueryKey = Tuple[int, int, str, str]


class DashboardController:
    """Coordinates filters, paging, fetching, KPIs and polling for one view."""

    def __init__(
        self,
        fetcher: PageFetcher,
        kpi: Optional[KpiAccumulator] = None,
        config: Optional[Settings] = None,
        filters: Optional[StreamFilters] = None,
        timer: Callable[[], float] = time.monotonic,
        sleep: SleepFunc = asyncio.sleep,
        on_tick: Optional[TickCallback] = None,
    ):
        """
        Initialize the controller.

        Args:
            fetcher: Anything with ``fetch_page(params) -> FetchResult``
            kpi: Global aggregate source; KPIs stay at zero without one
            config: Settings instance (defaults to the module settings)
            filters: Initial filters, e.g. rebuilt from a URL
            timer: Clock for the page memo (tests pass a fake)
            sleep: Sleep used by the polling scheduler
            on_tick: Countdown callback forwarded to the polling scheduler
        """
        self.fetcher = fetcher
        self.kpi = kpi
        self.config = config or settings
        self.filters = filters or StreamFilters(limit=self.config.default_page_size)

        self._pages: AsyncTTLMemo[FetchResult] = AsyncTTLMemo(
            ttl=self.config.page_stale_seconds,
            maxsize=64,
            timer=timer,
            should_cache=lambda result: result.ok,
        )
        self._result: Optional[FetchResult] = None
        self._result_key: Optional[QueryKey] = None
        self._seq = 0
        self._applied_seq = 0
        self.aggregates: Optional[GlobalAggregates] = None

        self.poller = PollingScheduler(
            self.poll,
            interval=self.config.poll_interval_seconds,
            tick=self.config.countdown_tick_seconds,
            on_tick=on_tick,
            sleep=sleep,
        )

    @classmethod
    def from_query_string(
        cls,
        query: str,
        fetcher: PageFetcher,
        kpi: Optional[KpiAccumulator] = None,
        config: Optional[Settings] = None,
        **kwargs: Any,
    ) -> "DashboardController":
        """Rehydrate a controller from a shared URL's query string."""
        config = config or settings
        filters = filters_from_query(query, default_limit=config.default_page_size)
        return cls(fetcher, kpi=kpi, config=config, filters=filters, **kwargs)

    def to_query_string(self) -> str:
        return filters_to_query(self.filters)

    # ------------------------------------------------------------------
    # Filter state
    # ------------------------------------------------------------------

    @property
    def query_key(self) -> QueryKey:
        return self.filters.query_key

    @property
    def current_page(self) -> int:
        return self.filters.current_page

    def set_filters(self, **changes: Any) -> bool:
        """
        Merge ``changes`` into the filters.

        Touching search, sort_by, sort_order or limit resets offset to 0.

        Returns:
            True if the query key changed and the view needs a refresh

        Raises:
            ValueError: unknown filter name, or a value out of bounds
                        (e.g. limit outside 1-1000); filters stay unchanged
        """
        unknown = set(changes) - set(StreamFilters.model_fields)
        if unknown:
            raise ValueError(f"Unknown filter(s): {', '.join(sorted(unknown))}")

        merged = {**self.filters.model_dump(), **changes}
        if PAGE_RESET_FIELDS & changes.keys():
            merged["offset"] = 0

        previous_key = self.query_key
        self.filters = StreamFilters.model_validate(merged)
        changed = self.query_key != previous_key
        logger.debug(f"Filters updated: {changes} (key changed: {changed})")
        return changed

    def toggle_sort(self, field: str) -> bool:
        """Same column while descending flips to ascending; anything else sorts descending."""
        sort_by = SortBy(field)
        if self.filters.sort_by == sort_by and self.filters.sort_order == SortOrder.DESC:
            order = SortOrder.ASC
        else:
            order = SortOrder.DESC
        return self.set_filters(sort_by=sort_by, sort_order=order)

    def go_to_page(self, page: int) -> bool:
        """Jump to ``page`` (1-based) without touching the other filters."""
        if page < 1:
            raise ValueError(f"Page must be >= 1, got {page}")
        total_pages = self.total_pages
        if self._current_result() is not None and total_pages and page > total_pages:
            raise ValueError(f"Page {page} is out of range (1-{total_pages})")
        return self.set_filters(offset=(page - 1) * self.filters.limit)

    def next_page(self) -> bool:
        if not self.has_next_page:
            return False
        return self.go_to_page(self.current_page + 1)

    def prev_page(self) -> bool:
        if not self.has_prev_page:
            return False
        return self.go_to_page(self.current_page - 1)

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def refresh(self, force: bool = False) -> DashboardView:
        """
        Load the page for the current query key.

        A key fetched successfully within the staleness window is served from
        memory unless ``force`` is set (polling and the retry action force).
        """
        filters = self.filters
        key = filters.query_key
        self._seq += 1
        seq = self._seq

        result = await self._pages.get_or_load(
            key,
            lambda: self.fetcher.fetch_page(filters.to_query_params()),
            force=force,
        )
        self._apply(seq, key, result)
        return self.snapshot()

    def _apply(self, seq: int, key: QueryKey, result: FetchResult) -> bool:
        """
        Show ``result`` if its key is still current and it is the newest
        response, either by request order or by fetch time. An older request
        can finish with fresher data, e.g. a forced poll overtaken by a memo hit.
        """
        if key != self.query_key:
            logger.debug(f"Discarding response for {key}; filters moved to {self.query_key}")
            return False
        if seq < self._applied_seq and not self._is_fresher(key, result):
            logger.debug(f"Discarding stale response #{seq} (applied #{self._applied_seq})")
            return False

        self._applied_seq = max(seq, self._applied_seq)
        self._result = result
        self._result_key = key
        if not result.ok:
            logger.warning(f"Failed to load streams: {result.error}")
        return True

    def _is_fresher(self, key: QueryKey, result: FetchResult) -> bool:
        if self._result is None or self._result_key != key:
            return True
        return result.fetched_at > self._result.fetched_at

    async def refresh_kpis(self, force: bool = False) -> Optional[GlobalAggregates]:
        """Refresh global aggregates from the memoized sweep; failures show as zeros."""
        if self.kpi is None:
            return None
        self.aggregates = await self.kpi.get_global_aggregates(force=force)
        return self.aggregates

    async def poll(self) -> DashboardView:
        """One polling cycle: refetch the page, then the (memoized) KPIs."""
        await self.refresh(force=True)
        await self.refresh_kpis()
        return self.snapshot()

    async def retry(self) -> DashboardView:
        return await self.refresh(force=True)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    @property
    def is_polling(self) -> bool:
        return self.poller.enabled

    async def set_polling(self, enabled: bool) -> None:
        if enabled:
            self.poller.enable()
        else:
            await self.poller.disable()

    def set_visible(self, visible: bool) -> None:
        self.poller.set_visible(visible)

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    def _current_result(self) -> Optional[FetchResult]:
        if self._result_key != self.query_key:
            return None
        return self._result

    @property
    def total(self) -> int:
        result = self._current_result()
        return result.page.total if result else 0

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.filters.limit)

    @property
    def has_next_page(self) -> bool:
        return self.current_page < self.total_pages

    @property
    def has_prev_page(self) -> bool:
        return self.current_page > 1

    def visible_streams(self) -> List[Stream]:
        """Items of the loaded page that match the search text."""
        result = self._current_result()
        if result is None:
            return []
        search = self.filters.search
        return [stream for stream in result.page.items if stream.matches(search)]

    def kpi_snapshot(self) -> Optional[KpiSnapshot]:
        result = self._current_result()
        if result is None:
            return None
        aggregates = self.aggregates or GlobalAggregates.zero()
        return KpiSnapshot(
            total_streams=result.page.total,
            total_participants=aggregates.total_participants,
            peak_participants=aggregates.peak_participants,
            last_updated=result.fetched_at,
        )

    def snapshot(self) -> DashboardView:
        result = self._current_result()
        return DashboardView(
            filters=self.filters.model_copy(),
            streams=self.visible_streams(),
            total=self.total,
            total_pages=self.total_pages,
            current_page=self.current_page,
            has_next_page=self.has_next_page,
            has_prev_page=self.has_prev_page,
            is_loading=result is None,
            is_error=result is not None and not result.ok,
            error=result.error if result is not None else None,
            kpi=self.kpi_snapshot(),
            polling=self.is_polling,
            countdown=self.poller.countdown,
        )
