"""
Global KPI Aggregation

Sweeps the upstream source page by page to total participant counts across
every stream, not just the page on screen. Sweeps are expensive, so results
are memoized for ``kpi_stale_seconds`` and page navigation never triggers one.
"""

from __future__ import annotations

import time
from typing import Callable, Optional, Protocol

from schemas.streams import FetchResult, SortBy, SortOrder, StreamQueryParams
from streampulse.config import Settings, settings
from streampulse.schemas.view import GlobalAggregates
from streampulse.utils.cache import AsyncTTLMemo
from streampulse.utils.logging import get_logger

logger = get_logger(__name__, category="kpi")

_SWEEP_KEY = "all-streams-kpi"


class PageFetcher(Protocol):
    async def fetch_page(self, params: Optional[StreamQueryParams] = None) -> FetchResult:
        ...


class KpiAccumulator:
    """Computes participant sum and peak over the whole upstream dataset."""

    def __init__(
        self,
        fetcher: PageFetcher,
        config: Optional[Settings] = None,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.fetcher = fetcher
        self.config = config or settings
        self.batch_size = self.config.kpi_batch_size
        self.safety_ceiling = self.config.kpi_safety_ceiling
        self._memo: AsyncTTLMemo[GlobalAggregates] = AsyncTTLMemo(
            ttl=self.config.kpi_stale_seconds,
            maxsize=1,
            timer=timer,
            should_cache=lambda result: result.ok,
        )

    async def compute_global_aggregates(self) -> GlobalAggregates:
        """
        Run one full sweep.

        Stops when a batch is empty, when a batch is short (last page), or
        when the offset passes the safety ceiling. Any failure aborts the
        sweep and yields zeros rather than partial sums.
        """
        offset = 0
        requests = 0
        total_participants = 0
        peak_participants = 0

        try:
            while True:
                result = await self.fetcher.fetch_page(
                    StreamQueryParams(
                        limit=self.batch_size,
                        offset=offset,
                        sort_by=SortBy.NUM_PARTICIPANTS,
                        sort_order=SortOrder.DESC,
                    )
                )
                requests += 1

                if not result.ok:
                    logger.warning(
                        "KPI sweep aborted at offset %s: %s", offset, result.error
                    )
                    return GlobalAggregates.zero(requests)

                items = result.page.items
                if not items:
                    break

                counts = [stream.participants for stream in items]
                total_participants += sum(counts)
                peak_participants = max(peak_participants, max(counts))

                if len(items) < self.batch_size:
                    break
                offset += self.batch_size

                if offset > self.safety_ceiling:
                    logger.warning(
                        "Reached safety limit of %s streams for KPI calculation",
                        self.safety_ceiling,
                    )
                    break

        except Exception as e:
            logger.error(f"Error fetching all streams for KPI: {e}", exc_info=True)
            return GlobalAggregates.zero(requests)

        logger.info(
            "KPI sweep done: %s requests, total=%s, peak=%s",
            requests,
            total_participants,
            peak_participants,
        )
        return GlobalAggregates(
            total_participants=total_participants,
            peak_participants=peak_participants,
            requests=requests,
            ok=True,
        )

    async def get_global_aggregates(self, force: bool = False) -> GlobalAggregates:
        """Memoized sweep; only successful sweeps are cached."""
        return await self._memo.get_or_load(
            _SWEEP_KEY, self.compute_global_aggregates, force=force
        )

    def invalidate(self) -> None:
        self._memo.invalidate(_SWEEP_KEY)
