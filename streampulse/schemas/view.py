"""
View-state Schemas

Models for the dashboard's filter state, KPI figures and the immutable view
snapshot handed to renderers.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from schemas.streams import (
    DEFAULT_LIMIT,
    MAX_LIMIT,
    MIN_LIMIT,
    SortBy,
    SortOrder,
    Stream,
    StreamQueryParams,
)


class StreamFilters(BaseModel):
    """Filter, sort and paging state owned by the dashboard controller."""

    search: str = ""
    sort_by: SortBy = SortBy.NUM_PARTICIPANTS
    sort_order: SortOrder = SortOrder.DESC
    limit: int = Field(default=DEFAULT_LIMIT, ge=MIN_LIMIT, le=MAX_LIMIT)
    offset: int = Field(default=0, ge=0)

    @property
    def current_page(self) -> int:
        return self.offset // self.limit + 1

    @property
    def query_key(self) -> Tuple[int, int, str, str]:
        """Fetch-relevant identity; search text is applied locally and excluded."""
        return (self.limit, self.offset, self.sort_by.value, self.sort_order.value)

    def to_query_params(self) -> StreamQueryParams:
        return StreamQueryParams(
            limit=self.limit,
            offset=self.offset,
            sort_by=self.sort_by,
            sort_order=self.sort_order,
        )


class GlobalAggregates(BaseModel):
    """Participant totals across every page of the upstream source."""

    total_participants: int = 0
    peak_participants: int = 0
    requests: int = 0
    ok: bool = True
    computed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def zero(cls, requests: int = 0) -> "GlobalAggregates":
        return cls(total_participants=0, peak_participants=0, requests=requests, ok=False)


class KpiSnapshot(BaseModel):
    total_streams: int = 0
    total_participants: int = 0
    peak_participants: int = 0
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DashboardView(BaseModel):
    """Everything a renderer needs for one frame."""

    filters: StreamFilters
    streams: List[Stream] = Field(default_factory=list)
    total: int = 0
    total_pages: int = 0
    current_page: int = 1
    has_next_page: bool = False
    has_prev_page: bool = False
    is_loading: bool = False
    is_error: bool = False
    error: Optional[str] = None
    kpi: Optional[KpiSnapshot] = None
    polling: bool = False
    countdown: float = 0

    @property
    def range_label(self) -> str:
        """e.g. ``Showing 21 to 40 of 135 streams``."""
        if self.total == 0:
            return "Showing 0 streams"
        start = self.filters.offset + 1
        end = min(self.filters.offset + self.filters.limit, self.total)
        return f"Showing {start} to {end} of {self.total} streams"
