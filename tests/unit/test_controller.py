"""
Unit tests for DashboardController.

Covers filter/page-reset rules, local search, pagination bounds, page
memoization, out-of-order response handling and the KPI row.
"""
import asyncio
from datetime import timedelta

import pytest

from schemas.streams import FetchResult, SortBy, SortOrder, StreamPage, parse_streams
from streampulse.ingest.aggregates import KpiAccumulator
from streampulse.schemas.view import StreamFilters
from streampulse.view.controller import DashboardController
from conftest import FakeFetcher, make_stream


async def _never(_seconds):
    await asyncio.Event().wait()


def make_controller(fetcher, test_settings, fake_clock, **kwargs):
    return DashboardController(
        fetcher,
        config=test_settings,
        timer=fake_clock,
        sleep=_never,
        **kwargs,
    )


@pytest.mark.unit
@pytest.mark.asyncio
async def test_initial_load(sample_records, test_settings, fake_clock):
    fetcher = FakeFetcher(sample_records)
    controller = make_controller(fetcher, test_settings, fake_clock)

    before = controller.snapshot()
    assert before.is_loading is True
    assert before.streams == []

    view = await controller.refresh()

    assert view.is_loading is False
    assert view.is_error is False
    assert len(view.streams) == 20
    assert view.total == 45
    assert view.total_pages == 3
    assert view.current_page == 1
    assert view.has_next_page is True
    assert view.has_prev_page is False
    assert view.range_label == "Showing 1 to 20 of 45 streams"
    assert fetcher.calls[0].sort_by == SortBy.NUM_PARTICIPANTS
    assert fetcher.calls[0].sort_order == SortOrder.DESC


@pytest.mark.unit
def test_sort_change_resets_offset(test_settings, fake_clock):
    controller = make_controller(FakeFetcher(), test_settings, fake_clock)
    controller.set_filters(offset=40)

    changed = controller.set_filters(sort_by=SortBy.CREATED_AT)

    assert changed is True
    assert controller.filters.offset == 0
    assert controller.filters.sort_by == SortBy.CREATED_AT


@pytest.mark.unit
@pytest.mark.parametrize(
    "changes",
    [{"sort_order": "ASC"}, {"limit": 50}, {"search": "cat"}],
)
def test_page_invalidating_changes_reset_offset(changes, test_settings, fake_clock):
    controller = make_controller(FakeFetcher(), test_settings, fake_clock)
    controller.set_filters(offset=40)

    controller.set_filters(**changes)

    assert controller.filters.offset == 0


@pytest.mark.unit
def test_offset_only_change_keeps_sort(test_settings, fake_clock):
    controller = make_controller(FakeFetcher(), test_settings, fake_clock)
    controller.set_filters(sort_by=SortBy.STARTED_AT, sort_order=SortOrder.ASC)

    assert controller.set_filters(offset=20) is True
    assert controller.filters.sort_by == SortBy.STARTED_AT
    assert controller.filters.sort_order == SortOrder.ASC
    assert controller.filters.offset == 20


@pytest.mark.unit
def test_unknown_filter_is_rejected(test_settings, fake_clock):
    controller = make_controller(FakeFetcher(), test_settings, fake_clock)
    with pytest.raises(ValueError):
        controller.set_filters(colour="red")


@pytest.mark.unit
def test_toggle_sort(test_settings, fake_clock):
    controller = make_controller(FakeFetcher(), test_settings, fake_clock)

    controller.toggle_sort("num_participants")
    assert controller.filters.sort_order == SortOrder.ASC

    controller.toggle_sort("num_participants")
    assert controller.filters.sort_order == SortOrder.DESC

    controller.toggle_sort("created_at")
    assert controller.filters.sort_by == SortBy.CREATED_AT
    assert controller.filters.sort_order == SortOrder.DESC


@pytest.mark.unit
@pytest.mark.asyncio
async def test_search_filters_loaded_page_without_fetching(test_settings, fake_clock):
    records = [
        make_stream(1, name="Funny Cats"),
        make_stream(2, name="Cooking", handle="catlover"),
        make_stream(3, name="Speedrun"),
        make_stream(4, name="Dogs", title="CAT rescue"),
    ]
    fetcher = FakeFetcher(records)
    controller = make_controller(fetcher, test_settings, fake_clock)
    await controller.refresh()

    changed = controller.set_filters(search="Cat")
    view = await controller.refresh()

    assert changed is False
    assert len(fetcher.calls) == 1
    assert [s.id for s in view.streams] == ["stream-1", "stream-2", "stream-4"]
    # Total still describes the page source, not the local match count
    assert view.total == 4


@pytest.mark.unit
@pytest.mark.asyncio
async def test_pagination_bounds(sample_records, test_settings, fake_clock):
    controller = make_controller(FakeFetcher(sample_records), test_settings, fake_clock)
    await controller.refresh()

    assert controller.prev_page() is False
    with pytest.raises(ValueError):
        controller.go_to_page(0)
    with pytest.raises(ValueError):
        controller.go_to_page(4)

    controller.go_to_page(3)
    view = await controller.refresh()
    assert view.current_page == 3
    assert len(view.streams) == 5
    assert view.has_next_page is False
    assert view.range_label == "Showing 41 to 45 of 45 streams"
    assert controller.next_page() is False

    assert controller.prev_page() is True
    assert controller.filters.offset == 20


@pytest.mark.unit
@pytest.mark.asyncio
async def test_pages_are_memoized_by_query_key(sample_records, test_settings, fake_clock):
    fetcher = FakeFetcher(sample_records)
    controller = make_controller(fetcher, test_settings, fake_clock)

    await controller.refresh()
    controller.next_page()
    await controller.refresh()
    controller.prev_page()
    await controller.refresh()
    assert [c.offset for c in fetcher.calls] == [0, 20]

    fake_clock.advance(test_settings.page_stale_seconds + 1)
    await controller.refresh()
    assert [c.offset for c in fetcher.calls] == [0, 20, 0]

    await controller.retry()
    assert len(fetcher.calls) == 4


@pytest.mark.unit
@pytest.mark.asyncio
async def test_older_response_is_discarded(sample_records, test_settings, fake_clock):
    class SlowFirstPage(FakeFetcher):
        def __init__(self, records):
            super().__init__(records)
            self.release_first = asyncio.Event()

        async def fetch_page(self, params=None):
            if params.offset == 0:
                await self.release_first.wait()
            return await super().fetch_page(params)

    fetcher = SlowFirstPage(sample_records)
    controller = make_controller(fetcher, test_settings, fake_clock)

    slow = asyncio.create_task(controller.refresh())
    await asyncio.sleep(0)

    controller.go_to_page(2)
    view = await controller.refresh()
    assert view.streams[0].id == "stream-21"

    fetcher.release_first.set()
    await slow

    view = controller.snapshot()
    assert view.current_page == 2
    assert view.streams[0].id == "stream-21"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_response_for_abandoned_key_is_not_shown(sample_records, test_settings, fake_clock):
    fetcher = FakeFetcher(sample_records)
    fetcher.gate = asyncio.Event()
    controller = make_controller(fetcher, test_settings, fake_clock)

    pending = asyncio.create_task(controller.refresh())
    await asyncio.sleep(0)
    controller.set_filters(sort_by=SortBy.CREATED_AT)

    fetcher.gate.set()
    await pending

    view = controller.snapshot()
    assert view.is_loading is True
    assert view.streams == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failure_shows_error_and_is_not_memoized(sample_records, test_settings, fake_clock):
    fetcher = FakeFetcher(sample_records, fail=True)
    controller = make_controller(fetcher, test_settings, fake_clock)

    view = await controller.refresh()
    assert view.is_error is True
    assert "500" in view.error
    assert view.streams == []
    assert view.total == 0

    fetcher.fail = False
    view = await controller.refresh()
    assert view.is_error is False
    assert len(view.streams) == 20
    assert len(fetcher.calls) == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_kpi_row_combines_page_total_and_global_aggregates(test_settings, fake_clock):
    records = [make_stream(i, participants=i * 10) for i in range(1, 46)]
    fetcher = FakeFetcher(records)
    kpi = KpiAccumulator(fetcher, config=test_settings, timer=fake_clock)
    controller = make_controller(fetcher, test_settings, fake_clock, kpi=kpi)

    await controller.refresh()
    await controller.refresh_kpis()
    snapshot = controller.kpi_snapshot()

    assert snapshot.total_streams == 45
    assert snapshot.total_participants == sum(i * 10 for i in range(1, 46))
    assert snapshot.peak_participants == 450


@pytest.mark.unit
@pytest.mark.asyncio
async def test_kpi_row_without_aggregates_shows_zeros(sample_records, test_settings, fake_clock):
    controller = make_controller(FakeFetcher(sample_records), test_settings, fake_clock)
    assert controller.kpi_snapshot() is None

    await controller.refresh()
    assert await controller.refresh_kpis() is None

    snapshot = controller.kpi_snapshot()
    assert snapshot.total_streams == 45
    assert snapshot.total_participants == 0
    assert snapshot.peak_participants == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_poll_forces_page_but_reuses_kpi_memo(sample_records, test_settings, fake_clock):
    page_fetcher = FakeFetcher(sample_records)
    kpi_fetcher = FakeFetcher(sample_records)
    kpi = KpiAccumulator(kpi_fetcher, config=test_settings, timer=fake_clock)
    controller = make_controller(page_fetcher, test_settings, fake_clock, kpi=kpi)

    await controller.poll()
    await controller.poll()

    assert len(page_fetcher.calls) == 2
    assert len(kpi_fetcher.calls) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_polling_toggle(test_settings, fake_clock):
    controller = make_controller(FakeFetcher(), test_settings, fake_clock)

    await controller.set_polling(True)
    view = controller.snapshot()
    assert view.polling is True
    assert view.countdown == test_settings.poll_interval_seconds

    await controller.set_polling(False)
    view = controller.snapshot()
    assert view.polling is False
    assert view.countdown == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_total_falls_back_when_source_omits_it(test_settings, fake_clock):
    class NoTotalFetcher:
        async def fetch_page(self, params=None):
            items = parse_streams([make_stream(i) for i in range(params.limit)])
            page = StreamPage(items=items, total=params.offset + len(items), limit=params.limit, offset=params.offset)
            return FetchResult.success(page)

    controller = make_controller(NoTotalFetcher(), test_settings, fake_clock)
    controller.set_filters(offset=20)
    view = await controller.refresh()

    assert view.total == 40
    assert view.total_pages == 2


@pytest.mark.unit
def test_query_string_round_trip(test_settings, fake_clock):
    controller = DashboardController.from_query_string(
        "?search=cat&sortBy=created_at&sortOrder=ASC&limit=10&offset=30",
        FakeFetcher(),
        config=test_settings,
        timer=fake_clock,
        sleep=_never,
    )

    assert controller.filters == StreamFilters(
        search="cat",
        sort_by=SortBy.CREATED_AT,
        sort_order=SortOrder.ASC,
        limit=10,
        offset=30,
    )
    assert controller.current_page == 4

    rebuilt = DashboardController.from_query_string(
        controller.to_query_string(), FakeFetcher(), config=test_settings, sleep=_never
    )
    assert rebuilt.filters == controller.filters


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("limit", [0, 1001])
async def test_out_of_bounds_page_size_is_rejected(limit, sample_records, test_settings, fake_clock):
    fetcher = FakeFetcher(sample_records)
    controller = make_controller(fetcher, test_settings, fake_clock)

    with pytest.raises(ValueError):
        controller.set_filters(limit=limit)

    assert controller.filters.limit == 20
    view = await controller.refresh()
    assert len(view.streams) == 20
    assert fetcher.calls[0].limit == 20


@pytest.mark.unit
@pytest.mark.asyncio
async def test_fresher_poll_result_wins_over_later_memo_hit(sample_records, test_settings, fake_clock):
    class SlowRefetch(FakeFetcher):
        async def fetch_page(self, params=None):
            result = await super().fetch_page(params)
            if len(self.calls) > 1:
                result.fetched_at += timedelta(seconds=5)
            return result

    fetcher = SlowRefetch(sample_records)
    controller = make_controller(fetcher, test_settings, fake_clock)
    await controller.refresh()

    fetcher.gate = asyncio.Event()
    fetcher.records = [make_stream(i, name=f"Updated {i}") for i in range(1, 46)]
    polled = asyncio.create_task(controller.refresh(force=True))
    await asyncio.sleep(0)

    # Served from the page memo while the forced refetch is still in flight
    view = await controller.refresh()
    assert view.streams[0].name == "Stream 1"

    fetcher.gate.set()
    await polled

    view = controller.snapshot()
    assert view.streams[0].name == "Updated 1"
    assert len(fetcher.calls) == 2
