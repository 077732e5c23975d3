import asyncio
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from schemas.streams import FetchResult, StreamPage, StreamQueryParams, parse_streams
from streampulse.config import Settings


@pytest.fixture(autouse=True)
def settings_env(monkeypatch):
    """Set test environment variables."""
    # Never talk to the real upstream during tests
    monkeypatch.setenv("API_BASE_URL", "http://upstream.test")
    monkeypatch.setenv("PROXY_BASE_URL", "http://proxy.test")
    yield


@pytest.fixture
def test_settings():
    """Settings built in-test so nothing depends on the process environment."""
    return Settings(
        api_base_url="http://upstream.test",
        proxy_base_url="http://proxy.test",
        default_page_size=20,
        kpi_batch_size=50,
        kpi_safety_ceiling=1000,
        kpi_stale_seconds=300,
        page_stale_seconds=10,
        poll_interval_seconds=15,
        countdown_tick_seconds=1.0,
    )


def make_stream(index: int, participants: Optional[int] = None, **fields: Any) -> Dict[str, Any]:
    """Raw upstream record in the shape the stream statistics API returns."""
    record = {
        "id": f"stream-{index}",
        "mint": f"mint{index}",
        "name": f"Stream {index}",
        "symbol": f"SYM{index}",
        "num_participants": participants if participants is not None else index,
        "is_currently_live": True,
        "created_at": "2024-01-01T00:00:00Z",
    }
    record.update(fields)
    return record


def make_envelope(items: List[Dict[str, Any]], total: Optional[int] = None, limit: int = 20, offset: int = 0):
    metadata = {"limit": limit, "offset": offset}
    if total is not None:
        metadata["total"] = total
    return {"statusCode": 200, "data": {"data": items, "metadata": metadata}}


class FakeFetcher:
    """In-memory page source; records every request it receives."""

    def __init__(
        self,
        records: Optional[List[Dict[str, Any]]] = None,
        total: Optional[int] = None,
        fail: bool = False,
    ):
        self.records = records or []
        self.total = total
        self.fail = fail
        self.calls: List[StreamQueryParams] = []
        self.gate: Optional[asyncio.Event] = None
        self.on_fetch: Optional[Callable[[StreamQueryParams], None]] = None

    async def fetch_page(self, params: Optional[StreamQueryParams] = None) -> FetchResult:
        query = (params or StreamQueryParams()).with_defaults()
        self.calls.append(query)
        if self.on_fetch is not None:
            self.on_fetch(query)
        if self.gate is not None:
            await self.gate.wait()

        if self.fail:
            return FetchResult.failure("API request failed: 500 Internal Server Error", query.limit, query.offset)

        window = self.records[query.offset:query.offset + query.limit]
        total = self.total if self.total is not None else len(self.records)
        page = StreamPage(
            items=parse_streams(window),
            total=total,
            limit=query.limit,
            offset=query.offset,
        )
        return FetchResult.success(page)


class FakeClock:
    """Manually advanced monotonic clock for TTL memos."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def sample_records():
    """45 streams, participants 1..45."""
    return [make_stream(i, participants=i) for i in range(1, 46)]


def mock_transport(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))
