"""
Stream Statistics Client

Fetches pages of stream statistics either straight from the upstream API
(``/streamstats``) or through our own ``/api/streams`` proxy. Both answer with
the same ``{data: {data, metadata}}`` envelope.

Fetching never raises: transport errors, non-2xx answers and malformed
bodies all come back as a failed ``FetchResult`` with an empty page, so the
view always has something to render.
"""

from __future__ import annotations

from typing import Optional

import httpx
from pydantic import ValidationError

from schemas.streams import FetchResult, StreamQueryParams, StreamsEnvelope
from streampulse.config import Settings, settings
from streampulse.utils.logging import get_logger

logger = get_logger(__name__, category="fetch")

UPSTREAM_PATH = "/streamstats"
PROXY_PATH = "/api/streams"


class StreamStatsClient:
    """Fetches and normalizes pages of streams from one endpoint."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        path: str = UPSTREAM_PATH,
        config: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Service root (defaults to config.api_base_url)
            path: Endpoint path under base_url
            config: Settings instance (defaults to the module settings)
            http_client: Pre-built httpx client; the caller keeps ownership
        """
        self.config = config or settings
        self.base_url = (base_url or self.config.api_base_url).rstrip("/")
        self.path = path
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=self.config.http_timeout_seconds,
            headers={
                "Content-Type": "application/json",
                "Cache-Control": "no-store",
            },
        )

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.path}"

    async def close(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    async def __aenter__(self) -> "StreamStatsClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def fetch_page(self, params: Optional[StreamQueryParams] = None) -> FetchResult:
        """
        Fetch one page of streams.

        Args:
            params: Query parameters; unset fields take the defaults
                    (limit=default_page_size, offset=0, num_participants DESC)

        Returns:
            FetchResult with ok=True and the normalized page, or ok=False with
            an empty page carrying the requested limit/offset
        """
        query = (params or StreamQueryParams()).with_defaults(self.config.default_page_size)
        limit = query.limit
        offset = query.offset

        try:
            response = await self.http_client.get(self.url, params=query.as_query())
            response.raise_for_status()

            envelope = StreamsEnvelope.model_validate(response.json())
            page = envelope.to_page(limit=limit, offset=offset)

            logger.debug(
                "Fetched %s streams from %s (offset=%s, total=%s)",
                len(page.items),
                self.url,
                page.offset,
                page.total,
            )
            return FetchResult.success(page)

        except httpx.HTTPStatusError as e:
            reason = f"API request failed: {e.response.status_code} {e.response.reason_phrase}"
            logger.error(f"Error fetching streams from {self.url}: {reason}")
        except httpx.RequestError as e:
            reason = f"Request error: {type(e).__name__}: {e}"
            logger.error(f"Error fetching streams from {self.url}: {reason}")
        except ValidationError as e:
            reason = f"Invalid response body: {e.error_count()} validation error(s)"
            logger.error(f"Error fetching streams from {self.url}: {reason}")
        except ValueError as e:
            # response.json() on a non-JSON body
            reason = f"Invalid JSON response: {e}"
            logger.error(f"Error fetching streams from {self.url}: {reason}")

        return FetchResult.failure(reason, limit=limit, offset=offset)


def create_upstream_client(
    config: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> StreamStatsClient:
    """Client for the third-party API (server side)."""
    config = config or settings
    return StreamStatsClient(
        base_url=config.api_base_url,
        path=UPSTREAM_PATH,
        config=config,
        http_client=http_client,
    )


def create_proxy_client(
    config: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> StreamStatsClient:
    """Client for our own /api/streams proxy (dashboard side)."""
    config = config or settings
    return StreamStatsClient(
        base_url=config.proxy_base_url,
        path=PROXY_PATH,
        config=config,
        http_client=http_client,
    )
