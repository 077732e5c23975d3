"""
Stream Schemas

Pydantic models for the upstream stream statistics API and for our own
/api/streams proxy.

The upstream schema keeps evolving, so ``Stream`` is deliberately tolerant:
every known field except ``id`` is optional, a malformed known field is
dropped to ``None`` instead of failing the record, and unknown fields are kept
in ``extras`` and written back out unchanged.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import (
    AnyUrl,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

logger = logging.getLogger(__name__)

_URL_ADAPTER = TypeAdapter(AnyUrl)

DEFAULT_LIMIT = 20
DEFAULT_OFFSET = 0
MIN_LIMIT = 1
MAX_LIMIT = 1000


class SortBy(str, Enum):
    NUM_PARTICIPANTS = "num_participants"
    CREATED_AT = "created_at"
    STARTED_AT = "started_at"
    VIEWER_COUNT = "viewer_count"


class SortOrder(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


TEXT_FIELDS = (
    "mint",
    "name",
    "symbol",
    "description",
    "title",
    "handle",
    "status",
    "platform",
    "raydium_pool",
    "market_id",
    "video_uri",
    "created_timestamp",
    "last_trade_timestamp",
)
URL_FIELDS = ("image_uri", "thumbnail", "thumbnail_url", "twitter", "telegram", "website")
COUNTER_FIELDS = (
    "num_participants",
    "viewer_count",
    "chat_members",
    "reply_count",
    "counts_streams",
)
MARKET_FIELDS = ("market_cap", "usd_market_cap")
FLAG_FIELDS = ("is_currently_live", "hidden")
TIMESTAMP_FIELDS = ("created_at", "started_at", "updated_at")


class Stream(BaseModel):
    """One live or ended broadcast as reported by the upstream API."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1, description="Unique stream identifier")

    # Identity / text
    mint: Optional[str] = None
    name: Optional[str] = None
    symbol: Optional[str] = None
    description: Optional[str] = None
    title: Optional[str] = None
    handle: Optional[str] = None
    status: Optional[str] = None
    platform: Optional[str] = None
    raydium_pool: Optional[str] = None
    market_id: Optional[str] = None
    video_uri: Optional[str] = None
    created_timestamp: Optional[str] = None
    last_trade_timestamp: Optional[str] = None

    # Media and social links
    image_uri: Optional[str] = None
    thumbnail: Optional[str] = None
    thumbnail_url: Optional[str] = None
    twitter: Optional[str] = None
    telegram: Optional[str] = None
    website: Optional[str] = None

    # Counters
    num_participants: Optional[int] = None
    viewer_count: Optional[int] = None
    chat_members: Optional[int] = None
    reply_count: Optional[int] = None
    counts_streams: Optional[int] = None

    # Market data
    market_cap: Optional[float] = None
    usd_market_cap: Optional[float] = None

    # Flags
    is_currently_live: Optional[bool] = None
    hidden: Optional[bool] = None

    # Timestamps
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Unknown upstream fields, kept verbatim
    extras: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def collect_unknown_fields(cls, data: Any) -> Any:
        """Move fields we don't model into ``extras``."""
        if not isinstance(data, dict):
            return data

        known = set(cls.model_fields)
        residual: Dict[str, Any] = {}
        previous = data.get("extras")
        if isinstance(previous, dict):
            residual.update(previous)

        cleaned = {}
        for key, value in data.items():
            if key == "extras":
                continue
            if key in known:
                cleaned[key] = value
            else:
                residual[key] = value
        cleaned["extras"] = residual
        return cleaned

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator(
        *TEXT_FIELDS,
        *COUNTER_FIELDS,
        *MARKET_FIELDS,
        *FLAG_FIELDS,
        *TIMESTAMP_FIELDS,
        mode="wrap",
    )
    @classmethod
    def drop_malformed(cls, value: Any, handler, info: ValidationInfo) -> Any:
        """A bad value for one field makes that field absent, not the record invalid."""
        try:
            return handler(value)
        except ValidationError:
            logger.debug("Dropping malformed %s=%r", info.field_name, value)
            return None

    @field_validator(*URL_FIELDS, mode="wrap")
    @classmethod
    def flexible_url(cls, value: Any, handler, info: ValidationInfo) -> Any:
        """Blank or unparseable URLs become None."""
        try:
            text = handler(value)
        except ValidationError:
            return None
        if text is None or not text.strip():
            return None
        text = text.strip()
        try:
            _URL_ADAPTER.validate_python(text)
        except ValidationError:
            logger.debug("Dropping invalid URL %s=%r", info.field_name, text)
            return None
        return text

    @property
    def display_name(self) -> str:
        return self.name or self.symbol or self.title or self.handle or "Unknown"

    @property
    def handle_label(self) -> str:
        return self.symbol or self.handle or self.name or self.title or "unknown"

    @property
    def participants(self) -> int:
        if self.num_participants is not None:
            return self.num_participants
        return self.viewer_count or 0

    @property
    def thumbnail_src(self) -> Optional[str]:
        return self.thumbnail or self.image_uri or self.thumbnail_url

    @property
    def link_url(self) -> Optional[str]:
        return f"https://pump.fun/{self.mint}" if self.mint else None

    def matches(self, search: str) -> bool:
        """Case-insensitive substring match on display name, title or handle."""
        needle = search.strip().lower()
        if not needle:
            return True
        haystacks = (self.display_name, self.title or "", self.handle or "")
        return any(needle in text.lower() for text in haystacks)

    def to_wire(self) -> Dict[str, Any]:
        """Serialize back to the upstream JSON shape, unknown fields included."""
        known = self.model_dump(mode="json", exclude={"extras"}, exclude_none=True)
        return {**self.extras, **known}


def parse_streams(items: Any) -> List[Stream]:
    """Validate a list of raw records, skipping the ones that cannot be salvaged."""
    if not isinstance(items, list):
        raise ValueError("stream list must be an array")

    streams: List[Stream] = []
    for index, raw in enumerate(items):
        if isinstance(raw, Stream):
            streams.append(raw)
            continue
        try:
            streams.append(Stream.model_validate(raw))
        except ValidationError as exc:
            logger.warning(
                "Skipping stream record #%s: %s",
                index,
                exc.errors(include_url=False)[0]["msg"],
            )
    return streams


class PageMetadata(BaseModel):
    """Paging metadata returned alongside a page of streams."""

    total: Optional[int] = None
    limit: Optional[int] = None
    offset: Optional[int] = None


class StreamsData(BaseModel):
    data: List[Stream]
    metadata: Optional[PageMetadata] = None

    @field_validator("data", mode="before")
    @classmethod
    def salvage_records(cls, value: Any) -> List[Stream]:
        return parse_streams(value)


class StreamsEnvelope(BaseModel):
    """Upstream response: ``{statusCode?, data: {data: Stream[], metadata?}}``."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    status_code: Optional[int] = Field(default=None, alias="statusCode")
    data: StreamsData

    def _top_level_int(self, key: str) -> Optional[int]:
        value = (self.model_extra or {}).get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        return None

    def to_page(self, limit: int, offset: int) -> "StreamPage":
        """Normalize into a ``StreamPage``, falling back to the requested paging."""
        metadata = self.data.metadata or PageMetadata()
        items = self.data.data

        page_limit = metadata.limit
        if page_limit is None:
            page_limit = self._top_level_int("limit")
        page_offset = metadata.offset
        if page_offset is None:
            page_offset = self._top_level_int("offset")
        total = metadata.total
        if total is None:
            total = self._top_level_int("total")

        page_limit = limit if page_limit is None else page_limit
        page_offset = offset if page_offset is None else page_offset
        if total is None:
            total = page_offset + len(items)

        return StreamPage(items=items, total=total, limit=page_limit, offset=page_offset)


class StreamQueryParams(BaseModel):
    """Query parameters accepted by the upstream API and by /api/streams."""

    limit: Optional[int] = Field(default=None, ge=MIN_LIMIT, le=MAX_LIMIT)
    offset: Optional[int] = Field(default=None, ge=0)
    sort_by: Optional[SortBy] = None
    sort_order: Optional[SortOrder] = None

    def with_defaults(self, default_limit: int = DEFAULT_LIMIT) -> "StreamQueryParams":
        return StreamQueryParams(
            limit=self.limit if self.limit is not None else default_limit,
            offset=self.offset if self.offset is not None else DEFAULT_OFFSET,
            sort_by=self.sort_by or SortBy.NUM_PARTICIPANTS,
            sort_order=self.sort_order or SortOrder.DESC,
        )

    @property
    def key(self) -> Tuple[Optional[int], Optional[int], Optional[str], Optional[str]]:
        """Hashable identity used for memoization."""
        return (
            self.limit,
            self.offset,
            self.sort_by.value if self.sort_by else None,
            self.sort_order.value if self.sort_order else None,
        )

    def as_query(self) -> Dict[str, str]:
        """Query-string form; only set fields are included."""
        query: Dict[str, str] = {}
        if self.limit is not None:
            query["limit"] = str(self.limit)
        if self.offset is not None:
            query["offset"] = str(self.offset)
        if self.sort_by is not None:
            query["sort_by"] = self.sort_by.value
        if self.sort_order is not None:
            query["sort_order"] = self.sort_order.value
        return query


class StreamPage(BaseModel):
    """Normalized page: ``{items, total, limit, offset}``."""

    items: List[Stream] = Field(default_factory=list)
    total: int = 0
    limit: int = DEFAULT_LIMIT
    offset: int = DEFAULT_OFFSET

    @classmethod
    def empty(cls, limit: int, offset: int) -> "StreamPage":
        return cls(items=[], total=0, limit=limit, offset=offset)

    def to_envelope(self) -> Dict[str, Any]:
        """Canonical proxy body: ``{data: {data, metadata: {total, limit, offset}}}``."""
        return {
            "data": {
                "data": [stream.to_wire() for stream in self.items],
                "metadata": {
                    "total": self.total,
                    "limit": self.limit,
                    "offset": self.offset,
                },
            }
        }


class FetchResult(BaseModel):
    """Tagged fetch outcome.

    ``page`` is always well-formed (empty on failure) so callers that ignore
    ``ok`` still get a renderable page; callers that check ``ok`` can tell
    "no streams matched" apart from "could not reach the data source".
    """

    ok: bool
    page: StreamPage
    error: Optional[str] = None
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def success(cls, page: StreamPage) -> "FetchResult":
        return cls(ok=True, page=page)

    @classmethod
    def failure(cls, error: str, limit: int, offset: int) -> "FetchResult":
        return cls(ok=False, page=StreamPage.empty(limit, offset), error=error)


class ErrorResponse(BaseModel):
    """Body of 400/500 responses from /api/streams."""

    error: str
    message: Optional[str] = None
