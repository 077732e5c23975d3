"""
URL state mirroring

Serializes dashboard filters into a shareable query string
(``search``, ``sortBy``, ``sortOrder``, ``limit``, ``offset``) and rebuilds
them from one. Unparseable values fall back to defaults instead of failing.
"""

from __future__ import annotations

from typing import Optional, Union

import httpx

from schemas.streams import DEFAULT_LIMIT, MAX_LIMIT, SortBy, SortOrder
from streampulse.schemas.view import StreamFilters


def _parse_int(value: Optional[str], default: int, minimum: int, maximum: Optional[int] = None) -> int:
    if value is None:
        return default
    try:
        number = int(value)
    except ValueError:
        return default
    if number < minimum or (maximum is not None and number > maximum):
        return default
    return number


def filters_to_query(filters: StreamFilters) -> str:
    """Query string for the filters; empty values are omitted."""
    values = {
        "search": filters.search,
        "sortBy": filters.sort_by.value,
        "sortOrder": filters.sort_order.value,
        "limit": str(filters.limit),
        "offset": str(filters.offset),
    }
    return str(httpx.QueryParams({k: v for k, v in values.items() if v != ""}))


def filters_from_query(
    query: Union[str, httpx.QueryParams, None],
    default_limit: int = DEFAULT_LIMIT,
) -> StreamFilters:
    """Rebuild filters from a query string (a leading ``?`` is fine)."""
    if isinstance(query, str):
        query = httpx.QueryParams(query.lstrip("?"))
    params = query or httpx.QueryParams()

    try:
        sort_by = SortBy(params.get("sortBy", SortBy.NUM_PARTICIPANTS.value))
    except ValueError:
        sort_by = SortBy.NUM_PARTICIPANTS

    try:
        sort_order = SortOrder(params.get("sortOrder", SortOrder.DESC.value).upper())
    except ValueError:
        sort_order = SortOrder.DESC

    return StreamFilters(
        search=params.get("search", ""),
        sort_by=sort_by,
        sort_order=sort_order,
        limit=_parse_int(params.get("limit"), default_limit, 1, MAX_LIMIT),
        offset=_parse_int(params.get("offset"), 0, 0),
    )
