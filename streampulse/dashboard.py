"""
Terminal dashboard

Renders the KPI row, the stream table and the trending list with rich, and
keeps them live with the controller's polling scheduler.

    streampulse-dashboard --live
    streampulse-dashboard --query "search=cat&sortBy=created_at&limit=50"
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import List, Optional

from pydantic import ValidationError
from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from schemas.streams import SortBy, SortOrder, Stream
from streampulse.config import Settings, settings
from streampulse.ingest.aggregates import KpiAccumulator
from streampulse.ingest.client import create_proxy_client, create_upstream_client
from streampulse.schemas.view import DashboardView, KpiSnapshot
from streampulse.utils.format import (
    calculate_uptime,
    format_compact_number,
    format_countdown,
    format_number,
    format_relative_time,
    get_status_text,
)
from streampulse.utils.logging import configure_logging, get_logger
from streampulse.view.controller import DashboardController

logger = get_logger(__name__, category="view")

TRENDING_COUNT = 10


def setup_logging(config: Settings, console: Console) -> None:
    """Route logs through rich so they don't tear the live display."""
    handler = RichHandler(
        console=console,
        show_time=True,
        show_level=True,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter(fmt="%(message)s", datefmt="[%Y-%m-%d %H:%M:%S]"))
    configure_logging(config, handlers=[handler], fmt="%(message)s")


def render_kpis(kpi: Optional[KpiSnapshot]) -> RenderableType:
    kpi = kpi or KpiSnapshot()
    grid = Table.grid(expand=True, padding=(0, 2))
    for _ in range(3):
        grid.add_column(ratio=1)
    grid.add_row(
        Panel(format_number(kpi.total_streams), title="Total Streams"),
        Panel(format_number(kpi.total_participants), title="Total Viewers"),
        Panel(format_number(kpi.peak_participants), title="Peak Viewers"),
    )
    return grid


def _sort_marker(view: DashboardView, field: SortBy) -> str:
    if view.filters.sort_by != field:
        return ""
    return " ▲" if view.filters.sort_order == SortOrder.ASC else " ▼"


def render_stream_table(view: DashboardView) -> RenderableType:
    if view.is_loading:
        return Panel(Text("Loading streams...", style="dim"))

    if view.is_error:
        return Panel(
            Text(view.error or "Something went wrong while loading the streams."),
            title="Failed to load streams",
            border_style="red",
        )

    if not view.streams:
        return Panel(
            Text("Try adjusting your search or filters to find more streams."),
            title="No streams found",
        )

    table = Table(expand=True)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Stream")
    table.add_column("Viewers" + _sort_marker(view, SortBy.NUM_PARTICIPANTS), justify="right")
    table.add_column("Chat / Replies", justify="right")
    table.add_column("Uptime" + _sort_marker(view, SortBy.CREATED_AT), justify="right")
    table.add_column("Past Streams", justify="right")
    table.add_column("Status")

    for index, stream in enumerate(view.streams):
        chat = stream.chat_members or 0
        replies = stream.reply_count or 0
        uptime = calculate_uptime(stream.created_at)
        past = stream.counts_streams or 0
        table.add_row(
            f"#{view.filters.offset + index + 1}",
            Text.assemble(stream.display_name, "\n", (f"@{stream.handle_label}", "dim")),
            format_compact_number(stream.participants),
            f"{format_compact_number(chat)} / {format_compact_number(replies)}"
            if chat > 0 or replies > 0
            else "-",
            uptime if uptime != "Unknown" else "-",
            str(past) if past > 0 else "-",
            get_status_text(stream.is_currently_live),
        )
    return table


def render_trending(streams: List[Stream]) -> RenderableType:
    if not streams:
        return Panel(Text("No streams to display", style="dim"), title="Trending streams")

    lines = Table.grid(padding=(0, 1))
    lines.add_column()
    lines.add_column(justify="right")
    for stream in streams[:TRENDING_COUNT]:
        lines.add_row(
            Text.assemble(stream.display_name, (f" · updated {format_relative_time(stream.updated_at)}", "dim")),
            format_compact_number(stream.participants),
        )
    return Panel(lines, title="Trending streams")


def render_footer(view: DashboardView) -> RenderableType:
    parts = [view.range_label]
    if view.total_pages > 1:
        parts.append(f"Page {view.current_page}/{view.total_pages}")
    if view.filters.search:
        parts.append(f"Search: {view.filters.search!r}")
    if view.polling:
        parts.append(f"Live ({format_countdown(view.countdown)})")
    return Text("  |  ".join(parts), style="dim")


def render_dashboard(view: DashboardView) -> RenderableType:
    return Group(
        render_kpis(view.kpi),
        render_stream_table(view),
        render_trending(view.streams),
        render_footer(view),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="StreamPulse terminal dashboard")
    parser.add_argument("--query", default="", help="Shared URL query string to start from")
    parser.add_argument("--search", help="Filter the loaded page by name or handle")
    parser.add_argument("--sort-by", choices=[s.value for s in SortBy])
    parser.add_argument("--sort-order", choices=[s.value for s in SortOrder])
    parser.add_argument("--limit", type=int, help="Page size")
    parser.add_argument("--page", type=int, help="Page number to open")
    parser.add_argument("--live", action="store_true", help="Auto-refresh on the polling interval")
    parser.add_argument(
        "--direct",
        action="store_true",
        help="Call the upstream API directly instead of the local proxy",
    )
    return parser


async def run_dashboard(args: argparse.Namespace, config: Optional[Settings] = None) -> None:
    config = config or settings
    console = Console()
    setup_logging(config, console)

    client = create_upstream_client(config) if args.direct else create_proxy_client(config)
    kpi = KpiAccumulator(client, config=config)

    live: Optional[Live] = None

    def redraw(_countdown: float = 0) -> None:
        if live is not None:
            live.update(render_dashboard(controller.snapshot()))

    controller = DashboardController.from_query_string(
        args.query, client, kpi=kpi, config=config, on_tick=redraw
    )

    changes = {}
    if args.search is not None:
        changes["search"] = args.search
    if args.sort_by:
        changes["sort_by"] = args.sort_by
    if args.sort_order:
        changes["sort_order"] = args.sort_order
    if args.limit is not None:
        changes["limit"] = args.limit

    try:
        if changes:
            controller.set_filters(**changes)
        if args.page is not None:
            controller.go_to_page(args.page)
    except ValidationError as e:
        await client.close()
        error = e.errors(include_url=False)[0]
        build_parser().error(f"--{str(error['loc'][0]).replace('_', '-')}: {error['msg']}")
    except ValueError as e:
        await client.close()
        build_parser().error(str(e))

    try:
        await controller.refresh()
        await controller.refresh_kpis()
        logger.info(f"Dashboard state: ?{controller.to_query_string()}")

        if not args.live:
            console.print(render_dashboard(controller.snapshot()))
            return

        with Live(render_dashboard(controller.snapshot()), console=console, refresh_per_second=4) as live:
            await controller.set_polling(True)
            try:
                while controller.is_polling:
                    await asyncio.sleep(3600)
            finally:
                await controller.set_polling(False)
    finally:
        await client.close()


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    try:
        asyncio.run(run_dashboard(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
