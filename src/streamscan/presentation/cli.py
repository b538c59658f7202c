import asyncio
from datetime import datetime, timezone
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from ..adapters.parquet_sink import write_records
from ..application.aggregation import aggregate, filter_records
from ..application.refresh import RefreshCoordinator
from ..application.scheduler import PollScheduler
from ..application.use_cases import list_schemas, open_context, scan
from ..config import Settings, load_settings
from ..domain.decoding import KNOWN_SHAPES, shapes_by_name
from ..domain.errors import ConfigError, FatalEnumerationError
from ..domain.models import EnrichedRecord, ScanResult, SchemaListing
from ..domain.schema_fields import parse_schema_string
from ..domain.value_types import Address
from ..logging_setup import setup_logging

app = typer.Typer(help="streamscan: chunked log explorer for data-stream registries.")
console = Console()
err_console = Console(stderr=True)

def _settings(config: str) -> Settings:
    try:
        st = load_settings(config)
    except ConfigError as e:
        err_console.print(f"[red]{e}[/]")
        raise typer.Exit(2)
    setup_logging(st.log_level, console=err_console)
    return st

def _fmt_time(r: EnrichedRecord) -> str:
    t = datetime.fromtimestamp(r.timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
    return f"~{t}" if r.timestamp_estimated else t

def _records_table(records: List[EnrichedRecord], title: str, with_publishers: bool) -> Table:
    table = Table(title=title, expand=True)
    table.add_column("event", style="bold")
    table.add_column("tx", overflow="fold")
    table.add_column("block", justify="right")
    table.add_column("time (UTC)")
    if with_publishers:
        table.add_column("publisher", overflow="fold")
    for r in records:
        row = [r.name, r.tx_hash, f"{r.block_number:,}", _fmt_time(r)]
        if with_publishers:
            row.append(r.publisher or "")
        table.add_row(*row)
    return table

def _fmt_value(v) -> str:
    if isinstance(v, (list, tuple)):
        return "[" + ", ".join(_fmt_value(x) for x in v) + "]"
    return str(v)

def _details_table(records: List[EnrichedRecord]) -> Table:
    """Decoded arguments per record; raw logs show their topics and data instead."""
    table = Table(title="details", expand=True, show_lines=True)
    table.add_column("event", style="bold")
    table.add_column("tx / log", overflow="fold")
    table.add_column("fields", overflow="fold")
    for r in records:
        raw = r.decoded.raw
        if r.decoded.is_known:
            lines = [f"{k}: {_fmt_value(v)}" for k, v in r.decoded.args.items()] or ["(no arguments)"]
        else:
            lines = [f"topic{i}: {t}" for i, t in enumerate(raw.topics)] + [f"data: {raw.data_hex}"]
            lines.append(f"reason: {r.decoded.kind.reason}")
        table.add_row(r.name, f"{raw.tx_hash} #{raw.log_index}", "\n".join(lines))
    return table

def _print_scan(res: ScanResult, limit: int, search: str, with_publishers: bool, details: bool = False) -> None:
    shown = filter_records(res.records, search)
    console.print(_records_table(shown[:limit], f"blocks {res.window.start:,}-{res.window.end:,}", with_publishers))
    if details:
        console.print(_details_table(shown[:limit]))
    console.print(
        f"[bold]summary[/]: records={res.record_count}  "
        f"publishers={res.publisher_count if with_publishers else '-'}  "
        f"shown={min(limit, len(shown))}/{len(shown)}"
    )
    if res.skipped_chunks:
        console.print(f"[yellow]skipped {len(res.skipped_chunks)} chunk(s)[/]: "
                      + ", ".join(str(r) for r in list(res.skipped_chunks)[:5]))
    if res.unresolved_blocks or res.unresolved_senders:
        console.print(f"[yellow]unresolved[/]: blocks={res.unresolved_blocks} senders={res.unresolved_senders} "
                      "(times marked ~ are local clock)")

def _print_schemas(listing: SchemaListing) -> None:
    table = Table(title="schemas", expand=True)
    for col in ("name", "schema id", "fields", "usage", "publisher", "block"):
        table.add_column(col, overflow="fold")
    for s in listing.records:
        table.add_row(
            s.name, s.schema_id, str(len(parse_schema_string(s.schema_string))), str(s.usage_count),
            s.publisher or "unknown",
            f"{s.registered_at_block:,}" if s.registered_at_block is not None else "unknown",
        )
    console.print(table)
    console.print(f"[bold]summary[/]: schemas={listing.schema_count}  publishers={listing.publisher_count}"
                  + ("" if listing.indexed else "  [yellow](registration index unavailable)[/]"))

@app.command("scan")
def scan_cmd(
    address: str = typer.Argument(..., help="Emitter contract address"),
    config: str = typer.Option("config.yaml", help="YAML settings file"),
    lookback: Optional[int] = typer.Option(None, min=0, help="Blocks to look back from the head"),
    chunk_width: Optional[int] = typer.Option(None, min=1, help="Max block span per eth_getLogs"),
    event: Optional[List[str]] = typer.Option(None, "--event", help="Known event name; repeat to OR"),
    publishers: bool = typer.Option(False, "--publishers/--no-publishers", help="Resolve transaction senders"),
    search: str = typer.Option("", help="Filter by event name or tx hash"),
    limit: int = typer.Option(50, min=0, help="Rows to print"),
    details: bool = typer.Option(False, "--details", help="Also print decoded arguments, or topics and data for raw logs"),
    out: str = typer.Option("", help="Optional Parquet path for the full result"),
):
    """Scan recent logs of ADDRESS and print them newest first."""
    st = _settings(config)
    try:
        topic0s = shapes_by_name(event) if event else None
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--event")

    async def main() -> ScanResult:
        async with open_context(st) as ctx:
            return await scan(ctx, Address(address), lookback_blocks=lookback, chunk_width=chunk_width,
                              topic0s=topic0s, with_publishers=publishers)

    try:
        res = asyncio.run(main())
    except FatalEnumerationError as e:
        err_console.print(f"[red]refresh failed[/]: {e}  (re-run to retry)")
        raise typer.Exit(1)
    _print_scan(res, limit, search, publishers, details)
    if out:
        console.print(f"wrote {write_records(out, res.records)}")

@app.command("schemas")
def schemas_cmd(
    address: Optional[str] = typer.Argument(None, help="Registry address (defaults to config)"),
    config: str = typer.Option("config.yaml", help="YAML settings file"),
    lookback: Optional[int] = typer.Option(None, min=0, help="Blocks scanned for registration logs"),
    index: bool = typer.Option(True, "--index/--no-index", help="Join registration logs"),
):
    """List every registered schema string with id, name and registration metadata."""
    st = _settings(config)
    target = Address(address or st.registry_address)

    async def main() -> SchemaListing:
        async with open_context(st) as ctx:
            return await list_schemas(ctx, target, build_index=index, lookback_blocks=lookback)

    try:
        listing = asyncio.run(main())
    except FatalEnumerationError as e:
        err_console.print(f"[red]refresh failed[/]: {e}  (re-run to retry)")
        raise typer.Exit(1)
    _print_schemas(listing)

@app.command("watch")
def watch_cmd(
    address: str = typer.Argument(..., help="Emitter contract address"),
    config: str = typer.Option("config.yaml", help="YAML settings file"),
    interval_ms: Optional[int] = typer.Option(None, min=100, help="Poll interval (ms)"),
    lookback: Optional[int] = typer.Option(None, min=0, help="Blocks to look back on each poll"),
    ticks: int = typer.Option(0, min=0, help="Stop after this many refreshes (0 = until Ctrl-C)"),
):
    """Poll ADDRESS and print records as they appear."""
    st = _settings(config)
    interval = interval_ms or st.scan.poll_interval_ms
    feed_size = st.scan.feed_size

    async def main() -> None:
        coordinator: RefreshCoordinator[ScanResult] = RefreshCoordinator("watch")
        feed: List[EnrichedRecord] = []
        seen: set = set()
        done = asyncio.Event()
        count = 0

        async with open_context(st) as ctx:
            async def tick() -> None:
                nonlocal feed, count
                outcome = await coordinator.refresh(
                    lambda: scan(ctx, Address(address), lookback_blocks=lookback))
                count += 1
                if outcome.applied and outcome.value is not None:
                    feed = aggregate(feed + outcome.value.records)[:feed_size]
                    fresh = [r for r in feed if r.key not in seen]
                    seen.update(r.key for r in fresh)
                    if fresh:
                        console.print(_records_table(fresh, f"{len(fresh)} new", False))
                elif outcome.error:
                    err_console.print(f"[red]refresh failed[/]: {outcome.error}  (showing previous results)")
                if ticks and count >= ticks:
                    done.set()

            scheduler = PollScheduler()
            handle = scheduler.start(interval, tick)
            try:
                await done.wait()
            finally:
                coordinator.close()
                await scheduler.aclose()
                console.print(f"stopped poll #{handle.id} after {count} refresh(es)")

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        console.print("stopped")

@app.command("events")
def events_cmd():
    """Show the known log shapes and their topic0."""
    table = Table(title="known events")
    table.add_column("event", style="bold")
    table.add_column("signature")
    table.add_column("topic0", overflow="fold")
    for shape in KNOWN_SHAPES.values():
        table.add_row(shape.name, shape.signature, shape.topic0)
    console.print(table)

if __name__ == "__main__":
    app()
