from __future__ import annotations
import logging
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Iterable, Mapping, Sequence

from streamscan.adapters.registry_rpc import RpcSchemaRegistry
from streamscan.adapters.rpc_httpx import HttpxRPC
from streamscan.config import Settings
from streamscan.domain.decoding import KNOWN_SHAPES, SCHEMA_REGISTERED, STORE_EVENT, LogShape, decode, shapes_by_name
from streamscan.domain.errors import FatalEnumerationError
from streamscan.domain.models import EnrichedRecord, RegistrationEntry, ScanResult, SchemaListing, SchemaRecord
from streamscan.domain.results import Ok, failure_reason
from streamscan.domain.schema_fields import derive_schema_label
from streamscan.domain.value_types import Address, SchemaId, Topic0, UNKNOWN_PUBLISHER
from ..ports.registry import SchemaRegistry
from ..ports.rpc import LedgerReader
from .aggregation import aggregate, publisher_count
from .enrichment import enrich, now_ms
from .fetching import fetch_logs
from .planning import chunk, lookback_window
from .resolving import resolve_senders, resolve_timestamps, run_batched

log = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ScanContext:
    """Everything a refresh needs; built once per session and passed by reference."""
    settings: Settings
    reader: LedgerReader
    registry: SchemaRegistry
    clock: Callable[[], int] = now_ms
    shapes: Mapping[str, LogShape] = field(default_factory=lambda: KNOWN_SHAPES)


@asynccontextmanager
async def open_context(settings: Settings) -> AsyncIterator[ScanContext]:
    rpc = HttpxRPC(
        settings.rpc.url,
        timeout_s=settings.rpc.timeout,
        max_conn=settings.rpc.max_connections,
        max_retries=settings.rpc.max_retries,
        backoff_s=settings.rpc.backoff_s,
    )
    try:
        yield ScanContext(settings=settings, reader=rpc, registry=RpcSchemaRegistry(rpc))
    finally:
        await rpc.aclose()


async def scan(
    ctx: ScanContext,
    address: Address,
    *,
    lookback_blocks: int | None = None,
    chunk_width: int | None = None,
    topic0s: Sequence[Topic0] | None = None,
    with_publishers: bool = False,
) -> ScanResult:
    """
    One refresh: chunked getLogs over the recent window → timestamps (and
    senders) for the distinct keys → decode → enrich → dedup/sort.
    Only a failed latest-block lookup is fatal.
    """
    cfg = ctx.settings.scan
    lookback = cfg.lookback_blocks if lookback_blocks is None else lookback_blocks
    width = cfg.chunk_width if chunk_width is None else chunk_width

    latest = await ctx.reader.latest_block()
    if not isinstance(latest, Ok):
        raise FatalEnumerationError(f"could not read current block: {failure_reason(latest)}")

    window = lookback_window(latest.value, lookback)
    chunks = chunk(window, width)
    log.info("scanning %s over %s in %d chunk(s)", address, window, len(chunks))

    report = await fetch_logs(ctx.reader, address, chunks, topic0s)
    logs = report.logs

    blocks = {e.block_number for e in logs}
    times = await resolve_timestamps(ctx.reader, blocks, cfg.batch_size)
    senders = None
    unresolved_senders = 0
    if with_publishers:
        txs = {e.tx_hash for e in logs}
        senders = await resolve_senders(ctx.reader, txs, cfg.batch_size)
        unresolved_senders = len(txs) - len(senders)

    ts_now = ctx.clock()
    enriched = [enrich(decode(e, ctx.shapes), times, senders, now_ms=ts_now) for e in logs]
    records = aggregate(enriched)

    log.info("%d record(s) from %d log(s); %d/%d chunk(s) answered", len(records), len(logs), report.fetched, len(chunks))
    return ScanResult(
        window=window,
        records=records,
        record_count=len(records),
        publisher_count=publisher_count(records),
        skipped_chunks=dict(report.skipped),
        unresolved_blocks=len(blocks) - len(times),
        unresolved_senders=unresolved_senders,
    )


# ──────────────────────────────
# Schema listing
# ──────────────────────────────

@dataclass(slots=True)
class RegistrationIndex:
    registrations: dict[str, RegistrationEntry] = field(default_factory=dict)
    usage: Counter = field(default_factory=Counter)


def build_registration_index(records: Iterable[EnrichedRecord]) -> RegistrationIndex:
    idx = RegistrationIndex()
    # oldest first so the first registration of an id wins
    for r in sorted(records, key=lambda r: (r.block_number, r.log_index)):
        sid = r.decoded.args.get("schemaId")
        if not isinstance(sid, str):
            continue
        sid = sid.lower()
        if r.name == SCHEMA_REGISTERED and sid not in idx.registrations:
            publisher = r.publisher if r.publisher not in (None, UNKNOWN_PUBLISHER) else None
            idx.registrations[sid] = RegistrationEntry(r.block_number, r.tx_hash, publisher)
        elif r.name == STORE_EVENT:
            idx.usage[sid] += 1
    return idx


async def index_registry(ctx: ScanContext, address: Address, *, lookback_blocks: int | None = None) -> RegistrationIndex:
    res = await scan(
        ctx, address,
        lookback_blocks=lookback_blocks,
        topic0s=shapes_by_name([SCHEMA_REGISTERED, STORE_EVENT], ctx.shapes),
        with_publishers=True,
    )
    return build_registration_index(res.records)


def _listing_order(s: SchemaRecord) -> tuple[int, int, str]:
    return (0 if s.registered_at_block is not None else 1, -(s.registered_at_block or 0), s.name.lower())


async def list_schemas(
    ctx: ScanContext,
    address: Address,
    *,
    index: RegistrationIndex | None = None,
    build_index: bool = True,
    lookback_blocks: int | None = None,
) -> SchemaListing:
    """
    Every schema string the registry knows, with its id, name and, where the
    registration index has it, block/tx/publisher/usage. Only the enumeration
    call is fatal; a missing name or registration leaves fallbacks in place.
    """
    listed = await ctx.registry.list_known_schema_strings(address)
    if not isinstance(listed, Ok):
        raise FatalEnumerationError(f"could not list schemas: {failure_reason(listed)}")
    strings = list(dict.fromkeys(listed.value))

    indexed = index is not None
    if index is None and build_index:
        try:
            index = await index_registry(ctx, address, lookback_blocks=lookback_blocks)
            indexed = True
        except FatalEnumerationError as e:
            log.warning("registration index unavailable, listing without it: %s", e)
    index = index or RegistrationIndex()

    ids: dict[str, SchemaId] = {s: ctx.registry.compute_schema_id(s) for s in strings}

    async def _name(sid: SchemaId):
        return await ctx.registry.resolve_schema_name(address, sid)

    names = await run_batched(ids.values(), _name, ctx.settings.scan.batch_size)
    if names.skipped:
        log.warning("no name for %d schema(s); using derived labels", len(names.skipped))

    out: list[SchemaRecord] = []
    for s, sid in ids.items():
        reg = index.registrations.get(sid.lower())
        out.append(SchemaRecord(
            schema_string=s,
            schema_id=sid,
            name=names.successes.get(sid) or derive_schema_label(sid),
            registered_at_block=reg.block_number if reg else None,
            registered_at_tx=reg.tx_hash if reg else None,
            publisher=reg.publisher if reg else None,
            usage_count=index.usage.get(sid.lower(), 0),
        ))
    out.sort(key=_listing_order)
    return SchemaListing(
        records=out,
        schema_count=len(out),
        publisher_count=len({s.publisher for s in out if s.publisher}),
        indexed=indexed,
    )
