from __future__ import annotations
from typing import Iterable
from ..domain.models import EnrichedRecord
from ..domain.value_types import UNKNOWN_PUBLISHER

def _order(r: EnrichedRecord) -> tuple[int, int, int, str]:
    return (r.timestamp_ms, r.block_number, r.log_index, r.tx_hash)

def aggregate(records: Iterable[EnrichedRecord]) -> list[EnrichedRecord]:
    """
    Dedup by (tx_hash, log_index), later occurrences replacing earlier ones,
    then newest first: timestamp, block, log index, tx hash, all descending.
    """
    by_key: dict[tuple[str, int], EnrichedRecord] = {}
    for r in records:
        by_key[r.key] = r
    return sorted(by_key.values(), key=_order, reverse=True)

def publisher_count(records: Iterable[EnrichedRecord]) -> int:
    return len({r.publisher for r in records if r.publisher is not None and r.publisher != UNKNOWN_PUBLISHER})

def filter_records(records: Iterable[EnrichedRecord], term: str) -> list[EnrichedRecord]:
    """Case-insensitive match on event name or tx hash; blank term keeps everything."""
    t = term.strip().lower()
    if not t:
        return list(records)
    return [r for r in records if t in r.name.lower() or t in r.tx_hash.lower()]
