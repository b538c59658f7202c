from __future__ import annotations
import time
from typing import Mapping
from ..domain.models import DecodedRecord, EnrichedRecord
from ..domain.value_types import Address, TxHash, UNKNOWN_PUBLISHER

def now_ms() -> int: return int(time.time() * 1000)

def enrich(
    decoded: DecodedRecord,
    times: Mapping[int, int],
    senders: Mapping[TxHash, Address] | None = None,
    *,
    now_ms: int,
) -> EnrichedRecord:
    """Attach timestamp (wall-clock fallback) and, if `senders` is given, the publisher."""
    bn = decoded.raw.block_number
    ts = times.get(bn)
    publisher = None if senders is None else senders.get(decoded.raw.tx_hash, UNKNOWN_PUBLISHER)
    return EnrichedRecord(
        decoded=decoded,
        timestamp_ms=ts if ts is not None else now_ms,
        block_number=bn,
        timestamp_estimated=ts is None,
        publisher=publisher,
    )
