from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from ..domain.models import BlockRange, RawLogEntry
from ..domain.results import Response, fold_results
from ..domain.value_types import Address, Topic0
from ..ports.rpc import LedgerReader

log = logging.getLogger(__name__)


@dataclass(slots=True)
class FetchReport:
    logs: list[RawLogEntry] = field(default_factory=list)
    fetched: int = 0                                   # chunks that answered
    skipped: dict[BlockRange, str] = field(default_factory=dict)


async def fetch_logs(
    reader: LedgerReader,
    address: Address,
    chunks: Sequence[BlockRange],
    topic0s: Sequence[Topic0] | None = None,
) -> FetchReport:
    """
    Fetch each chunk in turn (never concurrently: the provider limits absolute
    request rate). A failed chunk counts as zero logs and the scan moves on.
    """
    pairs: list[tuple[BlockRange, Response[list[RawLogEntry]]]] = []
    for rng in chunks:
        resp = await reader.get_logs(address, rng.start, rng.end, topic0s)
        pairs.append((rng, resp))

    folded = fold_results(pairs)
    report = FetchReport(fetched=len(folded.successes), skipped=folded.skipped)
    for rng in chunks:
        report.logs.extend(folded.successes.get(rng, ()))
    for rng, reason in folded.skipped.items():
        log.warning("skipping chunk %s for %s: %s", rng, address, reason)
    return report
