from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Hashable, Iterable, TypeVar

from ..domain.errors import NotFoundError, TransientFetchError
from ..domain.results import Folded, NotFound, Response, TransientError, fold_results
from ..domain.value_types import Address, TxHash
from ..ports.rpc import LedgerReader

log = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


async def _guarded(lookup: Callable[[K], Awaitable[Response[V]]], key: K) -> Response[V]:
    try:
        return await lookup(key)
    except TransientFetchError as e:
        return TransientError(str(key), str(e))
    except NotFoundError as e:
        return NotFound(str(key), str(e))


async def run_batched(
    keys: Iterable[K],
    lookup: Callable[[K], Awaitable[Response[V]]],
    batch_size: int,
) -> Folded[K, V]:
    """
    Look up each distinct key once. Keys go out in groups of `batch_size`,
    concurrently inside a group and one group after another, so no more than
    `batch_size` requests are outstanding at any time.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    distinct = list(dict.fromkeys(keys))
    pairs: list[tuple[K, Response[V]]] = []
    for i in range(0, len(distinct), batch_size):
        batch = distinct[i:i + batch_size]
        answers = await asyncio.gather(*(_guarded(lookup, k) for k in batch))
        pairs.extend(zip(batch, answers))
    return fold_results(pairs)


async def resolve_timestamps(reader: LedgerReader, block_numbers: Iterable[int], batch_size: int) -> dict[int, int]:
    folded = await run_batched(sorted(set(block_numbers)), reader.get_block_timestamp, batch_size)
    if folded.skipped:
        log.warning("no timestamp for %d block(s), e.g. %s", len(folded.skipped), next(iter(folded.skipped.items())))
    return folded.successes


async def resolve_senders(reader: LedgerReader, tx_hashes: Iterable[TxHash], batch_size: int) -> dict[TxHash, Address]:
    folded = await run_batched(sorted(set(tx_hashes)), reader.get_transaction_sender, batch_size)
    if folded.skipped:
        log.warning("no sender for %d transaction(s), e.g. %s", len(folded.skipped), next(iter(folded.skipped.items())))
    return folded.successes
