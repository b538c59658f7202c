# streamscan/ports/rpc.py
from __future__ import annotations

from typing import Protocol, Sequence
from ..domain.models import RawLogEntry
from ..domain.results import Response
from ..domain.value_types import Address, Topic0, TxHash


class LedgerReader(Protocol):
    """Port defining the read-only JSON-RPC calls the scan pipeline needs.

    Every method answers with a tagged response instead of raising for
    provider-side failures.
    """

    async def latest_block(self) -> Response[int]:
        """Return the latest block number."""

    async def get_logs(
        self,
        address: Address,
        from_block: int,
        to_block: int,
        topic0s: Sequence[Topic0] | None = None,
    ) -> Response[list[RawLogEntry]]:
        """Return normalized, typed logs for [from_block, to_block] inclusive."""

    async def get_block_timestamp(self, block_number: int) -> Response[int]:
        """Return the block's timestamp in milliseconds."""

    async def get_transaction_sender(self, tx_hash: TxHash) -> Response[Address]:
        """Return the checksummed `from` address of a transaction."""
