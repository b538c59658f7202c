import asyncio

import pytest

from streamscan.config import Settings
from streamscan.domain.decoding import KNOWN_SHAPES
from streamscan.domain.models import BlockRange, RawLogEntry
from streamscan.domain.results import NotFound, Ok, TransientError
from streamscan.domain.schema_fields import compute_schema_id
from streamscan.domain.value_types import Address, TxHash

REGISTRY = Address("0xc1d833a80469854a7450dd187224b2cee5ece264")
SHAPES = {s.name: s for s in KNOWN_SHAPES.values()}


def word(n: int) -> str:
    return "0x" + n.to_bytes(32, "big").hex()


def make_log(tx="0xabc", log_index=0, block=500, topics=None, data="0x", address=REGISTRY) -> RawLogEntry:
    if topics is None:
        topics = (SHAPES["DataSchemaRegistered"].topic0, word(block * 1000 + log_index))
    return RawLogEntry(
        address=address,
        topics=tuple(topics),
        data_hex=data,
        block_number=block,
        tx_hash=TxHash(tx),
        log_index=log_index,
    )


class FakeLedger:
    """In-memory LedgerReader; tracks calls and peak concurrency of lookups."""

    def __init__(self, logs=(), latest=10_000, *, failing_ranges=(), timestamps=None,
                 missing_blocks=(), senders=None, latest_fails=False):
        self.logs = list(logs)
        self.latest = latest
        self.failing_ranges = [BlockRange(a, b) for a, b in failing_ranges]
        self.timestamps = timestamps or {}
        self.missing_blocks = set(missing_blocks)
        self.senders = senders or {}
        self.latest_fails = latest_fails
        self.log_calls = []
        self.block_calls = []
        self.tx_calls = []
        self.in_flight = 0
        self.peak_in_flight = 0

    async def latest_block(self):
        if self.latest_fails:
            return TransientError("latest", "503 Service Unavailable")
        return Ok(self.latest)

    async def get_logs(self, address, from_block, to_block, topic0s=None):
        self.log_calls.append((from_block, to_block))
        for r in self.failing_ranges:
            if not (to_block < r.start or from_block > r.end):
                return TransientError(f"{from_block}-{to_block}", "timeout")
        return Ok([
            e for e in self.logs
            if from_block <= e.block_number <= to_block and (not topic0s or e.topic0 in topic0s)
        ])

    async def _lookup(self):
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        await asyncio.sleep(0)
        self.in_flight -= 1

    async def get_block_timestamp(self, block_number):
        self.block_calls.append(block_number)
        await self._lookup()
        if block_number in self.missing_blocks:
            return NotFound(str(block_number))
        return Ok(self.timestamps.get(block_number, block_number * 1000))

    async def get_transaction_sender(self, tx_hash):
        self.tx_calls.append(tx_hash)
        await self._lookup()
        if tx_hash not in self.senders:
            return NotFound(tx_hash)
        return Ok(self.senders[tx_hash])


class FakeRegistry:
    def __init__(self, schemas=(), names=None, *, list_fails=False, failing_names=()):
        self.schemas = list(schemas)
        self.names = names or {}
        self.list_fails = list_fails
        self.failing_names = set(failing_names)

    async def list_known_schema_strings(self, address):
        if self.list_fails:
            return TransientError("getAllSchemas", "execution reverted")
        return Ok(list(self.schemas))

    def compute_schema_id(self, schema_string):
        return compute_schema_id(schema_string)

    async def resolve_schema_name(self, address, schema_id):
        if schema_id in self.failing_names:
            return TransientError(schema_id, "timeout")
        name = self.names.get(schema_id)
        return Ok(name) if name else NotFound(schema_id)


@pytest.fixture
def settings():
    return Settings.model_validate({"scan": {"chunk_width": 1000, "lookback_blocks": 5000, "batch_size": 3}})


@pytest.fixture
def fake_ledger():
    return FakeLedger


@pytest.fixture
def fake_registry():
    return FakeRegistry


@pytest.fixture
def log_factory():
    return make_log


@pytest.fixture
def shape():
    return SHAPES.__getitem__


@pytest.fixture
def topic_word():
    return word


@pytest.fixture
def registry_address():
    return REGISTRY
