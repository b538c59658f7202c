from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Mapping, Union
from .value_types import Address, SchemaId, TxHash, RAW_LOG_NAME

@dataclass(slots=True, frozen=True)
class BlockRange:
    start: int
    end: int
    def span(self) -> int: return self.end - self.start + 1
    @property
    def width(self) -> int: return self.end - self.start
    def is_empty(self) -> bool: return self.start > self.end
    def __str__(self) -> str: return f"[{self.start},{self.end}]"

@dataclass(slots=True, frozen=True)
class RawLogEntry:
    address: Address
    topics: tuple[str, ...]            # lowercased with 0x
    data_hex: str                      # hex with 0x (or "0x")
    block_number: int
    tx_hash: TxHash
    log_index: int

    @property
    def key(self) -> tuple[str, int]:
        return (self.tx_hash, self.log_index)

    @property
    def topic0(self) -> str | None:
        return self.topics[0] if self.topics else None

@dataclass(slots=True, frozen=True)
class KnownEvent:
    name: str
    args: Mapping[str, Any]

@dataclass(slots=True, frozen=True)
class RawLog:
    reason: str

RecordKind = Union[KnownEvent, RawLog]

@dataclass(slots=True, frozen=True)
class DecodedRecord:
    kind: RecordKind
    raw: RawLogEntry

    @property
    def name(self) -> str:
        return self.kind.name if isinstance(self.kind, KnownEvent) else RAW_LOG_NAME

    @property
    def args(self) -> Mapping[str, Any]:
        return self.kind.args if isinstance(self.kind, KnownEvent) else {}

    @property
    def is_known(self) -> bool:
        return isinstance(self.kind, KnownEvent)

@dataclass(slots=True, frozen=True)
class EnrichedRecord:
    decoded: DecodedRecord
    timestamp_ms: int
    block_number: int
    timestamp_estimated: bool = False  # wall-clock fallback, not ledger time
    publisher: Address | None = None   # None when the view did not ask for publishers

    @property
    def key(self) -> tuple[str, int]:
        return self.decoded.raw.key

    @property
    def tx_hash(self) -> TxHash:
        return self.decoded.raw.tx_hash

    @property
    def log_index(self) -> int:
        return self.decoded.raw.log_index

    @property
    def name(self) -> str:
        return self.decoded.name

@dataclass(slots=True, frozen=True)
class RegistrationEntry:
    block_number: int
    tx_hash: TxHash
    publisher: Address | None

@dataclass(slots=True, frozen=True)
class SchemaRecord:
    schema_string: str
    schema_id: SchemaId
    name: str
    registered_at_block: int | None = None
    registered_at_tx: TxHash | None = None
    publisher: Address | None = None
    usage_count: int = 0

@dataclass(slots=True, frozen=True)
class ScanResult:
    window: BlockRange
    records: list[EnrichedRecord]
    record_count: int
    publisher_count: int
    skipped_chunks: dict[BlockRange, str] = field(default_factory=dict)
    unresolved_blocks: int = 0
    unresolved_senders: int = 0

@dataclass(slots=True, frozen=True)
class SchemaListing:
    records: list[SchemaRecord]
    schema_count: int
    publisher_count: int
    indexed: bool
