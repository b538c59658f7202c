from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from eth_abi import decode as abi_decode
from eth_utils import keccak, to_checksum_address

from streamscan.domain.models import DecodedRecord, KnownEvent, RawLog, RawLogEntry
from streamscan.domain.value_types import Topic0


# Events emitted by the data-streams registry contract
REGISTRY_EVENTS: tuple[str, ...] = (
    "event DataSchemaRegistered(bytes32 indexed schemaId)",
    "event ESStoreEvent(bytes32 indexed schemaId, bytes32 indexed dataId)",
    "event EmitterUpdated(bytes32 indexed eventTopic, address indexed emitter, bool isEmitter)",
    "event EventSchemaRegistered(bytes32 indexed eventTopic, string id)",
    "event IdentityCreated(address indexed wallet)",
    "event IdentityDeleted(address indexed wallet)",
    "event IsEventEmissionOpen(bytes32 indexed eventTopic, bool isOpen)",
    "event OwnershipTransferred(address indexed previousOwner, address indexed newOwner)",
    "event RoleGranted(address indexed wallet, uint8 indexed role)",
    "event RoleRevoked(address indexed wallet, uint8 indexed role)",
)

SCHEMA_REGISTERED = "DataSchemaRegistered"
STORE_EVENT = "ESStoreEvent"


# ---------- shapes --------------------------------------------------------------

@dataclass(slots=True, frozen=True)
class LogParam:
    type: str
    name: str
    indexed: bool

    @property
    def is_dynamic(self) -> bool:
        return self.type in ("string", "bytes") or self.type.endswith("]")


@dataclass(slots=True, frozen=True)
class LogShape:
    name: str
    params: tuple[LogParam, ...]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(p.type for p in self.params)})"

    @property
    def topic0(self) -> Topic0:
        return Topic0("0x" + keccak(text=self.signature).hex())

    @property
    def indexed(self) -> tuple[LogParam, ...]:
        return tuple(p for p in self.params if p.indexed)

    @property
    def unindexed(self) -> tuple[LogParam, ...]:
        return tuple(p for p in self.params if not p.indexed)


_EVENT_RE = re.compile(r"^\s*(?:event\s+)?([A-Za-z_]\w*)\s*\((.*)\)\s*;?\s*$")

def parse_event_signature(text: str) -> LogShape:
    """``event Name(type [indexed] name, ...)`` → LogShape."""
    m = _EVENT_RE.match(text)
    if not m:
        raise ValueError(f"Not an event signature: {text!r}")
    name, body = m.group(1), m.group(2).strip()
    params: list[LogParam] = []
    if body:
        for i, part in enumerate(body.split(",")):
            tokens = part.split()
            if not tokens:
                raise ValueError(f"Empty parameter in {text!r}")
            indexed = "indexed" in tokens[1:]
            rest = [t for t in tokens[1:] if t != "indexed"]
            params.append(LogParam(type=tokens[0], name=rest[0] if rest else f"arg{i}", indexed=indexed))
    return LogShape(name=name, params=tuple(params))

def build_shape_table(signatures: Iterable[str]) -> dict[str, LogShape]:
    return {s.topic0: s for s in (parse_event_signature(t) for t in signatures)}

KNOWN_SHAPES: Mapping[str, LogShape] = build_shape_table(REGISTRY_EVENTS)

def shapes_by_name(names: Iterable[str], shapes: Mapping[str, LogShape] = KNOWN_SHAPES) -> list[Topic0]:
    """topic0 filter for the given event names; unknown names raise ValueError."""
    by_name = {s.name.lower(): s for s in shapes.values()}
    out: list[Topic0] = []
    for n in names:
        shape = by_name.get(n.lower())
        if shape is None:
            raise ValueError(f"Unknown event name: {n}")
        out.append(shape.topic0)
    return out


# ---------- value helpers -------------------------------------------------------

def _hexstr_to_bytes(s: str) -> bytes:
    h = s[2:] if s[:2].lower() == "0x" else s
    if len(h) % 2: h = "0" + h
    return bytes.fromhex(h) if h else b""

def _normalize(typ: str, value: Any) -> Any:
    if typ.endswith("[]"):
        return [_normalize(typ[:-2], v) for v in value]
    if typ == "address":
        return to_checksum_address(value)
    if typ.startswith("bytes"):
        return "0x" + bytes(value).hex()
    return value


# ---------- public API ----------------------------------------------------------

def decode(entry: RawLogEntry, shapes: Mapping[str, LogShape] = KNOWN_SHAPES) -> DecodedRecord:
    """
    Match ``entry`` against the shape table. Anything that does not match, or
    fails to decode, comes back as a ``RawLog`` carrying the untouched entry.
    """
    t0 = entry.topic0
    if t0 is None:
        return DecodedRecord(kind=RawLog("no topics"), raw=entry)
    shape = shapes.get(t0.lower())
    if shape is None:
        return DecodedRecord(kind=RawLog("unknown topic0"), raw=entry)

    indexed = shape.indexed
    if len(entry.topics) - 1 != len(indexed):
        return DecodedRecord(
            kind=RawLog(f"{shape.name}: expected {len(indexed)} indexed topics, got {len(entry.topics) - 1}"),
            raw=entry,
        )

    try:
        args: dict[str, Any] = {}
        for p, topic in zip(indexed, entry.topics[1:]):
            if p.is_dynamic:
                # only the keccak of the value is stored in the topic
                args[p.name] = topic.lower()
            else:
                args[p.name] = _normalize(p.type, abi_decode([p.type], _hexstr_to_bytes(topic))[0])

        unindexed = shape.unindexed
        if unindexed:
            values = abi_decode([p.type for p in unindexed], _hexstr_to_bytes(entry.data_hex))
            for p, v in zip(unindexed, values):
                args[p.name] = _normalize(p.type, v)
    except Exception as e:
        return DecodedRecord(kind=RawLog(f"{shape.name}: {type(e).__name__}: {e}"), raw=entry)

    # keep declaration order
    ordered = {p.name: args[p.name] for p in shape.params}
    return DecodedRecord(kind=KnownEvent(name=shape.name, args=ordered), raw=entry)
