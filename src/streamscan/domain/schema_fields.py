from __future__ import annotations
from dataclasses import dataclass
from typing import Literal

from eth_utils import keccak

from .value_types import SchemaId

FieldType = Literal["string", "uint64", "int32", "bool", "address", "bytes32"]
SUPPORTED_TYPES: tuple[str, ...] = ("string", "uint64", "int32", "bool", "address", "bytes32")

@dataclass(slots=True, frozen=True)
class SchemaField:
    type: FieldType
    name: str

def parse_schema_string(schema_string: str) -> list[SchemaField]:
    """"uint64 timestamp, string name" → fields; unsupported or malformed parts are dropped."""
    fields: list[SchemaField] = []
    for part in (p.strip() for p in (schema_string or "").split(",")):
        tokens = part.split()
        if len(tokens) >= 2 and tokens[0] in SUPPORTED_TYPES:
            fields.append(SchemaField(type=tokens[0], name=tokens[1]))  # type: ignore[arg-type]
    return fields

def compute_schema_id(schema_string: str) -> SchemaId:
    return SchemaId("0x" + keccak(text=schema_string).hex())

def derive_schema_label(schema_id: str) -> str:
    h = schema_id[2:] if schema_id[:2].lower() == "0x" else schema_id
    return f"schema_{h[:8].lower()}"
