from __future__ import annotations
from typing import Any, Sequence
from eth_abi import decode as abi_decode, encode as abi_encode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak
from ..domain.results import NotFound, Ok, Response, TransientError
from ..domain.schema_fields import compute_schema_id
from ..domain.value_types import Address, SchemaId
from ..ports.registry import SchemaRegistry
from .rpc_httpx import HttpxRPC

def _selector(signature: str) -> str: return "0x" + keccak(text=signature)[:4].hex()

GET_ALL_SCHEMAS   = _selector("getAllSchemas()")
SCHEMA_ID_TO_NAME = _selector("schemaIdToSchemaName(bytes32)")

def _decode_return(types: Sequence[str], raw_hex: str) -> tuple[Any, ...]:
    h = raw_hex[2:] if raw_hex[:2].lower() == "0x" else raw_hex
    return abi_decode(list(types), bytes.fromhex(h))

class RpcSchemaRegistry(SchemaRegistry):
    """Schema registry reads via eth_call against the streams registry contract."""

    def __init__(self, rpc: HttpxRPC) -> None:
        self.rpc = rpc

    async def _call(self, key: str, to: Address, data: str, types: Sequence[str]) -> Response[tuple[Any, ...]]:
        resp = await self.rpc.eth_call(to, data)
        if not isinstance(resp, Ok):
            return resp
        if resp.value in ("", "0x"):
            return NotFound(key, "empty eth_call return")
        try:
            return Ok(_decode_return(types, resp.value))
        except (DecodingError, ValueError) as e:
            return TransientError(key, f"undecodable eth_call return: {type(e).__name__}: {e}")

    async def list_known_schema_strings(self, address: Address) -> Response[list[str]]:
        resp = await self._call("getAllSchemas", address, GET_ALL_SCHEMAS, ["string[]"])
        if not isinstance(resp, Ok):
            return resp
        return Ok([str(s) for s in resp.value[0]])

    def compute_schema_id(self, schema_string: str) -> SchemaId:
        return compute_schema_id(schema_string)

    async def resolve_schema_name(self, address: Address, schema_id: SchemaId) -> Response[str]:
        sid = bytes.fromhex(schema_id[2:] if schema_id[:2].lower() == "0x" else schema_id)
        data = SCHEMA_ID_TO_NAME + abi_encode(["bytes32"], [sid]).hex()
        resp = await self._call(schema_id, address, data, ["string"])
        if not isinstance(resp, Ok):
            return resp
        name = str(resp.value[0])
        return Ok(name) if name else NotFound(schema_id, "no name registered")
