# streamscan/ports/registry.py
from __future__ import annotations

from typing import Protocol
from ..domain.results import Response
from ..domain.value_types import Address, SchemaId


class SchemaRegistry(Protocol):
    """Port for the schema registry reads and the schema-id codec."""

    async def list_known_schema_strings(self, address: Address) -> Response[list[str]]:
        """Return every schema string known to the registry at `address`."""

    def compute_schema_id(self, schema_string: str) -> SchemaId:
        """Deterministic id of a schema string (pure)."""

    async def resolve_schema_name(self, address: Address, schema_id: SchemaId) -> Response[str]:
        """Return the human name registered for `schema_id`."""
