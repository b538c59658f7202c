from __future__ import annotations
import asyncio, httpx, logging
from typing import Any, Callable, Sequence, TypeVar
from eth_utils import to_checksum_address
from ..domain.errors import NotFoundError, TransientFetchError
from ..domain.models import RawLogEntry
from ..domain.results import NotFound, Ok, Response, TransientError
from ..domain.value_types import Address, Topic0, TxHash
from ..ports.rpc import LedgerReader

log = logging.getLogger(__name__)

T = TypeVar("T")

def _to_hex_block(n: int) -> str: return hex(int(n))
def _is_topic_hash(x: str) -> bool: return isinstance(x, str) and x.startswith("0x") and len(x)==66
def _normalize_topic0_list(t0s: Sequence[Topic0]) -> list[str]:
    out: list[str] = []
    for t in t0s:
        s = str(t).strip().lower()
        out.append(s)
    return out

def _build_topics_param(topic0s: Sequence[Topic0]) -> list[list[str]]:
    t0s = _normalize_topic0_list(topic0s)
    if not all(_is_topic_hash(x) for x in t0s):
        raise ValueError(f"Invalid topic0(s): {t0s}")
    return [t0s]

def _hex_int(v: Any) -> int:
    if isinstance(v, int): return v
    s = str(v).lower()
    return int(s, 16) if s.startswith("0x") else int(s)

def parse_log(rl: dict[str, Any]) -> RawLogEntry:
    return RawLogEntry(
        address=Address(rl["address"].lower()),
        topics=tuple(str(t).lower() for t in rl.get("topics") or ()),
        data_hex=str(rl.get("data") or "0x"),
        block_number=_hex_int(rl["blockNumber"]),
        tx_hash=TxHash(rl["transactionHash"].lower()),
        log_index=_hex_int(rl["logIndex"]),
    )

class HttpxRPC(LedgerReader):
    def __init__(
        self,
        rpc_url: str,
        timeout_s: int = 20,
        max_conn: int = 64,
        *,
        max_retries: int = 3,
        backoff_s: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.max_retries = max_retries
        self.backoff_s = backoff_s
        self._ids = 0
        self.client = httpx.AsyncClient(
            http2=True,
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=max_conn, max_keepalive_connections=max(1, max_conn//2)),
            transport=transport,
        )

    async def request(self, method: str, params: list[Any]) -> Any:
        """POST one JSON-RPC call and return its `result`; raises TransientFetchError."""
        self._ids += 1
        payload = {"jsonrpc":"2.0","id":self._ids,"method":method,"params":params}
        # retry on 429 with backoff, honouring Retry-After
        for attempt in range(self.max_retries + 1):
            try:
                r = await self.client.post(self.rpc_url, json=payload)
            except httpx.TransportError as e:
                raise TransientFetchError(f"{method}: {type(e).__name__}: {e}") from e
            if r.status_code == 429:
                if attempt >= self.max_retries:
                    break
                ra = r.headers.get("Retry-After")
                delay = float(ra) if ra and ra.isdigit() else self.backoff_s * (2**attempt)
                log.debug("%s rate limited, retry %d in %.2fs", method, attempt + 1, delay)
                await asyncio.sleep(delay); continue
            try:
                r.raise_for_status()
                data = r.json()
            except (httpx.HTTPStatusError, ValueError) as e:
                raise TransientFetchError(f"{method}: {e}") from e
            if not isinstance(data, dict):
                raise TransientFetchError(f"{method}: unexpected response body: {str(data)[:80]}")
            if "error" in data:
                err = data["error"]
                if isinstance(err, dict):
                    raise TransientFetchError(f"{method} RPC error code={err.get('code')} message={err.get('message')}")
                raise TransientFetchError(f"{method} RPC error: {err}")
            return data.get("result")
        raise TransientFetchError(f"{method}: rate limited, retries exhausted")

    async def _respond(self, key: str, method: str, params: list[Any], parse: Callable[[Any], T]) -> Response[T]:
        try:
            result = await self.request(method, params)
            if result is None:
                raise NotFoundError(f"{method} returned null")
            return Ok(parse(result))
        except TransientFetchError as e:
            return TransientError(key, str(e))
        except NotFoundError as e:
            return NotFound(key, str(e))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            return TransientError(key, f"{method}: malformed response: {e!r}")

    async def latest_block(self) -> Response[int]:
        return await self._respond("latest", "eth_blockNumber", [], _hex_int)

    async def get_logs(
        self,
        address: Address,
        from_block: int,
        to_block: int,
        topic0s: Sequence[Topic0] | None = None,
    ) -> Response[list[RawLogEntry]]:
        flt: dict[str, Any] = {
            "address": str(address),
            "fromBlock": _to_hex_block(from_block),
            "toBlock": _to_hex_block(to_block),
        }
        if topic0s:
            flt["topics"] = _build_topics_param(topic0s)
        return await self._respond(
            f"{from_block}-{to_block}", "eth_getLogs", [flt],
            lambda res: [parse_log(rl) for rl in res],
        )

    async def get_block_timestamp(self, block_number: int) -> Response[int]:
        return await self._respond(
            str(block_number), "eth_getBlockByNumber", [_to_hex_block(block_number), False],
            lambda blk: _hex_int(blk["timestamp"]) * 1000,
        )

    async def get_transaction_sender(self, tx_hash: TxHash) -> Response[Address]:
        return await self._respond(
            tx_hash, "eth_getTransactionByHash", [tx_hash],
            lambda tx: Address(to_checksum_address(tx["from"])),
        )

    async def eth_call(self, to: Address, data: str, block: str = "latest") -> Response[str]:
        return await self._respond(f"call:{to}", "eth_call", [{"to": str(to), "data": data}, block], str)

    async def aclose(self) -> None:
        await self.client.aclose()
