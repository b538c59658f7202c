from __future__ import annotations
import json, os, pyarrow as pa, pyarrow.parquet as pq
from typing import Any, Iterable

from ..domain.models import EnrichedRecord

RECORD_SCHEMA = pa.schema([
    pa.field("block_number",        pa.int64()),
    pa.field("timestamp_ms",        pa.int64()),
    pa.field("timestamp_estimated", pa.bool_()),
    pa.field("tx_hash",             pa.large_string()),
    pa.field("log_index",           pa.int32()),
    pa.field("address",             pa.large_string()),
    pa.field("event",               pa.large_string()),
    pa.field("args_json",           pa.large_string()),
    pa.field("publisher",           pa.large_string()),
    pa.field("topics",              pa.list_(pa.large_string())),
    pa.field("data_hex",            pa.large_string()),
])

COLS = [f.name for f in RECORD_SCHEMA]

def _json_default(v: Any) -> Any:
    if isinstance(v, (bytes, bytearray)): return "0x" + bytes(v).hex()
    return str(v)

def _args_json(args: Any) -> str:
    # uint256 values do not fit JSON numbers on most readers
    safe ={k: (str(v) if isinstance(v, int) and not isinstance(v, bool) else v) for k, v in dict(args).items()}
    return json.dumps(safe, default=_json_default, separators=(",", ":"))

def records_to_table(records: Iterable[EnrichedRecord]) -> pa.Table:
    recs = list(records)
    cols: dict[str, list] = {name: [] for name in COLS}
    for r in recs:
        raw = r.decoded.raw
        cols["block_number"].append(r.block_number)
        cols["timestamp_ms"].append(r.timestamp_ms)
        cols["timestamp_estimated"].append(r.timestamp_estimated)
        cols["tx_hash"].append(raw.tx_hash)
        cols["log_index"].append(raw.log_index)
        cols["address"].append(raw.address)
        cols["event"].append(r.name)
        cols["args_json"].append(_args_json(r.decoded.args))
        cols["publisher"].append(r.publisher)
        cols["topics"].append(list(raw.topics))
        cols["data_hex"].append(raw.data_hex)
    arrays = {k: pa.array(v, type=RECORD_SCHEMA.field(k).type) for k, v in cols.items()}
    table = pa.Table.from_pydict(arrays, schema=RECORD_SCHEMA)
    return table.sort_by([("timestamp_ms", "descending"),
                          ("block_number", "descending"),
                          ("log_index", "descending"),
                          ("tx_hash", "descending")])

def write_records(path: str, records: Iterable[EnrichedRecord], codec: str = "zstd") -> str:
    """Snapshot one refresh to Parquet (tmp file + replace)."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp = path + ".tmp"
    pq.write_table(records_to_table(records), tmp, compression=codec)
    os.replace(tmp, path)
    return path
