from __future__ import annotations
from typing import NewType, Literal

Address  = NewType("Address", str)    # 0x-prefixed; checksummed once decoded
Topic0   = NewType("Topic0", str)     # 66-char 0x-hash, lowercase
TxHash   = NewType("TxHash", str)     # 66-char 0x-hash, lowercase
SchemaId = NewType("SchemaId", str)   # 66-char 0x-hash, lowercase

RefreshState = Literal["idle", "loading", "ready", "failed"]

UNKNOWN_PUBLISHER = Address("unknown")
RAW_LOG_NAME = "Raw Log"
