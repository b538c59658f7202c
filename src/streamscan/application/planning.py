from __future__ import annotations
from ..domain.models import BlockRange

def chunk(rng: BlockRange, max_width: int) -> list[BlockRange]:
    """
    Split `rng` into ascending, contiguous sub-ranges with `end - start <= max_width`.
    Boundaries sit at `rng.start + k * max_width`, so [1000,3500] by 1000 gives
    [1000,2000], [2001,3000], [3001,3500].
    """
    if max_width < 1:
        raise ValueError(f"max_width must be >= 1, got {max_width}")
    out: list[BlockRange] = []
    if rng.is_empty():
        return out
    b, k = rng.start, 1
    while b <= rng.end:
        tb = min(rng.end, rng.start + k * max_width)
        out.append(BlockRange(b, tb))
        b, k = tb + 1, k + 1
    return out

def lookback_window(latest: int, lookback_blocks: int) -> BlockRange:
    if lookback_blocks < 0:
        raise ValueError(f"lookback_blocks must be >= 0, got {lookback_blocks}")
    return BlockRange(max(0, latest - lookback_blocks), latest)
