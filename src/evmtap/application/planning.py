from __future__ import annotations
from ..domain.models import BlockRange

BLOCKS_PER_DAY = 7_200  # 12s blocks

def plan_batches(start_block: int, end_block: int, step: int) -> list[BlockRange]:
    if step <= 0:
        raise ValueError(f"step must be positive, got {step}")
    out: list[BlockRange] = []
    b = start_block
    while b <= end_block:
        fb, tb = b, min(end_block, b + step - 1)
        out.append(BlockRange(fb, tb))
        b = tb + 1
    return out

def backfill_window(current_block: int, days: float) -> BlockRange:
    if days <= 0:
        raise ValueError(f"days must be positive, got {days}")
    return BlockRange(max(0, current_block - round(days * BLOCKS_PER_DAY)), current_block)
