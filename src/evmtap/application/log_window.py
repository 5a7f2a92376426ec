from __future__ import annotations

import logging
from typing import Sequence

from ..domain.errors import RangeTooLargeError, RpcError
from ..domain.models import RawLog
from ..domain.value_types import BlockTag, Topic0
from ..ports.rpc import RPCClient

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SPAN = 2_000
MAX_RANGE = 35_000      # ~5 days of 12s blocks
MIN_SPAN = 10


class LogWindowFetcher:
    """
    Retrieves every log in an inclusive block range with provider-safe requests.

    The range is walked in consecutive windows of `chunk_span` blocks, one
    `eth_getLogs` per window. When the provider rejects a window as too large
    or too slow, the window is halved and retried from the same start block,
    down to `min_span`. After a success the next window is full-size again.
    """

    def __init__(
        self,
        rpc: RPCClient,
        *,
        chunk_span: int = DEFAULT_CHUNK_SPAN,
        max_range: int = MAX_RANGE,
        min_span: int = MIN_SPAN,
    ) -> None:
        if chunk_span < 1 or min_span < 1:
            raise ValueError("chunk_span and min_span must be >= 1")
        self.rpc = rpc
        self.chunk_span = chunk_span
        self.max_range = max_range
        self.min_span = min_span

    async def fetch(
        self,
        from_block: int,
        to_block: BlockTag,
        address: str | None = None,
        topic0s: Sequence[Topic0] | None = None,
    ) -> list[RawLog]:
        end = await self.rpc.block_number() if to_block == "latest" else int(to_block)
        if from_block < 0 or from_block > end:
            raise ValueError(f"from_block ({from_block}) must be within 0..{end}")
        if end - from_block + 1 > self.max_range:
            raise RangeTooLargeError(from_block, end, self.max_range)

        out: list[RawLog] = []
        a = from_block
        span = self.chunk_span
        while a <= end:
            b = min(end, a + span - 1)
            try:
                logs = await self.rpc.get_logs(a, b, address, topic0s)
            except RpcError as e:
                if not e.is_overload:
                    raise
                shrunk = (b - a + 1) // 2
                if shrunk < self.min_span:
                    logger.error("getLogs %d-%d still overloaded at span %d; giving up: %s", a, b, b - a + 1, e)
                    raise
                logger.warning("getLogs %d-%d overloaded (%s); shrinking span %d -> %d", a, b, e, b - a + 1, shrunk)
                span = shrunk
                continue
            out.extend(logs)
            a = b + 1
            span = self.chunk_span
        return out
