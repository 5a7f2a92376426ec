from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Sequence

from ..domain.decoding import POOL_CREATED_TOPICS, SWAP_TOPICS, TRANSFER_TOPICS, decode_with_issues
from ..domain.models import DecodedEvent, IngestStats, RawLog, Unrecognized
from ..ports.storage import EventStore
from .log_window import LogWindowFetcher

logger = logging.getLogger(__name__)

# one getLogs filter per event family: transfers, pool creations, swaps
TOPIC_GROUPS = (TRANSFER_TOPICS, POOL_CREATED_TOPICS, SWAP_TOPICS)


async def gather_or_cancel(*aws: Awaitable[Any]) -> list[Any]:
    """
    `asyncio.gather` whose first failure cancels the remaining awaitables.

    Returns only once every task has finished, so nothing from a failed
    fan-out keeps running into the next batch or block.
    """
    tasks = [asyncio.ensure_future(a) for a in aws]
    try:
        return await asyncio.gather(*tasks)
    finally:
        for t in tasks:
            if not t.done():
                t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


async def fetch_tracked_logs(fetcher: LogWindowFetcher, from_block: int, to_block: int) -> list[RawLog]:
    """Run the three topic-filtered queries concurrently; results keep group order."""
    groups = await gather_or_cancel(*(
        fetcher.fetch(from_block, to_block, topic0s=t) for t in TOPIC_GROUPS
    ))
    return [log for g in groups for log in g]


async def ingest_logs(store: EventStore, logs: Sequence[RawLog], block_timestamp: int) -> IngestStats:
    """
    Decode logs in the given order and persist them as one write.

    A log carrying its own `blockTimestamp` uses it; others fall back to
    `block_timestamp`. Decoder issues are reported as warnings.
    """
    stats = IngestStats(logs=len(logs))
    events: list[DecodedEvent] = []
    for log in logs:
        ts = log.block_timestamp if log.block_timestamp is not None else block_timestamp
        ev, issues = decode_with_issues(log, ts)
        for issue in issues:
            logger.warning("decode issue in block %d: %s", log.block_number, issue)
        stats.issues += len(issues)
        if isinstance(ev, Unrecognized):
            stats.unrecognized += 1
            logger.debug("skipping unrecognized log %s:%d topic0=%s", ev.tx_hash, ev.log_index, ev.topic0)
            continue
        events.append(ev)
    stats.written = await store.write_all(events)
    return stats
