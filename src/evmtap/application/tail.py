from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass

from ..domain.models import BlockHeader, IngestStats
from ..ports.rpc import HeadSource
from ..ports.storage import EventStore
from .context import IngestionContext
from .ingest import fetch_tracked_logs, ingest_logs
from .log_window import LogWindowFetcher

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TailReport:
    blocks_ok: int = 0
    blocks_failed: int = 0
    logs_ingested: int = 0
    last_block: int | None = None


class TailJob:
    def __init__(self, heads: HeadSource, fetcher: LogWindowFetcher, store: EventStore) -> None:
        self.heads = heads
        self.fetcher = fetcher
        self.store = store

    @classmethod
    def from_context(cls, ctx: IngestionContext, heads: HeadSource) -> "TailJob":
        return cls(heads, ctx.fetcher, ctx.store)

    async def run(self, stop: asyncio.Event) -> TailReport:
        """Ingest each new block as it arrives until `stop` is set."""
        report = TailReport()
        logger.info("Starting tail mode...")
        async with aclosing(self.heads.heads(stop)) as headers:
            async for header in headers:
                try:
                    stats = await self.ingest_block(header)
                except Exception as e:
                    # one bad block must not end the subscription
                    report.blocks_failed += 1
                    logger.error("Error processing block %d: %s: %s", header.number, type(e).__name__, e)
                    logger.debug("block %d traceback", header.number, exc_info=True)
                else:
                    report.blocks_ok += 1
                    report.logs_ingested += stats.logs
                    report.last_block = header.number
                    logger.info("Processed block %d: %d logs", header.number, stats.logs)
                if stop.is_set():
                    break
        logger.info("Stopping tail mode (%d blocks ingested, %d failed)", report.blocks_ok, report.blocks_failed)
        return report

    async def ingest_block(self, header: BlockHeader) -> IngestStats:
        logs = await fetch_tracked_logs(self.fetcher, header.number, header.number)
        return await ingest_logs(self.store, logs, header.timestamp)
