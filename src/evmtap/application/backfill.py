from __future__ import annotations

import logging
import time
from typing import Callable

from ..domain.models import BackfillReport, BlockRange, IngestStats
from ..ports.rpc import RPCClient
from ..ports.storage import EventStore
from .context import IngestionContext
from .ingest import TOPIC_GROUPS, gather_or_cancel, ingest_logs
from .log_window import LogWindowFetcher
from .planning import backfill_window, plan_batches

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100

BatchCallback = Callable[[BlockRange, bool], None]
PlanCallback = Callable[[BlockRange, list[BlockRange]], None]


class BackfillJob:
    """
    Sweeps a historical block range in fixed-size batches, oldest first.

    Each batch fans out the three log queries plus one header fetch for the
    batch's last block, then decodes and writes in RPC order. A failing
    batch is logged, recorded in the report, and skipped.
    """

    def __init__(
        self,
        rpc: RPCClient,
        fetcher: LogWindowFetcher,
        store: EventStore,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        on_batch: BatchCallback | None = None,
        on_plan: PlanCallback | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.rpc = rpc
        self.fetcher = fetcher
        self.store = store
        self.batch_size = batch_size
        self.on_batch = on_batch
        self.on_plan = on_plan

    @classmethod
    def from_context(
        cls,
        ctx: IngestionContext,
        on_batch: BatchCallback | None = None,
        on_plan: PlanCallback | None = None,
    ) -> "BackfillJob":
        return cls(ctx.rpc, ctx.fetcher, ctx.store,
                   batch_size=ctx.settings.batch_size, on_batch=on_batch, on_plan=on_plan)

    async def run(self, days: float) -> BackfillReport:
        current = await self.rpc.block_number()
        window = backfill_window(current, days)
        logger.info("Starting backfill for %s days: blocks %d-%d", days, window.start, window.end)
        return await self.run_range(window)

    def plan(self, window: BlockRange) -> list[BlockRange]:
        return plan_batches(window.start, window.end, self.batch_size)

    async def run_range(self, window: BlockRange) -> BackfillReport:
        report = BackfillReport(start_block=window.start, end_block=window.end)
        t0 = time.monotonic()
        batches = self.plan(window)
        if self.on_plan is not None:
            self.on_plan(window, batches)
        for batch in batches:
            try:
                stats = await self._run_batch(batch)
            except Exception as e:
                report.batches_failed += 1
                report.failed_ranges.append(batch)
                logger.error("Error processing blocks %s: %s: %s", batch, type(e).__name__, e)
                logger.debug("batch %s traceback", batch, exc_info=True)
                ok = False
            else:
                report.batches_ok += 1
                report.blocks_processed += batch.span()
                report.logs_ingested += stats.logs
                report.events_written += stats.written
                logger.info("Processed blocks %s: %d logs", batch, stats.logs)
                ok = True
            if self.on_batch is not None:
                self.on_batch(batch, ok)

        logger.info(
            "Backfill complete: %d blocks, %d logs, %d failed batches in %.1fs",
            report.blocks_processed, report.logs_ingested, report.batches_failed, time.monotonic() - t0,
        )
        if report.failed_ranges:
            logger.warning("Failed ranges (re-run to fill): %s", ", ".join(str(r) for r in report.failed_ranges))
        return report

    async def _run_batch(self, batch: BlockRange) -> IngestStats:
        *groups, header = await gather_or_cancel(
            *(self.fetcher.fetch(batch.start, batch.end, topic0s=t) for t in TOPIC_GROUPS),
            self.rpc.get_block(batch.end),
        )
        logs = [log for g in groups for log in g]
        return await ingest_logs(self.store, logs, header.timestamp)
