import asyncio
from datetime import datetime, timezone

import pytest

from evmtap.adapters.rpc_httpx import HttpxRPC
from evmtap.application.backfill import BackfillJob
from evmtap.application.ingest import fetch_tracked_logs
from evmtap.application.log_window import LogWindowFetcher
from evmtap.application.planning import BLOCKS_PER_DAY, backfill_window, plan_batches
from evmtap.domain.decoding import TRANSFER_TOPICS, V2_PAIR_CREATED_T0, V3_POOL_CREATED_T0, V3_SWAP_T0
from evmtap.domain.errors import RpcError
from evmtap.domain.models import BlockRange

from fakes import FakeChain, ScriptedRPC, pad_address, raw_transfer, word

HEAD = 20_000
TOKEN = "0x" + "ab" * 20
ALICE = "0x" + "01" * 20
BOB = "0x" + "02" * 20


def make_job(chain, store, batch_size=100):
    rpc = HttpxRPC("http://node.test", transport=chain.transport())
    return BackfillJob(rpc, LogWindowFetcher(rpc), store, batch_size=batch_size), rpc


def test_plan_batches_cover_window():
    batches = plan_batches(12_800, 20_000, 100)
    assert batches[0] == BlockRange(12_800, 12_899)
    assert batches[-1] == BlockRange(20_000, 20_000)
    assert sum(b.span() for b in batches) == 7_201
    assert all(b.start == a.end + 1 for a, b in zip(batches, batches[1:]))


def test_backfill_window_uses_blocks_per_day():
    assert backfill_window(HEAD, 1) == BlockRange(HEAD - BLOCKS_PER_DAY, HEAD)
    assert backfill_window(HEAD, 0.5) == BlockRange(HEAD - 3_600, HEAD)
    assert backfill_window(100, 1) == BlockRange(0, 100)
    with pytest.raises(ValueError):
        backfill_window(HEAD, 0)


@pytest.mark.asyncio
async def test_one_day_backfill_inserts_every_transfer(store):
    start = HEAD - BLOCKS_PER_DAY
    blocks = list(range(start, HEAD + 1, 397)) + [HEAD]
    logs = [raw_transfer(b, TOKEN, ALICE, BOB, 10 + i, log_index=i) for i, b in enumerate(blocks)]
    chain = FakeChain(HEAD, logs)
    job, rpc = make_job(chain, store)

    report = await job.run(1)
    await rpc.aclose()

    assert report.start_block == start and report.end_block == HEAD
    assert report.batches_failed == 0
    assert report.blocks_processed == BLOCKS_PER_DAY + 1
    assert report.logs_ingested == len(blocks)
    assert await store.count("erc20_transfers") == len(blocks)
    rows = await store.query("SELECT block, value FROM erc20_transfers ORDER BY log_index")
    assert [r[0] for r in rows] == blocks
    assert [r[1] for r in rows] == [str(10 + i) for i in range(len(blocks))]


@pytest.mark.asyncio
async def test_rows_carry_block_time_not_wall_clock(store):
    # without blockTimestamp on the log, the batch's end-block time is used
    chain = FakeChain(1_000, [
        raw_transfer(950, TOKEN, ALICE, BOB, 1, log_index=0),
        raw_transfer(960, TOKEN, ALICE, BOB, 2, log_index=1, blockTimestamp=hex(1_700_000_000 + 12 * 960)),
    ])
    job, rpc = make_job(chain, store)

    await job.run_range(BlockRange(901, 1_000))
    await rpc.aclose()

    rows = await store.query("SELECT block, ts FROM erc20_transfers ORDER BY block")
    to_dt = lambda s: datetime.fromtimestamp(s, tz=timezone.utc).replace(tzinfo=None)
    assert rows == [(950, to_dt(chain.ts(1_000))), (960, to_dt(chain.ts(960)))]


@pytest.mark.asyncio
async def test_pools_and_swaps_are_ingested(store):
    pair = "0x" + "33" * 20
    pool_log = {
        "address": "0x" + "5c" * 20,
        "topics": [V2_PAIR_CREATED_T0, pad_address(ALICE), pad_address(BOB)],
        "data": "0x" + word(int(pair, 16)) + word(1),
        "blockNumber": hex(510), "transactionHash": "0x" + "11" * 32, "logIndex": "0x0",
    }
    swap_log = {
        "address": pair,
        "topics": [V3_SWAP_T0, pad_address(ALICE), pad_address(BOB)],
        "data": "0x" + word(-3, signed=True) + word(4, signed=True),
        "blockNumber": hex(520), "transactionHash": "0x" + "22" * 32, "logIndex": "0x1",
    }
    chain = FakeChain(600, [pool_log, pool_log | {"blockNumber": hex(530)}, swap_log])
    job, rpc = make_job(chain, store)

    report = await job.run_range(BlockRange(500, 599))
    await rpc.aclose()

    assert report.logs_ingested == 3
    assert await store.count("pools") == 1
    assert await store.query("SELECT amount0, amount1 FROM dex_events") == [("-3", "4")]


@pytest.mark.asyncio
async def test_forged_pool_event_does_not_sink_the_batch(store):
    forged = {
        "address": "0x" + "66" * 20,
        "topics": [V3_POOL_CREATED_T0, pad_address(ALICE), pad_address(BOB), "0x" + "ff" * 32],
        "data": "0x" + word(60) + word(int("77" * 20, 16)),
        "blockNumber": hex(150), "transactionHash": "0x" + "99" * 32, "logIndex": "0x0",
    }
    chain = FakeChain(199, [raw_transfer(120, TOKEN, ALICE, BOB, 5), forged])
    job, rpc = make_job(chain, store)

    report = await job.run_range(BlockRange(100, 199))
    await rpc.aclose()

    assert report.batches_failed == 0
    assert await store.count("erc20_transfers") == 1
    assert await store.query("SELECT dex, fee_tier FROM pools") == [("UniswapV3", 0)]


@pytest.mark.asyncio
async def test_failed_batch_is_skipped_and_reported(store):
    logs = [raw_transfer(b, TOKEN, ALICE, BOB, 1, log_index=i) for i, b in enumerate([105, 250, 399])]
    chain = FakeChain(399, logs, broken_blocks=frozenset({250}))
    job, rpc = make_job(chain, store)

    report = await job.run_range(BlockRange(100, 399))
    await rpc.aclose()

    assert report.batches_ok == 2
    assert report.batches_failed == 1
    assert report.failed_ranges == [BlockRange(200, 299)]
    assert report.blocks_processed == 200
    rows = await store.query("SELECT block FROM erc20_transfers ORDER BY block")
    assert [r[0] for r in rows] == [105, 399]


@pytest.mark.asyncio
async def test_batches_run_in_ascending_order(store):
    chain = FakeChain(1_000, [])
    seen = []
    rpc = HttpxRPC("http://node.test", transport=chain.transport())
    job = BackfillJob(rpc, LogWindowFetcher(rpc), store, batch_size=250,
                      on_batch=lambda batch, ok: seen.append((batch.start, batch.end, ok)))

    await job.run_range(BlockRange(0, 999))
    await rpc.aclose()

    assert seen == [(0, 249, True), (250, 499, True), (500, 749, True), (750, 999, True)]


@pytest.mark.asyncio
async def test_run_reports_plan_before_first_batch(store):
    chain = FakeChain(HEAD, [])
    events = []
    rpc = HttpxRPC("http://node.test", transport=chain.transport())
    job = BackfillJob(rpc, LogWindowFetcher(rpc), store, batch_size=1_000,
                      on_plan=lambda window, batches: events.append(("plan", window, len(batches))),
                      on_batch=lambda batch, ok: events.append(("batch", batch.start)))

    await job.run(0.5)
    await rpc.aclose()

    assert events[0] == ("plan", BlockRange(HEAD - 3_600, HEAD), 4)
    assert [e[1] for e in events[1:]] == [16_400, 17_400, 18_400, 19_400]


class StallingFetcher:
    """Transfer queries for `failing_start` raise at once; every other query stalls briefly."""

    def __init__(self, failing_start):
        self.failing_start = failing_start
        self.in_flight = set()
        self.overlaps = []
        self.cancelled = []

    async def fetch(self, from_block, to_block, address=None, topic0s=None):
        key = (from_block, topic0s)
        others = [k for k in self.in_flight if k[0] != from_block]
        if others:
            self.overlaps.append((key, others))
        self.in_flight.add(key)
        try:
            await asyncio.sleep(0)
            if from_block == self.failing_start and topic0s == TRANSFER_TOPICS:
                raise RpcError("internal error", code=-32000, method="eth_getLogs")
            await asyncio.sleep(0.05)
            return []
        except asyncio.CancelledError:
            self.cancelled.append(key)
            raise
        finally:
            self.in_flight.discard(key)


@pytest.mark.asyncio
async def test_failed_batch_cancels_its_other_queries_before_next_batch(store):
    fetcher = StallingFetcher(failing_start=0)
    job = BackfillJob(ScriptedRPC(), fetcher, store, batch_size=100)

    report = await job.run_range(BlockRange(0, 199))

    assert report.failed_ranges == [BlockRange(0, 99)]
    assert report.batches_ok == 1
    assert fetcher.overlaps == []
    assert sorted(start for start, _ in fetcher.cancelled) == [0, 0]
    assert not fetcher.in_flight


@pytest.mark.asyncio
async def test_tracked_log_fetch_leaves_nothing_running_after_failure():
    fetcher = StallingFetcher(failing_start=7)

    with pytest.raises(RpcError):
        await fetch_tracked_logs(fetcher, 7, 7)

    assert not fetcher.in_flight
    assert len(fetcher.cancelled) == 2
