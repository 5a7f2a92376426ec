from datetime import datetime, timedelta, timezone

import pytest

from evmtap.application.retention import retention_cutoff, sweep_retention
from evmtap.domain.models import PoolCreatedEvent, SwapEvent, TransferEvent

NOW = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
CUTOFF = NOW - timedelta(days=14)


def _ts(dt: datetime) -> int:
    return int(dt.timestamp())


def transfer_at(dt, block):
    return TransferEvent(token="0x" + "ab" * 20, sender="0x" + "01" * 20, recipient="0x" + "02" * 20,
                         value=1, block=block, timestamp=_ts(dt), tx_hash="0x" + "cd" * 32, log_index=0)


def swap_at(dt, block):
    return SwapEvent(pool="0x" + "55" * 20, dex="UniswapV2", sender="0x" + "01" * 20, recipient="0x" + "02" * 20,
                     amount0=1, amount1=2, block=block, timestamp=_ts(dt), tx_hash="0x" + "ef" * 32, log_index=1)


@pytest.mark.asyncio
async def test_only_rows_strictly_before_cutoff_are_deleted(store):
    t0, t1, t2 = CUTOFF - timedelta(seconds=1), CUTOFF, CUTOFF + timedelta(hours=1)
    await store.write_all([transfer_at(t0, 1), transfer_at(t1, 2), transfer_at(t2, 3)])
    await store.write_all([swap_at(t0, 1), swap_at(t2, 3)])

    deleted = await sweep_retention(store, 14, now=NOW)

    assert deleted == {"erc20_transfers": 1, "dex_events": 1}
    rows = await store.query("SELECT block FROM erc20_transfers ORDER BY block")
    assert [r[0] for r in rows] == [2, 3]
    rows = await store.query("SELECT block FROM dex_events")
    assert [r[0] for r in rows] == [3]


@pytest.mark.asyncio
async def test_second_sweep_deletes_nothing(store):
    await store.write_all([transfer_at(CUTOFF - timedelta(days=3), 1), transfer_at(NOW, 2)])

    first = await sweep_retention(store, 14, now=NOW)
    second = await sweep_retention(store, 14, now=NOW)

    assert first["erc20_transfers"] == 1
    assert second == {"erc20_transfers": 0, "dex_events": 0}
    assert await store.count("erc20_transfers") == 1


@pytest.mark.asyncio
async def test_pools_are_not_swept(store):
    old = _ts(CUTOFF - timedelta(days=30))
    await store.write(PoolCreatedEvent(dex="UniswapV2", pool="0x" + "44" * 20, token0="0x" + "01" * 20,
                                       token1="0x" + "02" * 20, fee_tier=3000, first_block=1, first_timestamp=old))

    await sweep_retention(store, 14, now=NOW)

    assert await store.count("pools") == 1


def test_cutoff_treats_naive_now_as_utc():
    assert retention_cutoff(14, NOW.replace(tzinfo=None)) == CUTOFF


@pytest.mark.parametrize("days", [0, -1])
def test_non_positive_horizon_rejected(days):
    with pytest.raises(ValueError):
        retention_cutoff(days, NOW)
