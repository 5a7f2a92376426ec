from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from ..adapters.duckdb_store import TIME_PARTITIONED
from ..ports.storage import EventStore

logger = logging.getLogger(__name__)


def retention_cutoff(retention_days: float, now: datetime | None = None) -> datetime:
    if retention_days <= 0:
        raise ValueError(f"retention_days must be positive, got {retention_days}")
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now - timedelta(days=retention_days)


async def sweep_retention(
    store: EventStore,
    retention_days: float,
    *,
    now: datetime | None = None,
    tables: tuple[str, ...] = TIME_PARTITIONED,
) -> dict[str, int]:
    """Delete rows with block time strictly before now - retention_days."""
    cutoff = retention_cutoff(retention_days, now)
    deleted: dict[str, int] = {}
    for table in tables:
        n = await store.delete_older_than(table, cutoff)
        deleted[table] = n
        if n > 0:
            logger.info("Deleted %d old records from %s (ts < %s)", n, table, cutoff.isoformat())
        else:
            logger.debug("nothing to delete from %s", table)
    return deleted
