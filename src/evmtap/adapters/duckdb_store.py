from __future__ import annotations
import asyncio, logging, os
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, TypeVar

import duckdb
import pyarrow as pa

from ..domain.errors import DbError
from ..domain.models import DecodedEvent, PoolCreatedEvent, SwapEvent, TransferEvent, Unrecognized
from ..ports.storage import EventStore
from .migrations import MIGRATIONS, MIGRATIONS_TABLE

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSFERS_SCHEMA = pa.schema([
    ("block", pa.int64()),
    ("ts", pa.timestamp("s")),
    ("token", pa.string()),
    ("from", pa.string()),
    ("to", pa.string()),
    ("value", pa.string()),
    ("tx_hash", pa.string()),
    ("log_index", pa.int64()),
])

POOLS_SCHEMA = pa.schema([
    ("dex", pa.string()),
    ("pool", pa.string()),
    ("token0", pa.string()),
    ("token1", pa.string()),
    ("fee_tier", pa.int32()),
    ("first_block", pa.int64()),
    ("first_ts", pa.timestamp("s")),
])

DEX_EVENTS_SCHEMA = pa.schema([
    ("block", pa.int64()),
    ("ts", pa.timestamp("s")),
    ("dex", pa.string()),
    ("pool", pa.string()),
    ("event", pa.string()),
    ("tx_hash", pa.string()),
    ("log_index", pa.int64()),
    ("sender", pa.string()),
    ("recipient", pa.string()),
    ("amount0", pa.string()),
    ("amount1", pa.string()),
])

# tables swept by retention (rows carry a block-time `ts`)
TIME_PARTITIONED = ("erc20_transfers", "dex_events")
TABLES = ("erc20_transfers", "pools", "dex_events")

def _transfer_row(e: TransferEvent) -> tuple:
    return (e.block, e.timestamp, e.token, e.sender, e.recipient, str(e.value), e.tx_hash, e.log_index)

def _pool_row(e: PoolCreatedEvent) -> tuple:
    return (e.dex, e.pool, e.token0, e.token1, e.fee_tier, e.first_block, e.first_timestamp)

def _swap_row(e: SwapEvent) -> tuple:
    return (e.block, e.timestamp, e.dex, e.pool, e.event, e.tx_hash, e.log_index,
            e.sender, e.recipient, str(e.amount0), str(e.amount1))

def _rows_to_table(rows: list[tuple], schema: pa.Schema) -> pa.Table:
    cols = list(zip(*rows)) if rows else [()] * len(schema)
    return pa.Table.from_arrays(
        [pa.array(list(c), type=f.type) for c, f in zip(cols, schema)],
        schema=schema,
    )

def _quoted(schema: pa.Schema) -> str:
    return ", ".join(f'"{n}"' for n in schema.names)

def _insert_sql(table: str, schema: pa.Schema, view: str, *, ignore_conflicts: bool = False) -> str:
    cols = _quoted(schema)
    sql = f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {view}"
    return sql + " ON CONFLICT DO NOTHING" if ignore_conflicts else sql

def _check_table(table: str) -> None:
    if table not in TABLES:
        raise ValueError(f"unknown table {table!r}")


class DuckDBStore(EventStore):
    """
    Ingestion writer over a single DuckDB connection.

    Transfers and swaps are appended; pools are insert-if-absent on (dex, pool).
    Blocking DuckDB calls run in a worker thread, one at a time.
    """
    def __init__(self, conn: duckdb.DuckDBPyConnection) -> None:
        self.conn = conn
        self._lock = asyncio.Lock()

    @classmethod
    def open(cls, path: str) -> "DuckDBStore":
        if path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        try:
            conn = duckdb.connect(path)
        except duckdb.Error as e:
            raise DbError(f"cannot open store at {path}: {e}") from e
        store = cls(conn)
        store.migrate()
        logger.info("store ready at %s", path)
        return store

    def migrate(self) -> list[int]:
        """Apply pending migrations in version order; returns versions applied."""
        applied: list[int] = []
        try:
            self.conn.execute(MIGRATIONS_TABLE)
            done = {v for (v,) in self.conn.execute("SELECT version FROM schema_migrations").fetchall()}
            for m in MIGRATIONS:
                if m.version in done:
                    continue
                self.conn.begin()
                try:
                    for stmt in m.statements:
                        self.conn.execute(stmt)
                    self.conn.execute(
                        "INSERT INTO schema_migrations (version, name, applied_at) VALUES (?, ?, ?)",
                        [m.version, m.name, datetime.now(timezone.utc).replace(tzinfo=None)],
                    )
                    self.conn.commit()
                except duckdb.Error:
                    self.conn.rollback()
                    raise
                logger.info("applied migration %04d_%s", m.version, m.name)
                applied.append(m.version)
        except duckdb.Error as e:
            raise DbError(f"migration failed: {e}") from e
        return applied

    async def _run(self, fn: Callable[[], T]) -> T:
        async with self._lock:
            try:
                return await asyncio.to_thread(fn)
            except (duckdb.Error, pa.ArrowException) as e:
                raise DbError(f"{type(e).__name__}: {e}") from e

    def _write_all_impl(self, events: list[DecodedEvent]) -> int:
        transfers: list[tuple] = []
        swaps: list[tuple] = []
        pools: dict[tuple[str, str], tuple] = {}
        for ev in events:
            if isinstance(ev, TransferEvent):
                transfers.append(_transfer_row(ev))
            elif isinstance(ev, SwapEvent):
                swaps.append(_swap_row(ev))
            elif isinstance(ev, PoolCreatedEvent):
                pools.setdefault(ev.key, _pool_row(ev))  # first observation wins
            elif isinstance(ev, Unrecognized):
                continue
            else:
                raise TypeError(f"cannot persist {type(ev).__name__}")

        batches = [
            ("erc20_transfers", TRANSFERS_SCHEMA, transfers, False),
            ("pools", POOLS_SCHEMA, list(pools.values()), True),
            ("dex_events", DEX_EVENTS_SCHEMA, swaps, False),
        ]
        inserted = 0
        self.conn.begin()
        try:
            for table, schema, rows, ignore in batches:
                if not rows:
                    continue
                view = f"_batch_{table}"
                self.conn.register(view, _rows_to_table(rows, schema))
                try:
                    res = self.conn.execute(_insert_sql(table, schema, view, ignore_conflicts=ignore)).fetchone()
                finally:
                    self.conn.unregister(view)
                inserted += int(res[0]) if res else 0
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return inserted

    async def write(self, event: DecodedEvent) -> int:
        return await self.write_all([event])

    async def write_all(self, events: Iterable[DecodedEvent]) -> int:
        evs = list(events)
        if not evs:
            return 0
        return await self._run(lambda: self._write_all_impl(evs))

    async def delete_older_than(self, table: str, cutoff: datetime) -> int:
        if table not in TIME_PARTITIONED:
            raise ValueError(f"{table!r} is not time-partitioned")
        if cutoff.tzinfo is not None:
            cutoff = cutoff.astimezone(timezone.utc).replace(tzinfo=None)
        def _impl() -> int:
            res = self.conn.execute(f"DELETE FROM {table} WHERE ts < ?", [cutoff]).fetchone()
            return int(res[0]) if res else 0
        return await self._run(_impl)

    async def count(self, table: str) -> int:
        _check_table(table)
        return await self._run(lambda: self.conn.execute(f"SELECT count(*) FROM {table}").fetchone()[0])

    async def max_block(self, table: str) -> int | None:
        _check_table(table)
        col = "first_block" if table == "pools" else "block"
        return await self._run(lambda: self.conn.execute(f"SELECT max({col}) FROM {table}").fetchone()[0])

    async def query(self, sql: str, params: list[Any] | None = None) -> list[tuple]:
        return await self._run(lambda: self.conn.execute(sql, params or []).fetchall())

    async def close(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self.conn.close)
