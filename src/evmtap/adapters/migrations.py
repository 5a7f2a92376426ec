# evmtap/adapters/migrations.py
from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class Migration:
    version: int
    name: str
    statements: tuple[str, ...]


MIGRATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS schema_migrations (
  version INTEGER PRIMARY KEY,
  name VARCHAR NOT NULL,
  applied_at TIMESTAMP NOT NULL
)
"""

MIGRATIONS: tuple[Migration, ...] = (
    Migration(1, "core_tables", (
        """
        CREATE TABLE IF NOT EXISTS erc20_transfers (
          block BIGINT NOT NULL,
          ts TIMESTAMP NOT NULL,
          token VARCHAR,
          "from" VARCHAR,
          "to" VARCHAR,
          value VARCHAR,
          tx_hash VARCHAR,
          log_index BIGINT
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS pools (
          dex VARCHAR NOT NULL,
          pool VARCHAR NOT NULL,
          token0 VARCHAR,
          token1 VARCHAR,
          fee_tier INTEGER,
          first_block BIGINT,
          first_ts TIMESTAMP,
          PRIMARY KEY (dex, pool)
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS dex_events (
          block BIGINT NOT NULL,
          ts TIMESTAMP NOT NULL,
          dex VARCHAR,
          pool VARCHAR,
          event VARCHAR,
          tx_hash VARCHAR,
          log_index BIGINT,
          sender VARCHAR,
          recipient VARCHAR,
          amount0 VARCHAR,
          amount1 VARCHAR
        )
        """,
    )),
    Migration(2, "lookup_indexes", (
        "CREATE INDEX IF NOT EXISTS idx_erc20_transfers_block ON erc20_transfers(block)",
        "CREATE INDEX IF NOT EXISTS idx_erc20_transfers_ts ON erc20_transfers(ts)",
        'CREATE INDEX IF NOT EXISTS idx_erc20_transfers_from ON erc20_transfers("from")',
        'CREATE INDEX IF NOT EXISTS idx_erc20_transfers_to ON erc20_transfers("to")',
        "CREATE INDEX IF NOT EXISTS idx_erc20_transfers_token ON erc20_transfers(token)",
        "CREATE INDEX IF NOT EXISTS idx_pools_token0 ON pools(token0)",
        "CREATE INDEX IF NOT EXISTS idx_pools_token1 ON pools(token1)",
        "CREATE INDEX IF NOT EXISTS idx_pools_first_block ON pools(first_block)",
        "CREATE INDEX IF NOT EXISTS idx_dex_events_block ON dex_events(block)",
        "CREATE INDEX IF NOT EXISTS idx_dex_events_ts ON dex_events(ts)",
        "CREATE INDEX IF NOT EXISTS idx_dex_events_pool ON dex_events(pool)",
        "CREATE INDEX IF NOT EXISTS idx_dex_events_sender ON dex_events(sender)",
    )),
    Migration(3, "kind_indexes", (
        "CREATE INDEX IF NOT EXISTS idx_pools_dex ON pools(dex)",
        "CREATE INDEX IF NOT EXISTS idx_dex_events_event ON dex_events(event)",
    )),
)
