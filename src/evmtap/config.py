"""Runtime settings read from the environment (and an optional `.env` file)."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from dotenv import load_dotenv

from .domain.errors import ConfigError

_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _int(env: Mapping[str, str], name: str, default: int, *, minimum: int = 1) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        v = int(raw.strip())
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    if v < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {v}")
    return v


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        v = float(raw.strip())
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if v <= 0:
        raise ConfigError(f"{name} must be positive, got {v}")
    return v


@dataclass(slots=True, frozen=True)
class Settings:
    rpc_http: str = "http://127.0.0.1:8545"
    rpc_ws: str = "ws://127.0.0.1:8546"
    duckdb_path: str = os.path.join("~", "eth-index", "eth.duckdb")
    retention_days: int = 14
    chunk_span: int = 2_000
    backfill_days: float = 7
    batch_size: int = 100
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, *, dotenv: bool = True) -> "Settings":
        if env is None:
            if dotenv:
                load_dotenv()
            env = os.environ
        d = cls()
        level = (env.get("LOG_LEVEL") or d.log_level).strip().upper()
        if level not in _LEVELS:
            raise ConfigError(f"LOG_LEVEL must be one of {', '.join(_LEVELS)}, got {level!r}")
        return cls(
            rpc_http=env.get("RPC_HTTP") or d.rpc_http,
            rpc_ws=env.get("RPC_WS") or d.rpc_ws,
            duckdb_path=os.path.expanduser(env.get("DUCKDB_PATH") or d.duckdb_path),
            retention_days=_int(env, "RETENTION_DAYS", d.retention_days),
            chunk_span=_int(env, "CHUNK_SPAN", d.chunk_span),
            backfill_days=_float(env, "BACKFILL_DAYS", d.backfill_days),
            batch_size=_int(env, "BATCH_SIZE", d.batch_size),
            log_level=level,
        )
