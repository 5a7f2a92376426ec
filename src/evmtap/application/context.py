from __future__ import annotations

import logging
from dataclasses import dataclass

from ..adapters.duckdb_store import DuckDBStore
from ..adapters.rpc_httpx import HttpxRPC
from ..config import Settings
from .log_window import LogWindowFetcher

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IngestionContext:
    """Everything a job needs, built once at startup and passed explicitly."""
    settings: Settings
    rpc: HttpxRPC
    fetcher: LogWindowFetcher
    store: DuckDBStore

    async def aclose(self) -> None:
        try:
            await self.rpc.aclose()
        finally:
            await self.store.close()


def build_context(settings: Settings) -> IngestionContext:
    store = DuckDBStore.open(settings.duckdb_path)
    rpc = HttpxRPC(settings.rpc_http)
    fetcher = LogWindowFetcher(rpc, chunk_span=settings.chunk_span)
    logger.debug("context: rpc=%s store=%s chunk_span=%d", settings.rpc_http, settings.duckdb_path, settings.chunk_span)
    return IngestionContext(settings=settings, rpc=rpc, fetcher=fetcher, store=store)
