# evmtap/ports/rpc.py
from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Protocol, Sequence

from ..domain.models import BlockHeader, RawLog
from ..domain.value_types import Topic0


class RPCClient(Protocol):
    """Port defining the contract for an Ethereum JSON-RPC client."""

    async def call(self, method: str, params: Sequence[Any] = ()) -> Any:
        """Issue one JSON-RPC call and return its `result`, raising RpcError on failure."""

    async def block_number(self) -> int:
        """Return the latest block number as an integer."""

    async def get_block(self, number: int) -> BlockHeader:
        """Return the header (number, timestamp, hash) of a block."""

    async def get_logs(
        self,
        from_block: int,
        to_block: int,
        address: str | None = None,
        topic0s: Sequence[Topic0] | None = None,
    ) -> list[RawLog]:
        """Return normalized, typed logs for [from_block, to_block] inclusive."""


class HeadSource(Protocol):
    """Port for a stream of new block headers."""

    def heads(self, stop: asyncio.Event) -> AsyncIterator[BlockHeader]:
        """Yield headers as blocks arrive until `stop` is set."""
