# evmtap/ports/storage.py
from __future__ import annotations

from datetime import datetime
from typing import Iterable, Protocol

from ..domain.models import DecodedEvent


class EventStore(Protocol):
    """Port for persisting decoded events into the analytical tables."""

    async def write(self, event: DecodedEvent) -> int:
        """Persist one event; returns rows inserted (0 for an already-known pool)."""

    async def write_all(self, events: Iterable[DecodedEvent]) -> int:
        """Persist events in order, atomically; returns rows inserted."""

    async def delete_older_than(self, table: str, cutoff: datetime) -> int:
        """Delete rows whose `ts` is strictly earlier than `cutoff`."""

    async def close(self) -> None:
        """Release the underlying connection."""
