from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Mapping, Union

from .value_types import Address, Dex, EventKind, Topic0


def _quantity(v: Any) -> int:
    """Hex quantity ("0x1a"), decimal string or native int -> int."""
    if isinstance(v, int):
        return v
    s = str(v).strip().lower()
    return int(s, 16) if s.startswith("0x") else int(s)


@dataclass(slots=True, frozen=True)
class BlockRange:
    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 0 or self.end < 0:
            raise ValueError(f"block numbers must be non-negative: {self.start}..{self.end}")
        if self.start > self.end:
            raise ValueError(f"start ({self.start}) must be <= end ({self.end})")

    def span(self) -> int: return self.end - self.start + 1

    def __str__(self) -> str: return f"{self.start}-{self.end}"


@dataclass(slots=True, frozen=True)
class BlockHeader:
    number: int
    timestamp: int
    hash: str | None = None

    @classmethod
    def from_rpc(cls, obj: Mapping[str, Any]) -> "BlockHeader":
        h = obj.get("hash")
        return cls(
            number=_quantity(obj["number"]),
            timestamp=_quantity(obj["timestamp"]),
            hash=h.lower() if isinstance(h, str) else None,
        )


@dataclass(slots=True, frozen=True)
class RawLog:
    address: str                       # lowercased hex with 0x
    topics: tuple[str, ...]            # all topics, lowercased with 0x
    data_hex: str                      # hex with 0x (or "0x")
    block_number: int
    tx_hash: str                       # lowercased hex with 0x
    log_index: int
    block_timestamp: int | None = None

    @property
    def topic0(self) -> Topic0 | None:
        return Topic0(self.topics[0]) if self.topics else None

    @classmethod
    def from_rpc(cls, rl: Mapping[str, Any]) -> "RawLog":
        topics = tuple((t if isinstance(t, str) else t.decode()).lower() for t in rl.get("topics") or [])
        ts = rl.get("blockTimestamp")
        return cls(
            address=str(rl["address"]).lower(),
            topics=topics,
            data_hex=str(rl.get("data") or "0x"),
            block_number=_quantity(rl["blockNumber"]),
            tx_hash=str(rl.get("transactionHash") or "").lower(),
            log_index=_quantity(rl.get("logIndex") or 0),
            block_timestamp=_quantity(ts) if ts is not None else None,
        )


@dataclass(slots=True, frozen=True)
class TransferEvent:
    token: Address
    sender: Address
    recipient: Address
    value: int
    block: int
    timestamp: int
    tx_hash: str
    log_index: int


@dataclass(slots=True, frozen=True)
class PoolCreatedEvent:
    dex: Dex
    pool: Address
    token0: Address
    token1: Address
    fee_tier: int
    first_block: int
    first_timestamp: int

    @property
    def key(self) -> tuple[str, str]: return (self.dex, self.pool)


@dataclass(slots=True, frozen=True)
class SwapEvent:
    pool: Address
    dex: Dex
    sender: Address
    recipient: Address
    amount0: int                       # unsigned for V2, int256 for V3
    amount1: int
    block: int
    timestamp: int
    tx_hash: str
    log_index: int
    event: EventKind = "Swap"


@dataclass(slots=True, frozen=True)
class Unrecognized:
    topic0: str | None
    address: str
    block: int
    tx_hash: str
    log_index: int


DecodedEvent = Union[TransferEvent, PoolCreatedEvent, SwapEvent, Unrecognized]


@dataclass(slots=True)
class IngestStats:
    logs: int = 0
    written: int = 0
    unrecognized: int = 0
    issues: int = 0


@dataclass(slots=True)
class BackfillReport:
    start_block: int
    end_block: int
    blocks_processed: int = 0
    logs_ingested: int = 0
    events_written: int = 0
    batches_ok: int = 0
    batches_failed: int = 0
    failed_ranges: list[BlockRange] = field(default_factory=list)
