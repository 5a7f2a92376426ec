from __future__ import annotations

from eth_utils import to_checksum_address

from .errors import DecodeError
from .models import DecodedEvent, PoolCreatedEvent, RawLog, SwapEvent, TransferEvent, Unrecognized
from .value_types import Address, Dex, Topic0


# Topic0 constants (lowercase, with "0x")
TRANSFER_T0        = Topic0("0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef")
V2_PAIR_CREATED_T0 = Topic0("0x0d3648bd0f6ba80134a33ba9275ac585d9d315f0ad8355cddefde31afa28d0e9")
V3_POOL_CREATED_T0 = Topic0("0x783cca1c0412dd0d695e784568c96da2e9c22ff989357a2e8b1d9b2b4e6b7118")
V2_SWAP_T0         = Topic0("0xd78ad95fa46c994b6551d0da85fc275fe613ce37657fb8d5e3d130840159d822")
V3_SWAP_T0         = Topic0("0xc42079f94a6350d7e6235f29174924f928cc2ac818eb64fed8004e115fbcca67")

TRANSFER_TOPICS: tuple[Topic0, ...] = (TRANSFER_T0,)
POOL_CREATED_TOPICS: tuple[Topic0, ...] = (V2_PAIR_CREATED_T0, V3_POOL_CREATED_T0)
SWAP_TOPICS: tuple[Topic0, ...] = (V2_SWAP_T0, V3_SWAP_T0)

# UniswapV2 pairs all charge 0.30%, expressed in V3 fee units (hundredths of a bip)
V2_FEE_TIER = 3000

ZERO_ADDRESS = Address("0x0000000000000000000000000000000000000000")


class _Reader:
    """Fixed-offset reader over one log; collects issues instead of raising."""

    __slots__ = ("log", "data", "issues")

    def __init__(self, log: RawLog) -> None:
        self.log = log
        self.issues: list[DecodeError] = []
        self.data = self._bytes(log.data_hex)

    def _issue(self, field: str, reason: str) -> None:
        self.issues.append(DecodeError(self.log.tx_hash, self.log.log_index, field, reason))

    def _bytes(self, data_hex: str) -> bytes:
        h = data_hex[2:] if data_hex[:2].lower() == "0x" else data_hex
        try:
            return bytes.fromhex(h)
        except ValueError:
            self._issue("data", f"not valid hex ({len(h)} chars)")
            return b""

    def topic_address(self, i: int, field: str) -> Address:
        topics = self.log.topics
        if len(topics) <= i:
            self._issue(field, f"missing topic {i}")
            return ZERO_ADDRESS
        t = topics[i]
        h = t[2:] if t[:2].lower() == "0x" else t
        if len(h) < 40:
            self._issue(field, f"topic {i} too short")
            return ZERO_ADDRESS
        try:
            return Address(to_checksum_address("0x" + h[-40:]))  # low 20 bytes
        except ValueError:
            self._issue(field, f"topic {i} not an address")
            return ZERO_ADDRESS

    def topic_uint(self, i: int, field: str, bits: int = 256) -> int:
        topics = self.log.topics
        if len(topics) <= i:
            self._issue(field, f"missing topic {i}")
            return 0
        try:
            v = int(topics[i], 16)
        except ValueError:
            self._issue(field, f"topic {i} not a number")
            return 0
        if v >> bits:
            self._issue(field, f"topic {i} exceeds uint{bits}")
            return 0
        return v

    def word(self, i: int, field: str) -> bytes | None:
        o = i * 32
        w = self.data[o:o + 32]
        if len(w) < 32:
            self._issue(field, f"payload has {len(self.data)} bytes, need {o + 32}")
            return None
        return w

    def uint(self, i: int, field: str) -> int:
        w = self.word(i, field)
        return int.from_bytes(w, "big") if w is not None else 0

    def int256(self, i: int, field: str) -> int:
        w = self.word(i, field)
        return int.from_bytes(w, "big", signed=True) if w is not None else 0

    def word_address(self, i: int, field: str) -> Address:
        w = self.word(i, field)
        return Address(to_checksum_address("0x" + w[-20:].hex())) if w is not None else ZERO_ADDRESS

    def leading_uint(self, field: str) -> int:
        """Big-endian value of the whole payload when it fits one word, else word 0."""
        if not self.data:
            self._issue(field, "empty payload")
            return 0
        return int.from_bytes(self.data[:32], "big")


def _emitter(log: RawLog) -> Address:
    try:
        return Address(to_checksum_address(log.address))
    except ValueError:
        return Address(log.address)


def _decode_transfer(r: _Reader, ts: int) -> TransferEvent:
    log = r.log
    return TransferEvent(
        token=_emitter(log),
        sender=r.topic_address(1, "from"),
        recipient=r.topic_address(2, "to"),
        value=r.leading_uint("value"),
        block=log.block_number,
        timestamp=ts,
        tx_hash=log.tx_hash,
        log_index=log.log_index,
    )


def _decode_pool_created(r: _Reader, ts: int, dex: Dex) -> PoolCreatedEvent:
    # V2 PairCreated: data = [pair, allPairsLength]
    # V3 PoolCreated: topic3 = fee, data = [tickSpacing, pool]
    if dex == "UniswapV2":
        pool, fee = r.word_address(0, "pool"), V2_FEE_TIER
    else:
        pool, fee = r.word_address(1, "pool"), r.topic_uint(3, "fee_tier", bits=24)
    return PoolCreatedEvent(
        dex=dex,
        pool=pool,
        token0=r.topic_address(1, "token0"),
        token1=r.topic_address(2, "token1"),
        fee_tier=fee,
        first_block=r.log.block_number,
        first_timestamp=ts,
    )


def _decode_swap(r: _Reader, ts: int, dex: Dex) -> SwapEvent:
    log = r.log
    if dex == "UniswapV2":
        # [amount0In, amount1In, amount0Out, amount1Out]
        a0, a1 = r.uint(0, "amount0"), r.uint(1, "amount1")
    else:
        # [amount0, amount1, sqrtPriceX96, liquidity, tick]
        a0, a1 = r.int256(0, "amount0"), r.int256(1, "amount1")
    return SwapEvent(
        pool=_emitter(log),
        dex=dex,
        sender=r.topic_address(1, "sender"),
        recipient=r.topic_address(2, "recipient"),
        amount0=a0,
        amount1=a1,
        block=log.block_number,
        timestamp=ts,
        tx_hash=log.tx_hash,
        log_index=log.log_index,
    )


def decode_with_issues(log: RawLog, block_timestamp: int) -> tuple[DecodedEvent, list[DecodeError]]:
    t0 = log.topic0.lower() if log.topic0 else None
    if t0 not in _KNOWN:
        return Unrecognized(t0, log.address, log.block_number, log.tx_hash, log.log_index), []

    r = _Reader(log)
    ev: DecodedEvent
    if t0 == TRANSFER_T0:
        ev = _decode_transfer(r, block_timestamp)
    elif t0 == V2_PAIR_CREATED_T0:
        ev = _decode_pool_created(r, block_timestamp, "UniswapV2")
    elif t0 == V3_POOL_CREATED_T0:
        ev = _decode_pool_created(r, block_timestamp, "UniswapV3")
    elif t0 == V2_SWAP_T0:
        ev = _decode_swap(r, block_timestamp, "UniswapV2")
    else:
        ev = _decode_swap(r, block_timestamp, "UniswapV3")
    return ev, r.issues


def decode(log: RawLog, block_timestamp: int) -> DecodedEvent:
    """Classify a raw log by topic0 and decode it; never raises on bad payloads."""
    return decode_with_issues(log, block_timestamp)[0]


_KNOWN = frozenset(TRANSFER_TOPICS + POOL_CREATED_TOPICS + SWAP_TOPICS)
