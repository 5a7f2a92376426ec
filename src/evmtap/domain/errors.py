from __future__ import annotations

_OVERLOAD_MARKERS = (
    "too many results",
    "query returned more than",
    "response size",
    "limit exceeded",
    "block range",
    "timeout",
    "timed out",
)


class IngestError(Exception):
    """Base class for ingestion failures."""


class ConfigError(IngestError):
    pass


class RpcError(IngestError):
    """Network failure, timeout or provider rejection of a JSON-RPC call."""

    def __init__(self, message: str, *, code: int | None = None, method: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.method = method

    @property
    def is_overload(self) -> bool:
        msg = self.message.lower()
        return any(m in msg for m in _OVERLOAD_MARKERS)

    def __str__(self) -> str:
        parts = [self.message]
        if self.code is not None:
            parts.append(f"code={self.code}")
        if self.method:
            parts.append(f"method={self.method}")
        return " ".join(parts)


class RangeTooLargeError(IngestError, ValueError):
    def __init__(self, from_block: int, to_block: int, max_range: int) -> None:
        span = to_block - from_block + 1
        super().__init__(f"block range {from_block}-{to_block} spans {span} blocks (max {max_range})")
        self.from_block = from_block
        self.to_block = to_block
        self.max_range = max_range


class DecodeError(IngestError):
    """Data-quality issue found while decoding a log. Reported, never raised."""

    def __init__(self, tx_hash: str, log_index: int, field: str, reason: str) -> None:
        super().__init__(f"{tx_hash}:{log_index} {field}: {reason}")
        self.tx_hash = tx_hash
        self.log_index = log_index
        self.field = field
        self.reason = reason


class DbError(IngestError):
    pass
