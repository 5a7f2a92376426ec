from __future__ import annotations
import itertools, re
from typing import Any, Sequence

import httpx

from ..domain.errors import RpcError
from ..domain.models import BlockHeader, RawLog
from ..domain.value_types import Topic0
from ..ports.rpc import RPCClient

# Deny dangerous namespaces; allow all practical read methods.
DENY = re.compile(r"^(personal_|account_|admin_|miner_|engine_|debug_)")
TIMEOUT_S = 60.0

def _to_hex_block(n: int) -> str: return hex(int(n))
def _is_topic_hash(x: str) -> bool: return isinstance(x, str) and x.startswith("0x") and len(x)==66

def _build_topics_param(topic0s: Sequence[Topic0]) -> list[list[str]]:
    t0s = [str(t).strip().lower() for t in topic0s]
    if not all(_is_topic_hash(x) for x in t0s):
        raise ValueError(f"Invalid topic0(s): {t0s}")
    return [t0s]

class HttpxRPC(RPCClient):
    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = TIMEOUT_S,
        max_conn: int = 64,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self._ids = itertools.count(1)
        self.client = httpx.AsyncClient(
            http2=True,
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=max_conn, max_keepalive_connections=max_conn//2),
            transport=transport,
        )

    async def call(self, method: str, params: Sequence[Any] = ()) -> Any:
        if DENY.match(method):
            raise RpcError(f"Method {method} is not allowed", method=method)
        payload = {"jsonrpc":"2.0","id":next(self._ids),"method":method,"params":list(params)}
        try:
            r = await self.client.post(self.rpc_url, json=payload)
        except httpx.TimeoutException as e:
            raise RpcError(f"request timed out after {self.client.timeout.read}s", method=method) from e
        except httpx.HTTPError as e:
            raise RpcError(f"transport error: {type(e).__name__}: {e}", method=method) from e
        if not r.is_success:
            raise RpcError(f"HTTP {r.status_code} {r.reason_phrase}", code=r.status_code, method=method)
        try:
            data = r.json()
        except ValueError as e:
            raise RpcError(f"invalid JSON response: {e}", method=method) from e
        if not isinstance(data, dict):
            raise RpcError(f"unexpected response envelope: {type(data).__name__}", method=method)
        if data.get("error") is not None:
            err = data["error"]
            if isinstance(err, dict):
                raise RpcError(str(err.get("message") or err), code=err.get("code"), method=method)
            raise RpcError(str(err), method=method)
        return data.get("result")

    async def block_number(self) -> int:
        return int(await self.call("eth_blockNumber"), 16)

    async def get_block(self, number: int) -> BlockHeader:
        res = await self.call("eth_getBlockByNumber", [_to_hex_block(number), False])
        if res is None:
            raise RpcError(f"block {number} not found", method="eth_getBlockByNumber")
        return BlockHeader.from_rpc(res)

    async def get_logs(
        self,
        from_block: int,
        to_block: int,
        address: str | None = None,
        topic0s: Sequence[Topic0] | None = None,
    ) -> list[RawLog]:
        flt: dict[str, Any] = {
            "fromBlock": _to_hex_block(from_block),
            "toBlock": _to_hex_block(to_block),
        }
        if address:
            flt["address"] = address.lower()
        if topic0s:
            flt["topics"] = _build_topics_param(topic0s)
        res = await self.call("eth_getLogs", [flt])
        return [RawLog.from_rpc(rl) for rl in res or []]

    async def aclose(self) -> None:
        await self.client.aclose()
