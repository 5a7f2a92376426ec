from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any, AsyncIterator

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..domain.errors import RpcError
from ..domain.models import BlockHeader
from ..ports.rpc import HeadSource

logger = logging.getLogger(__name__)


class WebsocketHeadSource(HeadSource):
    """
    `eth_subscribe("newHeads")` over a websocket, reconnecting with back-off.

    Malformed frames are logged and skipped. Connection failures and
    rejected subscriptions reconnect after a delay that doubles up to
    `max_backoff` and resets once a subscription succeeds.
    """

    def __init__(self, ws_url: str, *, reconnect_delay: float = 1.0, max_backoff: float = 60.0) -> None:
        self.ws_url = ws_url
        self.reconnect_delay = reconnect_delay
        self.max_backoff = max_backoff
        self._ids = itertools.count(1)

    async def heads(self, stop: asyncio.Event) -> AsyncIterator[BlockHeader]:
        backoff = max(self.reconnect_delay, 0.0)
        while not stop.is_set():
            try:
                async with websockets.connect(self.ws_url, ping_interval=20, ping_timeout=20) as ws:
                    sub_id = await self._subscribe(ws)
                    logger.info("Subscribed to newHeads on %s (%s)", self.ws_url, sub_id)
                    backoff = max(self.reconnect_delay, 0.0)
                    try:
                        while not stop.is_set():
                            message = await _recv_or_stop(ws, stop)
                            if message is None:
                                break
                            try:
                                header = _parse_head(message, sub_id)
                            except (ValueError, KeyError, TypeError) as e:
                                logger.warning("Skipping malformed newHeads frame: %s: %s", type(e).__name__, e)
                                continue
                            if header is not None:
                                yield header
                    finally:
                        await self._unsubscribe(ws, sub_id)
            except (WebSocketException, OSError, asyncio.TimeoutError, RpcError) as e:
                if stop.is_set():
                    break
                logger.warning("Websocket error: %s: %s; reconnecting in %.1fs", type(e).__name__, e, backoff)
                await _sleep_or_stop(backoff, stop)
                backoff = min(max(backoff * 2, 1.0), self.max_backoff)

    async def _subscribe(self, ws: Any) -> str:
        req_id = next(self._ids)
        await ws.send(json.dumps({"jsonrpc": "2.0", "id": req_id, "method": "eth_subscribe", "params": ["newHeads"]}))
        while True:
            raw = await ws.recv()
            try:
                data = json.loads(raw)
            except ValueError:
                logger.warning("Skipping non-JSON frame while subscribing")
                continue
            if not isinstance(data, dict) or data.get("id") != req_id:
                continue
            if data.get("error") is not None:
                err = data["error"]
                msg = err.get("message") if isinstance(err, dict) else str(err)
                raise RpcError(f"Subscribe failed: {msg}", method="eth_subscribe")
            if not data.get("result"):
                raise RpcError("Subscribe returned no subscription id", method="eth_subscribe")
            return str(data["result"])

    async def _unsubscribe(self, ws: Any, sub_id: str) -> None:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": "eth_unsubscribe", "params": [sub_id]}
        try:
            await ws.send(json.dumps(payload))
        except ConnectionClosed:
            logger.debug("connection already closed; skipping eth_unsubscribe")


def _parse_head(message: str | bytes, sub_id: str) -> BlockHeader | None:
    """Header carried by a newHeads notification for `sub_id`, None for any other frame.

    Raises ValueError/KeyError/TypeError on malformed JSON or a header missing fields.
    """
    payload = json.loads(message)
    if not isinstance(payload, dict) or payload.get("method") != "eth_subscription":
        return None
    params = payload.get("params")
    if not isinstance(params, dict) or str(params.get("subscription")) != sub_id:
        return None
    result = params.get("result")
    if not result:
        return None
    if not isinstance(result, dict):
        raise TypeError(f"newHeads result is {type(result).__name__}, expected object")
    return BlockHeader.from_rpc(result)


async def _recv_or_stop(ws: Any, stop: asyncio.Event) -> str | bytes | None:
    recv = asyncio.ensure_future(ws.recv())
    stopper = asyncio.ensure_future(stop.wait())
    done, pending = await asyncio.wait({recv, stopper}, return_when=asyncio.FIRST_COMPLETED)
    for p in pending:
        p.cancel()
    if recv in done:
        return recv.result()
    return None


async def _sleep_or_stop(delay: float, stop: asyncio.Event) -> None:
    try:
        await asyncio.wait_for(stop.wait(), timeout=delay)
    except asyncio.TimeoutError:
        pass
