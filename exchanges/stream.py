"""Binance-style market data WebSocket with reconnect and keepalive.

State moves DISCONNECTED -> CONNECTING -> CONNECTED and back. A closed or
failed connection schedules one reconnect after a fixed delay; while that timer
is pending no second one is created. Subscriptions are remembered and replayed
after every reconnect.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List

import websockets
from websockets.exceptions import ConnectionClosed

from config import WS_PING_INTERVAL_SECONDS, WS_QUEUE_SIZE, WS_RECONNECT_DELAY_SECONDS

logger = logging.getLogger(__name__)

ConnectFn = Callable[[str], Awaitable[Any]]


class StreamState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


async def _default_connect(url: str) -> Any:
    # Keepalive is driven by our own ping timer.
    return await websockets.connect(url, ping_interval=None, max_size=2**22)


def ticker_stream(symbol: str) -> str:
    return f"{symbol.lower()}@ticker"


def depth_stream(symbol: str, levels: int = 20) -> str:
    return f"{symbol.lower()}@depth{levels}"


def mark_price_stream(symbol: str) -> str:
    return f"{symbol.lower()}@markPrice"


STREAM_KINDS: Dict[str, Callable[[str], str]] = {
    "ticker": ticker_stream,
    "depth": depth_stream,
    "mark-price": mark_price_stream,
}


class MarketStream:
    def __init__(
        self,
        url: str,
        *,
        name: str = "",
        connect: ConnectFn | None = None,
        reconnect_delay: float = WS_RECONNECT_DELAY_SECONDS,
        ping_interval: float = WS_PING_INTERVAL_SECONDS,
        queue_size: int = WS_QUEUE_SIZE,
    ) -> None:
        self.url = url
        self.name = name or url
        self._connect_fn = connect or _default_connect
        self._reconnect_delay = reconnect_delay
        self._ping_interval = ping_interval
        self._queue: asyncio.Queue[Dict[str, Any]] = asyncio.Queue(maxsize=queue_size)
        self._state = StreamState.DISCONNECTED
        self._ws: Any = None
        self._running = False
        self._reader_task: asyncio.Task | None = None
        self._ping_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._subscriptions: List[str] = []
        self._next_id = 1
        self.dropped = 0
        self.connect_count = 0

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def subscriptions(self) -> List[str]:
        return list(self._subscriptions)

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        await self._connect()

    async def stop(self) -> None:
        self._running = False
        for task in (self._reconnect_task, self._ping_task, self._reader_task):
            if task is not None and task is not asyncio.current_task():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._reconnect_task = self._ping_task = self._reader_task = None
        await self._close_socket()
        self._state = StreamState.DISCONNECTED

    # ------------------------------------------------------------------ #
    # Subscriptions
    # ------------------------------------------------------------------ #

    async def subscribe(self, streams: Iterable[str]) -> int | None:
        new = [stream for stream in streams if stream not in self._subscriptions]
        self._subscriptions.extend(new)
        if not new or self._state is not StreamState.CONNECTED:
            return None
        return await self._send_method("SUBSCRIBE", new)

    async def unsubscribe(self, streams: Iterable[str]) -> int | None:
        gone = [stream for stream in streams if stream in self._subscriptions]
        self._subscriptions = [stream for stream in self._subscriptions if stream not in gone]
        if not gone or self._state is not StreamState.CONNECTED:
            return None
        return await self._send_method("UNSUBSCRIBE", gone)

    async def subscribe_ticker(self, symbol: str) -> int | None:
        return await self.subscribe([ticker_stream(symbol)])

    async def subscribe_depth(self, symbol: str, levels: int = 20) -> int | None:
        return await self.subscribe([depth_stream(symbol, levels)])

    async def subscribe_mark_price(self, symbol: str) -> int | None:
        return await self.subscribe([mark_price_stream(symbol)])

    async def _send_method(self, method: str, params: List[str]) -> int:
        request_id = self._next_id
        self._next_id += 1
        await self._ws.send(json.dumps({"method": method, "params": params, "id": request_id}))
        logger.debug("%s: %s %s (id=%d)", self.name, method, params, request_id)
        return request_id

    # ------------------------------------------------------------------ #
    # Inbound messages
    # ------------------------------------------------------------------ #

    async def get(self, timeout: float | None = None) -> Dict[str, Any]:
        if timeout is None:
            return await self._queue.get()
        return await asyncio.wait_for(self._queue.get(), timeout)

    async def messages(self):
        while True:
            yield await self._queue.get()

    def _enqueue(self, message: Dict[str, Any]) -> None:
        if self._queue.full():
            with contextlib.suppress(asyncio.QueueEmpty):
                self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(message)

    # ------------------------------------------------------------------ #
    # Connection lifecycle
    # ------------------------------------------------------------------ #

    async def _connect(self) -> None:
        self._state = StreamState.CONNECTING
        try:
            self._ws = await self._connect_fn(self.url)
        except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as exc:
            logger.warning("%s: connect failed: %s", self.name, exc)
            self._state = StreamState.DISCONNECTED
            self._schedule_reconnect()
            return
        self._state = StreamState.CONNECTED
        self.connect_count += 1
        logger.info("%s: connected", self.name)
        loop = asyncio.get_running_loop()
        self._reader_task = loop.create_task(self._reader(self._ws))
        self._ping_task = loop.create_task(self._pinger(self._ws))
        if self._subscriptions:
            try:
                await self._send_method("SUBSCRIBE", list(self._subscriptions))
            except (ConnectionClosed, OSError) as exc:
                logger.warning("%s: resubscribe failed: %s", self.name, exc)

    async def _reader(self, ws: Any) -> None:
        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except (TypeError, ValueError):
                    logger.debug("%s: non-JSON frame dropped", self.name)
                    continue
                if isinstance(message, dict) and "id" in message and "result" in message:
                    logger.debug("%s: ack id=%s", self.name, message.get("id"))
                    continue
                self._enqueue(message if isinstance(message, dict) else {"data": message})
        except ConnectionClosed as exc:
            logger.info("%s: connection closed (%s)", self.name, exc)
        except OSError as exc:
            logger.warning("%s: connection error: %s", self.name, exc)
        await self._on_disconnect(ws)

    async def _pinger(self, ws: Any) -> None:
        while True:
            await asyncio.sleep(self._ping_interval)
            try:
                await ws.ping()
            except (ConnectionClosed, OSError) as exc:
                logger.debug("%s: ping failed: %s", self.name, exc)
                return

    async def _on_disconnect(self, ws: Any) -> None:
        if ws is not self._ws:
            return
        if self._ping_task is not None:
            self._ping_task.cancel()
            self._ping_task = None
        await self._close_socket()
        self._state = StreamState.DISCONNECTED
        if self._running:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if not self._running or self.reconnect_pending:
            return
        logger.info("%s: reconnecting in %.1fs", self.name, self._reconnect_delay)
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect_later())

    async def _reconnect_later(self) -> None:
        await asyncio.sleep(self._reconnect_delay)
        self._reconnect_task = None
        if self._running:
            await self._connect()

    async def _close_socket(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except (ConnectionClosed, OSError) as exc:
            logger.debug("%s: close failed: %s", self.name, exc)
