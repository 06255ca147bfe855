"""Live price transports behind a single subscription handle.

WebSocketPriceStream reads Bybit v5 public spot tickers; PollingPriceStream
polls the REST ticker at a bounded interval. Both hand every price to the
callback as its own task, so the reader never waits on trading logic.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

import websockets

logger = logging.getLogger(__name__)

PriceCallback = Callable[[float], Awaitable[None]]


class PriceSubscription(ABC):
    """Handle for a running price stream. close() is idempotent.

    Transports implement _run(), the reader loop started by start().
    """

    def __init__(self, symbol: str, on_price: PriceCallback):
        self.symbol = symbol
        self._on_price = on_price
        self._task: asyncio.Task | None = None
        self._pending: set[asyncio.Task] = set()
        self.closed = False

    def start(self) -> "PriceSubscription":
        self._task = asyncio.create_task(self._run(), name=f"price-stream-{self.symbol}")
        return self

    def close(self):
        self.closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _dispatch(self, price: float):
        if self.closed:
            return
        task = asyncio.create_task(self._on_price(price))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @abstractmethod
    async def _run(self):
        ...


def bybit_topic(symbol: str) -> str:
    """Bybit ticker topic, e.g. BTC/USDT -> tickers.BTCUSDT."""
    return "tickers." + symbol.replace("/", "").split(":")[0]


def parse_ticker_message(raw: str | bytes, topic: str) -> float | None:
    """Extract lastPrice from a Bybit ticker frame, or None for other frames."""
    try:
        message = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Price stream: unparseable frame dropped")
        return None
    if message.get("topic") != topic:
        return None
    data = message.get("data") or {}
    try:
        price = float(data.get("lastPrice"))
    except (TypeError, ValueError):
        return None
    if price != price or price <= 0:  # NaN or non-positive
        return None
    return price


class WebSocketPriceStream(PriceSubscription):
    def __init__(self, symbol: str, on_price: PriceCallback, url: str, reconnect_seconds: float = 5.0):
        super().__init__(symbol, on_price)
        self.url = url
        self.reconnect_seconds = reconnect_seconds
        self.topic = bybit_topic(symbol)

    async def _run(self):
        while not self.closed:
            try:
                async with websockets.connect(
                    self.url,
                    ping_interval=20,
                    ping_timeout=20,
                    open_timeout=30,
                    close_timeout=5,
                ) as ws:
                    await ws.send(json.dumps({"op": "subscribe", "args": [self.topic]}))
                    logger.info(f"Price stream connected: {self.topic}")
                    async for raw in ws:
                        price = parse_ticker_message(raw, self.topic)
                        if price is not None:
                            self._dispatch(price)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Price stream {self.topic} dropped: {e}")
            if not self.closed:
                logger.info(f"Price stream {self.topic} reconnecting in {self.reconnect_seconds}s")
                await asyncio.sleep(self.reconnect_seconds)


class PollingPriceStream(PriceSubscription):
    """Fallback transport: poll a ticker coroutine every interval seconds."""

    def __init__(
        self,
        symbol: str,
        on_price: PriceCallback,
        fetch_last: Callable[[str], Awaitable[float]],
        interval_seconds: float = 5.0,
    ):
        super().__init__(symbol, on_price)
        self._fetch_last = fetch_last
        self.interval_seconds = interval_seconds

    async def _run(self):
        while not self.closed:
            try:
                price = await self._fetch_last(self.symbol)
                if price and price > 0:
                    self._dispatch(price)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Price poll for {self.symbol} failed: {e}")
            await asyncio.sleep(self.interval_seconds)
