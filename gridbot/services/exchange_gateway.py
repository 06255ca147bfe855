"""ccxt-backed exchange gateway for spot market orders and account queries.

ccxt's client is synchronous, so every call runs in the default executor and
is bounded by asyncio.wait_for. ccxt errors and timeouts are translated into
ExchangeConnectionError (queries) or OrderExecutionError (orders).
"""

import asyncio
import logging
from dataclasses import dataclass
from functools import partial

import ccxt

from gridbot.config import settings
from gridbot.engine.errors import ExchangeConnectionError, OrderExecutionError
from gridbot.services.price_stream import (
    PollingPriceStream,
    PriceCallback,
    PriceSubscription,
    WebSocketPriceStream,
)
from gridbot.utils.constants import BotMode

logger = logging.getLogger(__name__)


@dataclass
class Ticker:
    last: float
    high: float | None = None
    low: float | None = None
    volume: float | None = None


@dataclass
class Balance:
    free: float = 0.0
    used: float = 0.0
    total: float = 0.0


@dataclass
class OrderResult:
    id: str
    average_price: float | None = None
    price: float | None = None
    amount: float | None = None

    @property
    def fill_price(self) -> float | None:
        return self.average_price or self.price


def _float_or_none(value) -> float | None:
    return float(value) if value is not None else None


class ExchangeGateway:
    """Wrapper around a ccxt client for one bot's mode and credentials."""

    def __init__(
        self,
        mode: str = BotMode.DEMO,
        api_key: str | None = None,
        api_secret: str | None = None,
        timeout_seconds: float | None = None,
        client=None,
    ):
        self.mode = mode
        self.has_credentials = bool(api_key and api_secret)
        self.timeout_seconds = timeout_seconds or settings.exchange_timeout_seconds
        self._markets_loaded = False
        self.client = client or self._build_client(api_key, api_secret)

    def _build_client(self, api_key: str | None, api_secret: str | None):
        exchange_cls = getattr(ccxt, settings.exchange_id)
        client = exchange_cls({
            "apiKey": api_key,
            "secret": api_secret,
            "timeout": int(self.timeout_seconds * 1000),
            "enableRateLimit": True,
            "options": {"defaultType": "spot", "recvWindow": 20000},
        })
        # Bybit's unified demo account lives on its own host; testnet sandbox mode is a different venue
        if self.mode == BotMode.DEMO and self.has_credentials:
            demo = settings.demo_api_url
            api_urls = client.urls.get("api")
            if isinstance(api_urls, dict):
                client.urls["api"] = {key: demo for key in api_urls}
            else:
                client.urls["api"] = demo
            logger.info(f"Exchange gateway initialised for {self.mode} (demo host)")
        else:
            logger.info(f"Exchange gateway initialised for {self.mode}")
        return client

    @property
    def is_demo_host(self) -> bool:
        return self.mode == BotMode.DEMO and self.has_credentials

    async def _call(self, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(
            loop.run_in_executor(None, partial(fn, *args, **kwargs)),
            timeout=self.timeout_seconds,
        )

    async def validate_connection(self) -> bool:
        """Check reachability (and credentials, when present)."""
        try:
            await self._call(self.client.fetch_time)
            if self.has_credentials:
                await self._call(self.client.fetch_balance)
            return True
        except (ccxt.BaseError, asyncio.TimeoutError, OSError) as e:
            logger.error(f"Connection validation failed: {e}")
            return False

    async def get_ticker(self, symbol: str) -> Ticker:
        try:
            raw = await self._call(self.client.fetch_ticker, symbol)
        except (ccxt.BaseError, asyncio.TimeoutError, OSError) as e:
            raise ExchangeConnectionError(f"Ticker fetch for {symbol} failed: {e}") from e
        if raw.get("last") is None:
            raise ExchangeConnectionError(f"Ticker for {symbol} has no last price")
        return Ticker(
            last=float(raw["last"]),
            high=_float_or_none(raw.get("high")),
            low=_float_or_none(raw.get("low")),
            volume=_float_or_none(raw.get("baseVolume")),
        )

    async def get_last_price(self, symbol: str) -> float:
        return (await self.get_ticker(symbol)).last

    async def get_balance(self) -> dict[str, Balance]:
        if not self.has_credentials:
            raise ExchangeConnectionError("Balance requires API credentials")
        try:
            raw = await self._call(self.client.fetch_balance)
        except (ccxt.BaseError, asyncio.TimeoutError, OSError) as e:
            raise ExchangeConnectionError(f"Balance fetch failed: {e}") from e

        balances: dict[str, Balance] = {}
        for asset, entry in raw.items():
            if not isinstance(entry, dict) or "free" not in entry:
                continue
            balances[asset] = Balance(
                free=float(entry.get("free") or 0.0),
                used=float(entry.get("used") or 0.0),
                total=float(entry.get("total") or 0.0),
            )
        return balances

    async def _ensure_markets(self):
        if not self._markets_loaded:
            await self._call(self.client.load_markets)
            self._markets_loaded = True

    async def amount_to_precision(self, symbol: str, amount: float) -> float:
        try:
            await self._ensure_markets()
            return float(self.client.amount_to_precision(symbol, amount))
        except (ccxt.BaseError, asyncio.TimeoutError, OSError) as e:
            raise OrderExecutionError(f"Precision lookup for {symbol} failed: {e}") from e

    async def create_market_order(self, symbol: str, side: str, amount: float) -> OrderResult:
        """Submit a market order. side is "buy" or "sell"."""
        try:
            raw = await self._call(self.client.create_order, symbol, "market", side, amount)
        except (ccxt.BaseError, asyncio.TimeoutError, OSError) as e:
            logger.error(f"Market {side} {amount} {symbol} failed: {e}")
            raise OrderExecutionError(f"{side} order failed: {e}") from e

        order = OrderResult(
            id=str(raw.get("id")),
            average_price=_float_or_none(raw.get("average")),
            price=_float_or_none(raw.get("price")),
            amount=_float_or_none(raw.get("filled") or raw.get("amount")),
        )
        logger.info(f"Market {side} placed: {order.id} {amount} {symbol}")
        return order

    def subscribe_price_stream(self, symbol: str, on_price: PriceCallback) -> PriceSubscription:
        if settings.price_stream_mode == "poll":
            stream = PollingPriceStream(
                symbol, on_price, self.get_last_price, settings.poll_interval_seconds
            )
        else:
            url = settings.ws_demo_url if self.is_demo_host else settings.ws_public_url
            stream = WebSocketPriceStream(symbol, on_price, url, settings.ws_reconnect_seconds)
        return stream.start()

    async def close(self):
        """Release the HTTP session held by the ccxt client."""
        session = getattr(self.client, "session", None)
        if session is not None:
            try:
                session.close()
            except Exception as e:
                logger.debug(f"Exchange session close failed: {e}")


def build_gateway(bot) -> ExchangeGateway:
    """Authenticated gateway when the bot has credentials, public otherwise."""
    from gridbot.services.encryption import decrypt

    if bot.has_credentials:
        return ExchangeGateway(
            mode=bot.mode,
            api_key=decrypt(bot.api_key_encrypted),
            api_secret=decrypt(bot.api_secret_encrypted),
        )
    return ExchangeGateway(mode=bot.mode)
