"""Tests for ExchangeGateway response mapping and error translation."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import ccxt
import pytest

from gridbot.engine.errors import ExchangeConnectionError, OrderExecutionError
from gridbot.services.exchange_gateway import ExchangeGateway, build_gateway
from gridbot.services.encryption import encrypt


def _gateway(has_credentials=True, **client_attrs):
    client = MagicMock(**client_attrs)
    key = "key" if has_credentials else None
    return ExchangeGateway(mode="REAL", api_key=key, api_secret=key, timeout_seconds=1, client=client)


@pytest.mark.asyncio
async def test_get_ticker():
    gateway = _gateway(**{"fetch_ticker.return_value": {"last": 101.5, "high": 110, "low": None}})
    ticker = await gateway.get_ticker("BTC/USDT")
    assert ticker.last == 101.5
    assert ticker.high == 110.0
    assert ticker.low is None


@pytest.mark.asyncio
async def test_get_ticker_network_error():
    gateway = _gateway(**{"fetch_ticker.side_effect": ccxt.NetworkError("down")})
    with pytest.raises(ExchangeConnectionError):
        await gateway.get_ticker("BTC/USDT")


@pytest.mark.asyncio
async def test_get_balance_requires_credentials():
    with pytest.raises(ExchangeConnectionError):
        await _gateway(has_credentials=False).get_balance()


@pytest.mark.asyncio
async def test_get_balance_parses_assets():
    raw = {
        "USDT": {"free": 50.0, "used": 10.0, "total": 60.0},
        "info": {"retCode": 0},
        "free": {"USDT": 50.0},
    }
    gateway = _gateway(**{"fetch_balance.return_value": raw})
    balances = await gateway.get_balance()
    assert set(balances) == {"USDT"}
    assert balances["USDT"].free == 50.0


@pytest.mark.asyncio
async def test_create_market_order():
    gateway = _gateway(**{"create_order.return_value": {"id": 123, "average": "100.5", "price": None, "filled": 1.0}})
    order = await gateway.create_market_order("BTC/USDT", "buy", 1.0)
    assert order.id == "123"
    assert order.fill_price == 100.5
    gateway.client.create_order.assert_called_once_with("BTC/USDT", "market", "buy", 1.0)


@pytest.mark.asyncio
async def test_create_market_order_rejected():
    gateway = _gateway(**{"create_order.side_effect": ccxt.InsufficientFunds("no funds")})
    with pytest.raises(OrderExecutionError):
        await gateway.create_market_order("BTC/USDT", "sell", 1.0)


@pytest.mark.asyncio
async def test_amount_to_precision_loads_markets_once():
    gateway = _gateway(**{"amount_to_precision.return_value": "0.123"})
    assert await gateway.amount_to_precision("BTC/USDT", 0.12345) == 0.123
    await gateway.amount_to_precision("BTC/USDT", 0.5)
    gateway.client.load_markets.assert_called_once()


@pytest.mark.asyncio
async def test_validate_connection_failure():
    gateway = _gateway(**{"fetch_time.side_effect": ccxt.ExchangeNotAvailable("maintenance")})
    assert await gateway.validate_connection() is False


def test_demo_with_credentials_uses_demo_host():
    gateway = ExchangeGateway(mode="DEMO", api_key="k", api_secret="s")
    assert gateway.is_demo_host is True
    assert all("api-demo.bybit.com" in url for url in gateway.client.urls["api"].values())


def test_build_gateway_decrypts_credentials():
    bot = SimpleNamespace(
        mode="REAL",
        has_credentials=True,
        api_key_encrypted=encrypt("my-key"),
        api_secret_encrypted=encrypt("my-secret"),
    )
    gateway = build_gateway(bot)
    assert gateway.has_credentials is True
    assert gateway.client.apiKey == "my-key"
    assert gateway.client.secret == "my-secret"
