import os

# Must be set before gridbot.config is imported
os.environ.setdefault("GB_DATABASE_URL", "sqlite://")
os.environ.setdefault("GB_ENCRYPTION_KEY", "YWFhYWFhYWFhYWFhYWFhYWFhYWFhYWFhYWFhYWFhYWE=")

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

import gridbot.models  # noqa: F401
from gridbot.models import Bot
from gridbot.services.bot_store import BotStore
from gridbot.services.exchange_gateway import ExchangeGateway


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(db_engine):
    return BotStore(db_engine)


@pytest.fixture
def make_bot(store):
    def _make(**overrides) -> Bot:
        fields = dict(
            name="test grid",
            symbol="BTC/USDT",
            mode="DEMO",
            capital=1000.0,
            buy_percentage=10.0,
            buy_drop_percent=5.0,
            sell_profit_percent=3.0,
        )
        fields.update(overrides)
        return store.create_bot(Bot(**fields))

    return _make


def make_gateway(has_credentials: bool = False, balances=None) -> AsyncMock:
    """ExchangeGateway double. Coroutine methods are AsyncMocks, subscribe_price_stream a MagicMock."""
    gateway = AsyncMock(spec=ExchangeGateway)
    gateway.has_credentials = has_credentials
    gateway.validate_connection.return_value = True
    gateway.amount_to_precision.side_effect = lambda symbol, amount: amount
    gateway.get_balance.return_value = balances or {}
    gateway.subscribe_price_stream.return_value = MagicMock()
    return gateway


@pytest.fixture
def gateway():
    return make_gateway()
