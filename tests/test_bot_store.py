"""Tests for BotStore transactional writes and queries."""

import pytest
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from gridbot.engine.errors import BotNotFoundError, PersistenceError, TradeValidationError
from gridbot.models import Alert, BotLog, Position, Trade


def test_record_buy_creates_position_and_trade(store, make_bot):
    bot = make_bot()
    position, trade = store.record_buy(bot.id, bot.symbol, 1.0, 100.0, order_id="abc")

    assert position.status == "OPEN"
    assert position.entry_price == 100.0
    assert trade.side == "BUY"
    assert trade.position_id == position.id
    assert trade.total == pytest.approx(100.0)
    assert trade.order_id == "abc"
    assert store.get_bot(bot.id).total_buys == 1


def test_record_buy_unknown_bot(store):
    with pytest.raises(BotNotFoundError):
        store.record_buy(999, "BTC/USDT", 1.0, 100.0)


def test_record_sell_closes_position(store, make_bot):
    bot = make_bot()
    position, _ = store.record_buy(bot.id, bot.symbol, 2.0, 100.0)

    trade = store.record_sell(bot.id, position.id, 103.0, "GRID_SELL")

    assert trade.side == "SELL"
    assert trade.profit == pytest.approx(6.0)
    assert trade.reason == "GRID_SELL"
    closed = store.get_position(position.id)
    assert closed.status == "CLOSED"
    assert closed.pnl == pytest.approx(6.0)
    assert closed.closed_at is not None
    updated = store.get_bot(bot.id)
    assert updated.total_sells == 1
    assert updated.total_profit == pytest.approx(6.0)


def test_record_sell_rejects_closed_position(store, make_bot):
    bot = make_bot()
    position, _ = store.record_buy(bot.id, bot.symbol, 1.0, 100.0)
    store.record_sell(bot.id, position.id, 103.0, "GRID_SELL")

    with pytest.raises(TradeValidationError):
        store.record_sell(bot.id, position.id, 104.0, "GRID_SELL")
    assert store.get_bot(bot.id).total_sells == 1


def test_record_buy_is_atomic(store, make_bot, db_engine):
    bot = make_bot()

    def _fail(mapper, connection, target):
        raise SQLAlchemyError("trade insert failed")

    event.listen(Trade, "before_insert", _fail)
    try:
        with pytest.raises(PersistenceError):
            store.record_buy(bot.id, bot.symbol, 1.0, 100.0)
    finally:
        event.remove(Trade, "before_insert", _fail)

    with Session(db_engine) as session:
        assert session.exec(select(Position)).all() == []
        assert session.exec(select(Trade)).all() == []
    assert store.get_bot(bot.id).total_buys == 0


def test_open_positions_oldest_first(store, make_bot):
    bot = make_bot()
    first, _ = store.record_buy(bot.id, bot.symbol, 1.0, 100.0)
    second, _ = store.record_buy(bot.id, bot.symbol, 1.0, 95.0)
    closed, _ = store.record_buy(bot.id, bot.symbol, 1.0, 90.0)
    store.record_sell(bot.id, closed.id, 95.0, "GRID_SELL")

    loaded, positions = store.get_bot_with_open_positions(bot.id)
    assert loaded.id == bot.id
    assert [p.id for p in positions] == [first.id, second.id]


def test_update_bot_unknown(store):
    with pytest.raises(BotNotFoundError):
        store.update_bot(42, status="RUNNING")


def test_trade_stats(store, make_bot):
    bot = make_bot()
    p1, _ = store.record_buy(bot.id, bot.symbol, 1.0, 100.0)
    p2, _ = store.record_buy(bot.id, bot.symbol, 1.0, 100.0)
    store.record_sell(bot.id, p1.id, 104.0, "GRID_SELL")
    store.record_sell(bot.id, p2.id, 98.0, "STOP_LOSS")

    stats = store.trade_stats(bot.id)
    assert stats["total_trades"] == 4
    assert stats["total_buys"] == 2
    assert stats["total_sells"] == 2
    assert stats["win_rate"] == 50.0
    assert stats["avg_profit"] == pytest.approx(1.0)
    assert stats["best_trade"] == pytest.approx(4.0)
    assert stats["worst_trade"] == pytest.approx(-2.0)


def test_trade_stats_empty(store, make_bot):
    stats = store.trade_stats(make_bot().id)
    assert stats["total_trades"] == 0
    assert stats["win_rate"] == 0.0


def test_delete_bot_cascades(store, make_bot, db_engine):
    bot = make_bot()
    other = make_bot(name="other")
    store.record_buy(bot.id, bot.symbol, 1.0, 100.0)
    store.record_buy(other.id, other.symbol, 1.0, 100.0)
    store.add_log(bot.id, "INFO", "hello")
    store.add_alert(bot.id, "ERROR", "boom")

    store.delete_bot(bot.id)

    assert store.get_bot(bot.id) is None
    with Session(db_engine) as session:
        for model in (Position, Trade, BotLog, Alert):
            assert session.exec(select(model).where(model.bot_id == bot.id)).all() == []
    assert len(store.list_positions(bot_id=other.id)) == 1


def test_logs_and_alerts(store, make_bot):
    bot = make_bot()
    store.add_log(bot.id, "ERROR", "order failed", {"order_id": "x1"})
    store.add_alert(bot.id, "ERROR", "order failed")

    logs = store.list_logs(bot_id=bot.id, level="ERROR")
    assert len(logs) == 1
    assert logs[0].data == {"order_id": "x1"}
    assert len(store.list_alerts(bot_id=bot.id, unread_only=True)) == 1


def test_mark_running_bots_stopped(store, make_bot):
    bot = make_bot(status="RUNNING")
    store.mark_running_bots_stopped([bot.id, 999])
    assert store.get_bot(bot.id).status == "STOPPED"
