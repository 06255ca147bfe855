"""Transactional persistence for bots, positions, trades, logs and alerts.

Every write that the engine depends on (buy, sell, manual close) runs in a
single session with a single commit, so readers never see a Trade without
its Position or a counter change without the row behind it.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from gridbot.engine.errors import BotNotFoundError, PersistenceError, TradeValidationError
from gridbot.models import Alert, Bot, BotLog, Position, Trade
from gridbot.utils.constants import BotStatus, PositionStatus, TradeSide

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class BotStore:
    def __init__(self, engine=None):
        if engine is None:
            from gridbot.database import engine as default_engine
            engine = default_engine
        self.engine = engine

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    # -- bots ---------------------------------------------------------------

    def get_bot(self, bot_id: int) -> Bot | None:
        with self._session() as session:
            return session.get(Bot, bot_id)

    def get_bot_with_open_positions(self, bot_id: int) -> tuple[Bot | None, list[Position]]:
        """Bot row plus its OPEN positions, oldest first."""
        with self._session() as session:
            bot = session.get(Bot, bot_id)
            if bot is None:
                return None, []
            positions = session.exec(
                select(Position)
                .where(Position.bot_id == bot_id, Position.status == PositionStatus.OPEN)
                .order_by(Position.created_at, Position.id)
            ).all()
            return bot, list(positions)

    def list_bots(self) -> list[Bot]:
        with self._session() as session:
            return list(session.exec(select(Bot).order_by(Bot.id)).all())

    def list_bots_by_status(self, status: str) -> list[Bot]:
        with self._session() as session:
            return list(session.exec(select(Bot).where(Bot.status == status)).all())

    def create_bot(self, bot: Bot) -> Bot:
        with self._session() as session:
            session.add(bot)
            session.commit()
            session.refresh(bot)
            return bot

    def update_bot(self, bot_id: int, **fields: Any) -> Bot:
        try:
            with self._session() as session:
                bot = session.get(Bot, bot_id)
                if bot is None:
                    raise BotNotFoundError(bot_id)
                for key, value in fields.items():
                    setattr(bot, key, value)
                bot.updated_at = _now()
                session.add(bot)
                session.commit()
                return bot
        except SQLAlchemyError as e:
            raise PersistenceError(f"Bot {bot_id} update failed: {e}") from e

    def delete_bot(self, bot_id: int):
        """Delete a bot with its logs, alerts, trades and positions in one transaction."""
        try:
            with self._session() as session:
                bot = session.get(Bot, bot_id)
                if bot is None:
                    raise BotNotFoundError(bot_id)
                for model in (BotLog, Alert, Trade, Position):
                    for row in session.exec(select(model).where(model.bot_id == bot_id)).all():
                        session.delete(row)
                    session.flush()
                session.delete(bot)
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Bot {bot_id} delete failed: {e}") from e

    # -- trades -------------------------------------------------------------

    def record_buy(
        self,
        bot_id: int,
        symbol: str,
        amount: float,
        price: float,
        order_id: str | None = None,
    ) -> tuple[Position, Trade]:
        """Create Position(OPEN) + Trade(BUY) and bump total_buys atomically."""
        try:
            with self._session() as session:
                bot = session.exec(select(Bot).where(Bot.id == bot_id).with_for_update()).first()
                if bot is None:
                    raise BotNotFoundError(bot_id)

                position = Position(
                    bot_id=bot_id,
                    symbol=symbol,
                    amount=amount,
                    entry_price=price,
                    status=PositionStatus.OPEN,
                )
                session.add(position)
                session.flush()

                trade = Trade(
                    bot_id=bot_id,
                    position_id=position.id,
                    symbol=symbol,
                    side=TradeSide.BUY,
                    amount=amount,
                    price=price,
                    total=amount * price,
                    order_id=order_id,
                    reason="BUY",
                )
                session.add(trade)

                bot.total_buys += 1
                bot.last_activity_at = _now()
                bot.updated_at = _now()
                session.add(bot)

                session.commit()
                return position, trade
        except SQLAlchemyError as e:
            raise PersistenceError(f"Buy for bot {bot_id} not recorded: {e}") from e

    def record_sell(
        self,
        bot_id: int,
        position_id: int,
        price: float,
        reason: str,
        order_id: str | None = None,
    ) -> Trade:
        """Close the position, create Trade(SELL) and bump profit/sell counters atomically.

        Profit is (price - entry_price) * amount of the stored position.
        """
        try:
            with self._session() as session:
                bot = session.exec(select(Bot).where(Bot.id == bot_id).with_for_update()).first()
                if bot is None:
                    raise BotNotFoundError(bot_id)
                position = session.get(Position, position_id)
                if position is None or position.bot_id != bot_id:
                    raise TradeValidationError(f"Position {position_id} not found for bot {bot_id}")
                if position.status != PositionStatus.OPEN:
                    raise TradeValidationError(f"Position {position_id} is already closed")

                profit = (price - position.entry_price) * position.amount
                position.status = PositionStatus.CLOSED
                position.current_price = price
                position.pnl = profit
                position.closed_at = _now()
                session.add(position)

                trade = Trade(
                    bot_id=bot_id,
                    position_id=position.id,
                    symbol=position.symbol,
                    side=TradeSide.SELL,
                    amount=position.amount,
                    price=price,
                    total=position.amount * price,
                    profit=profit,
                    order_id=order_id,
                    reason=reason,
                )
                session.add(trade)

                bot.total_profit += profit
                bot.total_sells += 1
                bot.last_activity_at = _now()
                bot.updated_at = _now()
                session.add(bot)

                session.commit()
                return trade
        except SQLAlchemyError as e:
            raise PersistenceError(f"Sell of position {position_id} not recorded: {e}") from e

    def get_position(self, position_id: int) -> Position | None:
        with self._session() as session:
            return session.get(Position, position_id)

    def list_positions(self, bot_id: int | None = None, status: str | None = None) -> list[Position]:
        with self._session() as session:
            stmt = select(Position).order_by(Position.created_at.desc())
            if bot_id is not None:
                stmt = stmt.where(Position.bot_id == bot_id)
            if status is not None:
                stmt = stmt.where(Position.status == status)
            return list(session.exec(stmt).all())

    def list_trades(self, bot_id: int | None = None, limit: int = 50, offset: int = 0) -> list[Trade]:
        with self._session() as session:
            stmt = select(Trade).order_by(Trade.timestamp.desc(), Trade.id.desc())
            if bot_id is not None:
                stmt = stmt.where(Trade.bot_id == bot_id)
            return list(session.exec(stmt.offset(offset).limit(limit)).all())

    def trade_stats(self, bot_id: int) -> dict:
        """Aggregate realised trade statistics for one bot."""
        with self._session() as session:
            trades = session.exec(select(Trade).where(Trade.bot_id == bot_id)).all()

        sells = [t for t in trades if t.side == TradeSide.SELL]
        profits = [t.profit for t in sells if t.profit is not None]
        winning = [p for p in profits if p > 0]
        return {
            "total_trades": len(trades),
            "total_buys": sum(1 for t in trades if t.side == TradeSide.BUY),
            "total_sells": len(sells),
            "win_rate": round(len(winning) / len(sells) * 100, 2) if sells else 0.0,
            "avg_profit": round(sum(profits) / len(profits), 2) if profits else 0.0,
            "best_trade": round(max(profits), 2) if profits else 0.0,
            "worst_trade": round(min(profits), 2) if profits else 0.0,
        }

    # -- logs and alerts ----------------------------------------------------

    def add_log(self, bot_id: int, level: str, message: str, data: dict | None = None):
        with self._session() as session:
            session.add(BotLog(bot_id=bot_id, level=level, message=message, data=data))
            session.commit()

    def add_alert(self, bot_id: int, alert_type: str, message: str):
        with self._session() as session:
            session.add(Alert(bot_id=bot_id, type=alert_type, message=message))
            session.commit()

    def list_logs(
        self,
        bot_id: int | None = None,
        level: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[BotLog]:
        with self._session() as session:
            stmt = select(BotLog).order_by(BotLog.timestamp.desc(), BotLog.id.desc())
            if bot_id is not None:
                stmt = stmt.where(BotLog.bot_id == bot_id)
            if level is not None:
                stmt = stmt.where(BotLog.level == level)
            return list(session.exec(stmt.offset(offset).limit(limit)).all())

    def list_alerts(self, bot_id: int | None = None, unread_only: bool = False, limit: int = 100) -> list[Alert]:
        with self._session() as session:
            stmt = select(Alert).order_by(Alert.timestamp.desc(), Alert.id.desc())
            if bot_id is not None:
                stmt = stmt.where(Alert.bot_id == bot_id)
            if unread_only:
                stmt = stmt.where(Alert.is_read == False)  # noqa: E712
            return list(session.exec(stmt.limit(limit)).all())

    def mark_running_bots_stopped(self, bot_ids: list[int]):
        """Force RUNNING rows whose engine could not be started back to STOPPED."""
        for bot_id in bot_ids:
            try:
                self.update_bot(bot_id, status=BotStatus.STOPPED, started_at=None)
            except (BotNotFoundError, PersistenceError) as e:
                logger.error(f"Could not mark bot {bot_id} stopped: {e}")
