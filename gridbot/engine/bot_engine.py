"""Per-bot trading engine.

One BotEngine runs per started bot. It subscribes to the bot's price stream
and, for every tick it accepts:

1. reloads the bot row and its OPEN positions (oldest first)
2. raises highest_price for the trailing stop
3. checks each position: stop-loss → take-profit → trailing-stop → grid sell
4. makes at most one grid buy decision
5. stores last_price

Exchange orders are always submitted before the matching database
transaction, and the transaction is skipped when the order fails. A tick that
arrives while the previous one is still being processed is dropped.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable

from gridbot.config import settings
from gridbot.engine import scheduler as heartbeat
from gridbot.engine.errors import (
    BotNotFoundError,
    ExchangeConnectionError,
    InsufficientFundsError,
    OrderExecutionError,
    PersistenceError,
    RiskLimitBreach,
    TradeValidationError,
    TradingError,
)
from gridbot.models import Bot, Position, Trade
from gridbot.services import grid_strategy
from gridbot.services.bot_store import BotStore
from gridbot.services.exchange_gateway import ExchangeGateway, build_gateway
from gridbot.services.risk_manager import RiskConfig, RiskManager
from gridbot.utils.constants import (
    EXIT_ALERTS,
    AlertType,
    BotMode,
    BotStatus,
    ExitReason,
    LogLevel,
    PositionStatus,
)

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


def _utc(dt: datetime) -> datetime:
    # SQLite hands datetimes back naive; they were written as UTC
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def quote_currency(symbol: str) -> str:
    """Quote asset of a ccxt symbol, e.g. BTC/USDT -> USDT and BTC/USDT:USDT -> USDT."""
    if "/" not in symbol:
        return settings.quote_currency_fallback
    return symbol.split("/", 1)[1].split(":")[0]


def _default_notifier(message: str):
    from gridbot.services.telegram_bot import notify
    notify(message)


class BotEngine:
    def __init__(
        self,
        bot_id: int,
        store: BotStore,
        gateway_factory: Callable[[Bot], ExchangeGateway] = build_gateway,
        scheduler=None,
        notifier: Callable[[str], None] | None = _default_notifier,
        on_stopped: Callable[[int], None] | None = None,
    ):
        self.bot_id = bot_id
        self.store = store
        self.gateway_factory = gateway_factory
        self.scheduler = scheduler
        self.notifier = notifier
        self.on_stopped = on_stopped

        self.running = False
        self.gateway: ExchangeGateway | None = None
        self.risk = RiskManager()
        self.name = f"bot_{bot_id}"
        self._subscription = None
        self._tick_lock = asyncio.Lock()
        self.dropped_ticks = 0

    # -- lifecycle ----------------------------------------------------------

    async def start(self):
        """Connect, mark RUNNING, subscribe to prices and start the heartbeat.

        Raises BotNotFoundError or ExchangeConnectionError; the bot is not
        marked RUNNING in either case.
        """
        if self.running:
            return

        bot = self.store.get_bot(self.bot_id)
        if bot is None:
            raise BotNotFoundError(self.bot_id)
        self.name = bot.name or f"bot_{bot.id}"

        self.risk = RiskManager(RiskConfig.from_bot(bot))

        try:
            gateway = self.gateway_factory(bot)
        except (ValueError, RuntimeError, TradingError) as e:
            self._log(LogLevel.ERROR, f"Could not build exchange client: {e}")
            raise ExchangeConnectionError(str(e)) from e

        if gateway.has_credentials:
            if not await gateway.validate_connection():
                self._log(LogLevel.ERROR, "Failed to connect to exchange")
                await gateway.close()
                raise ExchangeConnectionError(f"Bot {self.bot_id}: failed to connect to exchange")
            self._log(LogLevel.INFO, f"Connected to {bot.mode} mode successfully")
        else:
            self._log(LogLevel.WARNING, "No API keys configured - public data only")

        try:
            self.store.update_bot(self.bot_id, status=BotStatus.RUNNING)
        except TradingError:
            await gateway.close()
            raise

        self.gateway = gateway
        self.running = True
        self._log(LogLevel.INFO, f"Bot starting in {bot.mode} mode for {bot.symbol}")

        self._subscription = gateway.subscribe_price_stream(bot.symbol, self.on_price_update)
        heartbeat.add_heartbeat_job(
            self.bot_id, self._heartbeat, settings.heartbeat_seconds, self.scheduler
        )

    async def stop(self):
        """Close the stream and heartbeat, then persist STOPPED and accumulated runtime.

        A no-op when the engine is not running. An in-flight tick is not
        aborted; it finishes and no further ticks are accepted.
        """
        if not self.running:
            return
        self.running = False

        heartbeat.remove_heartbeat_job(self.bot_id, self.scheduler)
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

        try:
            bot = self.store.get_bot(self.bot_id)
            fields = {"status": BotStatus.STOPPED, "started_at": None}
            if bot is not None and bot.started_at:
                elapsed = datetime.now(timezone.utc) - _utc(bot.started_at)
                fields["total_runtime_seconds"] = bot.total_runtime_seconds + max(
                    0, int(elapsed.total_seconds())
                )
            if bot is not None:
                self.store.update_bot(self.bot_id, **fields)
        except TradingError as e:
            logger.error(f"[{self.name}] Could not persist stop: {e}")

        if self.gateway is not None:
            await self.gateway.close()
            self.gateway = None

        self._log(LogLevel.INFO, "Bot stopped")
        if self.on_stopped is not None:
            self.on_stopped(self.bot_id)

    async def _heartbeat(self):
        if not self.running:
            return
        try:
            self.store.update_bot(self.bot_id, last_activity_at=datetime.now(timezone.utc))
        except TradingError as e:
            logger.error(f"[{self.name}] Heartbeat error: {e}")

    # -- tick processing ----------------------------------------------------

    async def on_price_update(self, price: float):
        """Entry point for every inbound price. Overlapping ticks are dropped."""
        if not self.running:
            return
        if self._tick_lock.locked():
            self.dropped_ticks += 1
            logger.debug(f"[{self.name}] Dropping tick {price}: previous tick still in progress")
            return

        async with self._tick_lock:
            if not self.running:
                return
            try:
                await self._evaluate(price)
            except Exception as e:
                logger.error(f"[{self.name}] Strategy execution error: {e}", exc_info=True)
                self._log(LogLevel.ERROR, f"Strategy execution error: {e}")

    async def _evaluate(self, price: float):
        bot, positions = self.store.get_bot_with_open_positions(self.bot_id)
        if bot is None or not bot.is_active:
            self._log(LogLevel.WARNING, "Bot is inactive or removed, stopping engine")
            await self.stop()
            return

        highest = max(bot.highest_price or 0.0, price)
        if highest > (bot.highest_price or 0.0):
            self.store.update_bot(bot.id, highest_price=highest)

        for position in positions:
            reason = self._exit_reason(bot, position, price, highest)
            if reason is None:
                continue
            self._announce_exit(position, price, reason)
            await self._sell(bot, position, price, reason)
            if not self.running:
                return

        # Buy decision uses the open positions as loaded at the start of the tick
        last_entry = positions[-1].entry_price if positions else None
        if grid_strategy.should_buy(price, last_entry, bot.buy_drop_percent):
            await self._try_buy(bot, positions, price)
            if not self.running:
                return

        self.store.update_bot(bot.id, last_price=price)

    def _exit_reason(self, bot: Bot, position: Position, price: float, highest: float) -> str | None:
        if self.risk.should_stop_loss(price, position.entry_price):
            return ExitReason.STOP_LOSS
        if self.risk.should_take_profit(price, position.entry_price):
            return ExitReason.TAKE_PROFIT
        if self.risk.should_trailing_stop(price, highest):
            return ExitReason.TRAILING_STOP
        if grid_strategy.should_sell(price, position.entry_price, bot.sell_profit_percent):
            return ExitReason.GRID_SELL
        return None

    def _announce_exit(self, position: Position, price: float, reason: str):
        pnl = self.risk.calculate_pnl(position.entry_price, position.amount, price)
        if reason == ExitReason.GRID_SELL:
            self._log(
                LogLevel.INFO,
                f"Grid sell triggered for position {position.id} at {price} (Profit target reached)",
            )
            return
        level = LogLevel.WARNING if reason == ExitReason.STOP_LOSS else LogLevel.INFO
        label = reason.replace("_", " ").lower()
        self._log(level, f"{label.capitalize()} triggered for position {position.id} at {price}")
        self._alert(EXIT_ALERTS[reason], f"{label.capitalize()} triggered at ${price:.2f}. P&L: ${pnl:.2f}")

    # -- buy ----------------------------------------------------------------

    async def _available_balance(self, bot: Bot) -> float:
        """Free quote balance from the exchange, or the configured capital.

        Capital is used only when there is no authenticated gateway or the
        balance query fails. An asset missing from a successful query is a
        zero balance.
        """
        if self.gateway is None or not self.gateway.has_credentials:
            return bot.capital
        try:
            balances = await self.gateway.get_balance()
        except ExchangeConnectionError as e:
            self._log(LogLevel.ERROR, f"Failed to verify exchange balance: {e}")
            return bot.capital
        quote = quote_currency(bot.symbol)
        if quote not in balances:
            return 0.0
        return balances[quote].free

    async def _plan_buy(self, bot: Bot, positions: list[Position], price: float) -> float:
        """Amount to buy at price.

        Raises RiskLimitBreach, InsufficientFundsError, OrderExecutionError
        (precision lookup) or TradeValidationError when no buy should happen.
        """
        if not self.risk.can_open_position(len(positions)):
            raise RiskLimitBreach(f"Position limit reached ({len(positions)}/{bot.max_positions})")

        available = await self._available_balance(bot)
        min_size = settings.min_trade_size

        trade_value = bot.capital * (bot.buy_percentage / 100)
        sizing_capital = bot.capital
        if trade_value > available:
            if available < min_size:
                raise InsufficientFundsError(
                    f"Insufficient balance (${available:.2f}) to open new position even at minimum size."
                )
            self._log(
                LogLevel.WARNING,
                f"Available balance (${available:.2f}) is less than target trade size "
                f"(${trade_value:.2f}). Using remaining balance instead.",
            )
            # size against the clamped value
            sizing_capital = available / (bot.buy_percentage / 100)

        amount = grid_strategy.position_size(sizing_capital, bot.buy_percentage, price)
        if self.gateway is not None:
            amount = await self.gateway.amount_to_precision(bot.symbol, amount)

        check = self.risk.validate_trade_size(amount * price, available, min_size)
        if not check.valid:
            raise TradeValidationError(check.reason)
        return amount

    async def _try_buy(self, bot: Bot, positions: list[Position], price: float) -> Trade | None:
        if not positions:
            self._log(LogLevel.INFO, f"Initial buy triggered for {bot.symbol} at market price")

        try:
            amount = await self._plan_buy(bot, positions, price)
        except RiskLimitBreach as e:
            self._log(LogLevel.WARNING, str(e))
            self._alert(AlertType.POSITION_LIMIT, f"Maximum positions ({bot.max_positions}) reached")
            return None
        except InsufficientFundsError as e:
            self._log(LogLevel.ERROR, str(e))
            return None
        except OrderExecutionError as e:
            self._log(LogLevel.ERROR, f"Trade failed: {e}")
            self._alert(AlertType.ERROR, f"Failed to prepare buy order: {e}")
            return None
        except TradeValidationError as e:
            self._log(LogLevel.WARNING, f"Trade validation failed: {e}")
            return None

        order_id = None
        fill_price = price
        if bot.mode == BotMode.REAL:
            order = await self._submit_order(bot, "buy", amount, price)
            if order is None:
                return None
            order_id = order.id
            fill_price = order.fill_price or price

        try:
            _, trade = self.store.record_buy(bot.id, bot.symbol, amount, fill_price, order_id)
        except (PersistenceError, BotNotFoundError) as e:
            self._record_failure("buy", e, order_id, amount, fill_price)
            return None

        self._log(
            LogLevel.INFO,
            f"[{bot.mode}] Bought {amount:.6f} {bot.symbol} at ${fill_price:.2f} "
            f"(Total: ${amount * fill_price:.2f})",
        )
        return trade

    # -- sell ---------------------------------------------------------------

    async def _sell(
        self,
        bot: Bot,
        position: Position,
        price: float,
        reason: str,
        gateway: ExchangeGateway | None = None,
    ) -> Trade | None:
        order_id = None
        fill_price = price
        if bot.mode == BotMode.REAL:
            order = await self._submit_order(bot, "sell", position.amount, price, reason, gateway)
            if order is None:
                return None
            order_id = order.id
            fill_price = order.fill_price or price

        profit = (fill_price - position.entry_price) * position.amount
        halt = profit < 0 and not self.risk.record_loss(profit)

        trade = None
        try:
            trade = self.store.record_sell(bot.id, position.id, fill_price, reason, order_id)
        except (PersistenceError, TradeValidationError, BotNotFoundError) as e:
            self._record_failure("sell", e, order_id, position.amount, fill_price)
        else:
            self._log(
                LogLevel.INFO,
                f"[{bot.mode}] Sold {position.amount:.6f} {bot.symbol} at ${fill_price:.2f} "
                f"({reason}) - Profit: ${profit:.2f}",
            )

        if halt:
            loss = self.risk.daily_loss
            self._log(LogLevel.ERROR, "Daily loss limit reached - stopping bot")
            self._alert(
                AlertType.DAILY_LOSS_LIMIT,
                f"Daily loss limit reached. Bot stopped. Loss: ${loss:.2f}",
            )
            await self.stop()
        return trade

    async def close_position(self, position_id: int, price: float | None = None) -> Trade:
        """Manually close one OPEN position, waiting for any in-flight tick first.

        Uses the running gateway when there is one, otherwise a temporary one.
        Raises TradeValidationError when the position is missing or closed and
        OrderExecutionError when the close did not go through.
        """
        async with self._tick_lock:
            bot = self.store.get_bot(self.bot_id)
            if bot is None:
                raise BotNotFoundError(self.bot_id)
            position = self.store.get_position(position_id)
            if position is None or position.bot_id != self.bot_id:
                raise TradeValidationError(f"Position {position_id} not found")
            if position.status != PositionStatus.OPEN:
                raise TradeValidationError(f"Position {position_id} already closed")

            gateway = self.gateway
            owned = gateway is None
            if owned:
                gateway = self.gateway_factory(bot)
            try:
                if price is None:
                    try:
                        price = await gateway.get_last_price(bot.symbol)
                    except ExchangeConnectionError as e:
                        logger.warning(f"[{self.name}] Ticker unavailable for manual close: {e}")
                        price = position.entry_price

                trade = await self._sell(bot, position, price, ExitReason.MANUAL, gateway)
            finally:
                if owned:
                    await gateway.close()

        if trade is None:
            raise OrderExecutionError(f"Position {position_id} could not be closed; see bot log")
        self._log(
            LogLevel.INFO,
            f"Position manually closed at ${trade.price:.2f}. Profit: ${trade.profit:.2f}",
        )
        return trade

    # -- helpers ------------------------------------------------------------

    async def _submit_order(
        self,
        bot: Bot,
        side: str,
        amount: float,
        price: float,
        reason: str | None = None,
        gateway: ExchangeGateway | None = None,
    ):
        """Place a REAL market order. Returns None (after logging and alerting) on failure."""
        if gateway is None:
            # Tick path; stop() releases self.gateway
            if not self.running:
                self._log(LogLevel.INFO, f"Engine stopped; {side} order not submitted")
                return None
            gateway = self.gateway
        if gateway is None or not gateway.has_credentials:
            self._log(LogLevel.ERROR, f"REAL {side} skipped: no authenticated exchange connection")
            self._alert(AlertType.ERROR, f"Cannot execute {side} order without API credentials")
            return None

        context = f" ({reason})" if reason else ""
        self._log(
            LogLevel.INFO,
            f"Executing REAL {side.upper()} order: {amount} {bot.symbol} at ~${price:.2f}{context}",
        )
        try:
            order = await gateway.create_market_order(bot.symbol, side, amount)
        except OrderExecutionError as e:
            self._log(LogLevel.ERROR, f"Real {side} order failed: {e}")
            self._alert(AlertType.ERROR, f"Failed to execute {side} order: {e}")
            return None

        self._log(LogLevel.INFO, f"Order executed successfully. Order ID: {order.id}")
        return order

    def _record_failure(self, side: str, error: Exception, order_id, amount: float, price: float):
        # The exchange may hold a fill the database does not; surface it loudly
        self._log(
            LogLevel.ERROR,
            f"Failed to record {side} in database: {error}",
            data={"order_id": order_id, "amount": amount, "price": price},
        )
        if order_id is not None:
            self._alert(
                AlertType.ERROR,
                f"{side.capitalize()} order {order_id} executed but was not recorded. Manual review required.",
            )

    def _log(self, level: str, message: str, data: dict | None = None):
        logger.log(_LOG_LEVELS.get(level, logging.INFO), f"[{self.name}] {message}")
        try:
            self.store.add_log(self.bot_id, level, message, data)
        except Exception as e:
            logger.error(f"[{self.name}] Failed to log to database: {e}")

    def _alert(self, alert_type: str, message: str):
        try:
            self.store.add_alert(self.bot_id, alert_type, message)
        except Exception as e:
            logger.error(f"[{self.name}] Failed to create alert: {e}")
        if self.notifier is not None:
            try:
                self.notifier(f"[{self.name}] {alert_type}: {message}")
            except Exception as e:
                logger.warning(f"[{self.name}] Alert notification failed: {e}")
