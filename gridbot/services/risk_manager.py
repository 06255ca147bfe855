"""Per-bot risk thresholds and daily loss bookkeeping.

Thresholds are disabled when their percentage is None or 0. The only state is
the daily loss accumulator, which resets at the next UTC midnight. Not
thread-safe; each engine owns its own instance.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable

logger = logging.getLogger(__name__)

DEFAULT_MIN_TRADE_SIZE = 1.10


@dataclass
class RiskConfig:
    stop_loss_percent: float | None = None
    take_profit_percent: float | None = None
    trailing_stop_percent: float | None = None
    max_positions: int | None = None
    max_daily_loss: float | None = None

    @classmethod
    def from_bot(cls, bot) -> "RiskConfig":
        return cls(
            stop_loss_percent=bot.stop_loss_percent,
            take_profit_percent=bot.take_profit_percent,
            trailing_stop_percent=bot.trailing_stop_percent,
            max_positions=bot.max_positions,
            max_daily_loss=bot.max_daily_loss,
        )


@dataclass
class TradeSizeCheck:
    valid: bool
    reason: str | None = None


@dataclass
class PositionRiskSummary:
    pnl: float
    pnl_percent: float
    stop_loss: float | None
    take_profit: float | None
    should_stop_loss: bool
    should_take_profit: bool


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _next_utc_midnight(now: datetime) -> datetime:
    tomorrow = (now + timedelta(days=1)).date()
    return datetime(tomorrow.year, tomorrow.month, tomorrow.day, tzinfo=timezone.utc)


class RiskManager:
    def __init__(self, config: RiskConfig | None = None, clock: Callable[[], datetime] = _utc_now):
        self.config = config or RiskConfig()
        self._clock = clock
        self._daily_loss = 0.0
        self._reset_at = _next_utc_midnight(clock())

    # -- thresholds ---------------------------------------------------------

    def stop_loss_price(self, entry_price: float) -> float | None:
        if not self.config.stop_loss_percent:
            return None
        return entry_price * (1 - self.config.stop_loss_percent / 100)

    def take_profit_price(self, entry_price: float) -> float | None:
        if not self.config.take_profit_percent:
            return None
        return entry_price * (1 + self.config.take_profit_percent / 100)

    def trailing_stop_price(self, highest_price: float) -> float | None:
        if not self.config.trailing_stop_percent:
            return None
        return highest_price * (1 - self.config.trailing_stop_percent / 100)

    def should_stop_loss(self, current_price: float, entry_price: float) -> bool:
        stop = self.stop_loss_price(entry_price)
        return stop is not None and current_price <= stop

    def should_take_profit(self, current_price: float, entry_price: float) -> bool:
        target = self.take_profit_price(entry_price)
        return target is not None and current_price >= target

    def should_trailing_stop(self, current_price: float, highest_price: float | None) -> bool:
        if not highest_price:
            return False
        stop = self.trailing_stop_price(highest_price)
        return stop is not None and current_price <= stop

    # -- limits -------------------------------------------------------------

    def can_open_position(self, current_count: int) -> bool:
        if not self.config.max_positions:
            return True
        return current_count < self.config.max_positions

    def validate_trade_size(
        self,
        trade_value: float,
        available_balance: float,
        min_trade_size: float = DEFAULT_MIN_TRADE_SIZE,
    ) -> TradeSizeCheck:
        if trade_value < min_trade_size:
            return TradeSizeCheck(
                False, f"Trade size (${trade_value:.2f}) below minimum (${min_trade_size})"
            )
        if trade_value > available_balance + 1e-9:  # float tolerance for clamped sizes
            return TradeSizeCheck(
                False,
                f"Insufficient balance. Required: ${trade_value:.2f}, "
                f"Available: ${available_balance:.2f}",
            )
        return TradeSizeCheck(True)

    def record_loss(self, amount: float) -> bool:
        """Add |amount| to today's loss. Returns False once trading must halt."""
        self._roll_day()
        self._daily_loss += abs(amount)

        limit = self.config.max_daily_loss
        if limit and self._daily_loss >= limit:
            logger.warning(f"Daily loss limit reached: ${self._daily_loss:.2f} / ${limit}")
            return False
        return True

    @property
    def daily_loss(self) -> float:
        self._roll_day()
        return self._daily_loss

    def _roll_day(self):
        now = self._clock()
        if now >= self._reset_at:
            self._daily_loss = 0.0
            self._reset_at = _next_utc_midnight(now)

    # -- reporting ----------------------------------------------------------

    @staticmethod
    def calculate_pnl(entry_price: float, amount: float, current_price: float) -> float:
        return (current_price - entry_price) * amount

    @staticmethod
    def calculate_pnl_percentage(entry_price: float, current_price: float) -> float:
        if not entry_price:
            return 0.0
        return (current_price - entry_price) / entry_price * 100

    def position_risk_summary(self, entry_price: float, amount: float, current_price: float) -> PositionRiskSummary:
        return PositionRiskSummary(
            pnl=self.calculate_pnl(entry_price, amount, current_price),
            pnl_percent=self.calculate_pnl_percentage(entry_price, current_price),
            stop_loss=self.stop_loss_price(entry_price),
            take_profit=self.take_profit_price(entry_price),
            should_stop_loss=self.should_stop_loss(current_price, entry_price),
            should_take_profit=self.should_take_profit(current_price, entry_price),
        )

    def update_config(self, **changes):
        self.config = replace(self.config, **changes)
