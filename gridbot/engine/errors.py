"""Error taxonomy for the trading engine."""


class TradingError(Exception):
    """Base class for all engine errors."""


class BotNotFoundError(TradingError):
    def __init__(self, bot_id: int):
        super().__init__(f"Bot {bot_id} not found")
        self.bot_id = bot_id


class ExchangeConnectionError(TradingError):
    """Exchange unreachable, authentication failure or query timeout."""


class OrderExecutionError(TradingError):
    """Exchange rejected an order or did not answer in time."""


class InsufficientFundsError(TradingError):
    """Free balance cannot cover even the minimum trade size."""


class TradeValidationError(TradingError):
    """Trade size or state is not acceptable."""


class PersistenceError(TradingError):
    """A transactional write failed and was rolled back."""


class RiskLimitBreach(TradingError):
    """Daily loss or position count limit exceeded."""
