"""Shared constants for bot, position, trade and alert states."""


class BotStatus:
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"


class BotMode:
    DEMO = "DEMO"  # paper trading, fills are simulated at the tick price
    REAL = "REAL"


class PositionStatus:
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class TradeSide:
    BUY = "BUY"
    SELL = "SELL"


class ExitReason:
    STOP_LOSS = "STOP_LOSS"
    TAKE_PROFIT = "TAKE_PROFIT"
    TRAILING_STOP = "TRAILING_STOP"
    GRID_SELL = "GRID_SELL"
    MANUAL = "MANUAL"


class AlertType:
    STOP_LOSS = "STOP_LOSS"
    TAKE_PROFIT = "TAKE_PROFIT"
    TRAILING_STOP = "TRAILING_STOP"
    POSITION_LIMIT = "POSITION_LIMIT"
    DAILY_LOSS_LIMIT = "DAILY_LOSS_LIMIT"
    ERROR = "ERROR"


class LogLevel:
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


VALID_MODES = [BotMode.DEMO, BotMode.REAL]

# Alert types that mirror an exit reason
EXIT_ALERTS: dict[str, str] = {
    ExitReason.STOP_LOSS: AlertType.STOP_LOSS,
    ExitReason.TAKE_PROFIT: AlertType.TAKE_PROFIT,
    ExitReason.TRAILING_STOP: AlertType.TRAILING_STOP,
}
