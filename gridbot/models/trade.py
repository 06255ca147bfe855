"""Trade model — immutable record of every executed buy or sell."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class Trade(SQLModel, table=True):
    __tablename__ = "trade"

    id: int | None = Field(default=None, primary_key=True)
    bot_id: int = Field(foreign_key="bot.id", index=True)
    position_id: int | None = Field(default=None, foreign_key="position.id")
    symbol: str
    side: str  # "BUY" or "SELL"
    amount: float
    price: float
    total: float
    profit: float | None = None  # SELL only
    order_id: str | None = None  # None for simulated fills
    reason: str = "BUY"  # "BUY", "GRID_SELL", "STOP_LOSS", "TAKE_PROFIT", "TRAILING_STOP", "MANUAL"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
