"""Position model — one unit of exposure opened by a bot buy."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class Position(SQLModel, table=True):
    __tablename__ = "position"

    id: int | None = Field(default=None, primary_key=True)
    bot_id: int = Field(foreign_key="bot.id", index=True)
    symbol: str
    amount: float
    entry_price: float
    status: str = Field(default="OPEN", index=True)  # "OPEN" or "CLOSED"
    current_price: float | None = None
    pnl: float | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    closed_at: datetime | None = None
