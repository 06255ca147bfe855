"""BotLog model — append-only diagnostic log per bot."""

from datetime import datetime, timezone
from typing import Any

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON


class BotLog(SQLModel, table=True):
    __tablename__ = "bot_log"

    id: int | None = Field(default=None, primary_key=True)
    bot_id: int = Field(foreign_key="bot.id", index=True)
    level: str  # "INFO", "WARNING", "ERROR"
    message: str
    data: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
