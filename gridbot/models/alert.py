"""Alert model — user-facing notifications raised by the engine."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class Alert(SQLModel, table=True):
    __tablename__ = "alert"

    id: int | None = Field(default=None, primary_key=True)
    bot_id: int = Field(foreign_key="bot.id", index=True)
    type: str  # see AlertType
    message: str
    is_read: bool = False
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
