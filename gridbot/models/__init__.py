"""Database models."""

from gridbot.models.bot import Bot
from gridbot.models.position import Position
from gridbot.models.trade import Trade
from gridbot.models.bot_log import BotLog
from gridbot.models.alert import Alert

__all__ = [
    "Bot",
    "Position",
    "Trade",
    "BotLog",
    "Alert",
]
