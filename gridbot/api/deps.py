"""Shared API dependencies.

The supervisor and store are created in the application lifespan and kept
on app.state; routes reach them through these dependencies.
"""

from fastapi import HTTPException, Request, status

from gridbot.engine.errors import (
    BotNotFoundError,
    ExchangeConnectionError,
    OrderExecutionError,
    TradingError,
)
from gridbot.engine.supervisor import BotSupervisor
from gridbot.services.bot_store import BotStore


def get_supervisor(request: Request) -> BotSupervisor:
    return request.app.state.supervisor


def get_store(request: Request) -> BotStore:
    return request.app.state.store


def to_http_error(error: TradingError) -> HTTPException:
    """Map engine errors onto HTTP status codes."""
    if isinstance(error, BotNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, (ExchangeConnectionError, OrderExecutionError)):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(error))
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
