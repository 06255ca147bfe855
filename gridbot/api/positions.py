"""Positions API — listing and manual close."""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from gridbot.api.deps import get_store, get_supervisor, to_http_error
from gridbot.engine.errors import TradeValidationError, TradingError
from gridbot.engine.supervisor import BotSupervisor
from gridbot.services.bot_store import BotStore
from gridbot.utils.constants import PositionStatus

router = APIRouter(prefix="/api/positions", tags=["positions"])


class ClosePositionRequest(BaseModel):
    price: float | None = Field(default=None, gt=0)


@router.get("")
def list_positions(
    bot_id: int | None = None,
    status: str | None = None,
    store: BotStore = Depends(get_store),
):
    return store.list_positions(bot_id=bot_id, status=status.upper() if status else None)


@router.post("/{position_id}/close")
async def close_position(
    position_id: int,
    body: ClosePositionRequest | None = None,
    store: BotStore = Depends(get_store),
    supervisor: BotSupervisor = Depends(get_supervisor),
):
    """Manually close an open position (sells first in REAL mode)."""
    position = store.get_position(position_id)
    if not position:
        raise HTTPException(status_code=404, detail="Position not found")
    if position.status != PositionStatus.OPEN:
        raise HTTPException(status_code=400, detail="Position already closed")

    price = body.price if body else None
    try:
        trade = await supervisor.close_position(position.bot_id, position_id, price)
    except TradeValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except TradingError as e:
        raise to_http_error(e)

    return {
        "success": True,
        "profit": trade.profit,
        "price": trade.price,
        "message": "Position closed successfully",
    }
