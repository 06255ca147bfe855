"""Trade history API."""

from fastapi import APIRouter, Depends

from gridbot.api.deps import get_store
from gridbot.services.bot_store import BotStore

router = APIRouter(prefix="/api/trades", tags=["trades"])


@router.get("")
def list_trades(
    bot_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
    store: BotStore = Depends(get_store),
):
    return store.list_trades(bot_id=bot_id, limit=limit, offset=offset)
