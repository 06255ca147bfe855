"""Bot API — CRUD, lifecycle control and statistics."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException

from gridbot.api.deps import get_store, get_supervisor, to_http_error
from gridbot.engine.errors import TradingError
from gridbot.engine.supervisor import BotSupervisor
from gridbot.models import Bot
from gridbot.schemas.bot import RISK_FIELDS, BotCreate, BotRead, BotUpdate
from gridbot.services.bot_store import BotStore
from gridbot.utils.constants import BotStatus, PositionStatus
from gridbot.utils.timefmt import format_runtime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bots", tags=["bots"])


def _get_bot_or_404(store: BotStore, bot_id: int) -> Bot:
    bot = store.get_bot(bot_id)
    if not bot:
        raise HTTPException(status_code=404, detail="Bot not found")
    return bot


@router.get("", response_model=list[BotRead])
def list_bots(status: str | None = None, store: BotStore = Depends(get_store)):
    if status is not None:
        return store.list_bots_by_status(status.upper())
    return store.list_bots()


@router.post("", response_model=BotRead, status_code=201)
async def create_bot(
    data: BotCreate,
    store: BotStore = Depends(get_store),
    supervisor: BotSupervisor = Depends(get_supervisor),
):
    payload = data.model_dump(exclude={"api_key", "api_secret", "start"})
    if not payload.get("name"):
        payload["name"] = f"{payload['symbol']} grid"

    if data.api_key:
        from gridbot.services.encryption import encrypt
        try:
            payload["api_key_encrypted"] = encrypt(data.api_key)
            payload["api_secret_encrypted"] = encrypt(data.api_secret)
        except RuntimeError as e:
            raise HTTPException(status_code=500, detail=str(e))

    bot = store.create_bot(Bot(**payload))

    if data.start:
        try:
            await supervisor.start_bot(bot.id)
        except TradingError as e:
            raise to_http_error(e)
        bot = store.get_bot(bot.id)
    return bot


@router.get("/{bot_id}", response_model=BotRead)
def get_bot(bot_id: int, store: BotStore = Depends(get_store)):
    return _get_bot_or_404(store, bot_id)


@router.put("/{bot_id}", response_model=BotRead)
async def update_bot(
    bot_id: int,
    data: BotUpdate,
    store: BotStore = Depends(get_store),
    supervisor: BotSupervisor = Depends(get_supervisor),
):
    _get_bot_or_404(store, bot_id)
    changes = data.model_dump(exclude_unset=True)
    try:
        bot = store.update_bot(bot_id, **changes)
    except TradingError as e:
        raise to_http_error(e)

    # Risk config is read once at engine start
    if supervisor.is_running(bot_id) and any(key in changes for key in RISK_FIELDS):
        try:
            await supervisor.restart_bot(bot_id)
        except TradingError as e:
            raise to_http_error(e)
        bot = store.get_bot(bot_id)
    return bot


@router.delete("/{bot_id}", status_code=204)
async def delete_bot(
    bot_id: int,
    store: BotStore = Depends(get_store),
    supervisor: BotSupervisor = Depends(get_supervisor),
):
    _get_bot_or_404(store, bot_id)
    try:
        await supervisor.stop_bot(bot_id)
    except TradingError as e:
        logger.warning(f"Error while stopping bot {bot_id} before deletion: {e}")
    store.delete_bot(bot_id)


@router.post("/{bot_id}/start", response_model=BotRead)
async def start_bot(
    bot_id: int,
    store: BotStore = Depends(get_store),
    supervisor: BotSupervisor = Depends(get_supervisor),
):
    try:
        await supervisor.start_bot(bot_id)
    except TradingError as e:
        raise to_http_error(e)
    return store.get_bot(bot_id)


@router.post("/{bot_id}/stop", response_model=BotRead)
async def stop_bot(
    bot_id: int,
    store: BotStore = Depends(get_store),
    supervisor: BotSupervisor = Depends(get_supervisor),
):
    _get_bot_or_404(store, bot_id)
    await supervisor.stop_bot(bot_id)
    # A RUNNING row without a live engine is stale
    bot = store.get_bot(bot_id)
    if bot.status == BotStatus.RUNNING:
        bot = store.update_bot(bot_id, status=BotStatus.STOPPED, started_at=None)
    return bot


@router.get("/{bot_id}/status")
def bot_status(
    bot_id: int,
    store: BotStore = Depends(get_store),
    supervisor: BotSupervisor = Depends(get_supervisor),
):
    bot = _get_bot_or_404(store, bot_id)
    positions = store.list_positions(bot_id=bot_id, status=PositionStatus.OPEN)
    return {
        "bot": BotRead.model_validate(bot),
        "open_positions": positions,
        "is_running_in_supervisor": supervisor.is_running(bot_id),
    }


@router.get("/{bot_id}/stats")
def bot_stats(
    bot_id: int,
    store: BotStore = Depends(get_store),
    supervisor: BotSupervisor = Depends(get_supervisor),
):
    bot = _get_bot_or_404(store, bot_id)
    stats = store.trade_stats(bot_id)

    running_time = bot.total_runtime_seconds
    if bot.status == BotStatus.RUNNING and bot.started_at:
        started = bot.started_at if bot.started_at.tzinfo else bot.started_at.replace(tzinfo=timezone.utc)
        running_time += max(0, int((datetime.now(timezone.utc) - started).total_seconds()))

    stats.update({
        "running_time": running_time,
        "running_time_formatted": format_runtime(running_time),
        "last_activity_at": bot.last_activity_at,
        "current_price": bot.last_price,
        "is_running_in_supervisor": supervisor.is_running(bot_id),
    })
    return {
        "bot": BotRead.model_validate(bot),
        "recent_trades": store.list_trades(bot_id=bot_id, limit=20),
        "stats": stats,
    }
