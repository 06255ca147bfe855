"""System API — health check, supervisor state, bot logs and alerts."""

from fastapi import APIRouter, Depends

from gridbot.api.deps import get_store, get_supervisor
from gridbot.engine.supervisor import BotSupervisor
from gridbot.services.bot_store import BotStore

router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("/health")
def health_check():
    return {"status": "ok"}


@router.get("/supervisor")
def supervisor_status(supervisor: BotSupervisor = Depends(get_supervisor)):
    """Running engines and heartbeat jobs."""
    from gridbot.engine.scheduler import get_scheduler_status

    return {
        "initialized": supervisor.initialized,
        "running_count": supervisor.running_count,
        "running_ids": sorted(supervisor.running_ids()),
        "scheduler": get_scheduler_status(),
    }


@router.get("/logs")
def bot_logs(
    bot_id: int | None = None,
    level: str | None = None,
    limit: int = 100,
    offset: int = 0,
    store: BotStore = Depends(get_store),
):
    return store.list_logs(
        bot_id=bot_id, level=level.upper() if level else None, limit=limit, offset=offset
    )


@router.get("/alerts")
def alerts(
    bot_id: int | None = None,
    unread_only: bool = False,
    limit: int = 100,
    store: BotStore = Depends(get_store),
):
    return store.list_alerts(bot_id=bot_id, unread_only=unread_only, limit=limit)
