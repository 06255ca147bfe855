"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gridbot.config import settings
from gridbot.database import create_db_and_tables
from gridbot.utils.logging import setup_logging
from gridbot.api import bots, positions, trades, system


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logging()
    create_db_and_tables()

    from gridbot.engine.scheduler import scheduler, start_scheduler, stop_scheduler
    from gridbot.engine.supervisor import BotSupervisor
    from gridbot.services.bot_store import BotStore

    start_scheduler()
    store = BotStore()
    supervisor = BotSupervisor(store, scheduler=scheduler)
    app.state.store = store
    app.state.supervisor = supervisor

    # Resume bots left RUNNING by the previous process
    await supervisor.initialize()

    # Start Telegram bot if configured
    telegram_bot = None
    if settings.telegram_bot_token:
        from gridbot.services.telegram_bot import init_bot
        telegram_bot = init_bot(supervisor, store)
        telegram_bot.start()

    yield

    if telegram_bot:
        telegram_bot.stop()
    await supervisor.stop_all()
    stop_scheduler()


app = FastAPI(
    title="Grid Bot Service",
    description="Per-bot grid trading engine with admin API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(bots.router)
app.include_router(positions.router)
app.include_router(trades.router)
app.include_router(system.router)
