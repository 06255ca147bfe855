"""Process-wide registry of live bot engines.

At most one engine exists per bot id. Registry changes for a given id are
serialised by a per-bot lock, so concurrent start/stop requests cannot
double-register. The registry is the in-process truth for "running"; on
startup initialize() reconciles it with the RUNNING rows in the database.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable

from gridbot.engine.bot_engine import BotEngine
from gridbot.engine.errors import TradingError
from gridbot.models import Bot
from gridbot.services.bot_store import BotStore
from gridbot.services.exchange_gateway import ExchangeGateway, build_gateway
from gridbot.utils.constants import BotStatus

logger = logging.getLogger(__name__)


class BotSupervisor:
    def __init__(
        self,
        store: BotStore,
        gateway_factory: Callable[[Bot], ExchangeGateway] = build_gateway,
        scheduler=None,
        notifier: Callable[[str], None] | None = None,
        engine_cls: type[BotEngine] = BotEngine,
    ):
        self.store = store
        self.gateway_factory = gateway_factory
        self.scheduler = scheduler
        self.notifier = notifier
        self.engine_cls = engine_cls
        self.initialized = False
        self._engines: dict[int, BotEngine] = {}
        self._locks: dict[int, asyncio.Lock] = {}
        self._locks_guard = asyncio.Lock()

    async def _get_lock(self, bot_id: int) -> asyncio.Lock:
        async with self._locks_guard:
            lock = self._locks.get(bot_id)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[bot_id] = lock
            return lock

    def _build_engine(self, bot_id: int) -> BotEngine:
        kwargs = dict(
            store=self.store,
            gateway_factory=self.gateway_factory,
            scheduler=self.scheduler,
            on_stopped=self._forget,
        )
        if self.notifier is not None:
            kwargs["notifier"] = self.notifier
        return self.engine_cls(bot_id, **kwargs)

    def _forget(self, bot_id: int):
        # Called by an engine that stopped itself (daily loss limit, deactivation)
        if self._engines.pop(bot_id, None) is not None:
            logger.info(f"[Supervisor] Bot {bot_id} deregistered after stopping")

    async def initialize(self):
        """Restart every bot the database still marks RUNNING.

        Bots whose engine cannot be started are forced to STOPPED, so the
        database never claims a bot is running without a live engine.
        """
        if self.initialized:
            logger.info("[Supervisor] Already initialized")
            return

        running = self.store.list_bots_by_status(BotStatus.RUNNING)
        logger.info(f"[Supervisor] Found {len(running)} bots marked RUNNING")

        failed: list[int] = []
        for bot in running:
            try:
                await self.start_bot(bot.id)
                logger.info(f"[Supervisor] Restarted bot {bot.name or bot.id} ({bot.id})")
            except Exception as e:
                logger.error(f"[Supervisor] Failed to restart bot {bot.id}: {e}")
                failed.append(bot.id)

        self.store.mark_running_bots_stopped(failed)
        self.initialized = True
        logger.info(
            f"[Supervisor] Initialization complete: {len(self._engines)} running, {len(failed)} stopped"
        )

    async def start_bot(self, bot_id: int) -> BotEngine:
        """Start and register an engine. Returns the existing one if already running."""
        lock = await self._get_lock(bot_id)
        async with lock:
            engine = self._engines.get(bot_id)
            if engine is not None:
                logger.info(f"[Supervisor] Bot {bot_id} is already running")
                return engine

            engine = self._build_engine(bot_id)
            await engine.start()
            self._engines[bot_id] = engine

            now = datetime.now(timezone.utc)
            try:
                self.store.update_bot(bot_id, started_at=now, last_activity_at=now)
            except TradingError as e:
                logger.error(f"[Supervisor] Could not stamp start time for bot {bot_id}: {e}")

            logger.info(f"[Supervisor] Started bot {bot_id}")
            return engine

    async def stop_bot(self, bot_id: int):
        lock = await self._get_lock(bot_id)
        async with lock:
            engine = self._engines.get(bot_id)
            if engine is None:
                logger.info(f"[Supervisor] Bot {bot_id} is not running")
                return
            try:
                await engine.stop()
            finally:
                self._engines.pop(bot_id, None)
            logger.info(f"[Supervisor] Stopped bot {bot_id}")

    async def restart_bot(self, bot_id: int) -> BotEngine | None:
        """Stop and start again so a changed configuration takes effect."""
        if not self.is_running(bot_id):
            return None
        await self.stop_bot(bot_id)
        return await self.start_bot(bot_id)

    def get_engine(self, bot_id: int) -> BotEngine | None:
        return self._engines.get(bot_id)

    def is_running(self, bot_id: int) -> bool:
        return bot_id in self._engines

    def running_ids(self) -> list[int]:
        return list(self._engines.keys())

    @property
    def running_count(self) -> int:
        return len(self._engines)

    async def stop_all(self):
        """Stop every registered engine; one failure does not stop the rest."""
        bot_ids = self.running_ids()
        logger.info(f"[Supervisor] Stopping {len(bot_ids)} bots...")

        results = await asyncio.gather(
            *(self.stop_bot(bot_id) for bot_id in bot_ids),
            return_exceptions=True,
        )
        for bot_id, result in zip(bot_ids, results):
            if isinstance(result, Exception):
                logger.error(f"[Supervisor] Failed to stop bot {bot_id}: {result}")
        logger.info("[Supervisor] All bots stopped")

    async def close_position(self, bot_id: int, position_id: int, price: float | None = None):
        """Manually close a position through the bot's engine, live or temporary."""
        engine = self._engines.get(bot_id)
        if engine is None:
            engine = self._build_engine(bot_id)
        return await engine.close_position(position_id, price)
