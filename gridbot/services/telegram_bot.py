"""Telegram bot for alert notifications and remote control."""

import asyncio
import logging
import threading
from typing import Optional

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.ext import (
    Application,
    CommandHandler,
    CallbackQueryHandler,
    ContextTypes,
)

from gridbot.config import settings

logger = logging.getLogger(__name__)

_bot_instance: Optional["TelegramBot"] = None


class TelegramBot:
    """Telegram bot running in a background thread with its own event loop.

    Commands that touch engines are marshalled back onto the server loop,
    since engines and their locks belong to it.
    """

    def __init__(self, token: str, chat_ids: list[int], supervisor=None, store=None):
        self.token = token
        self.chat_ids = set(chat_ids)
        self.supervisor = supervisor
        self.store = store
        self._app: Optional[Application] = None
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._server_loop: Optional[asyncio.AbstractEventLoop] = None

    def _is_authorized(self, user_id: int) -> bool:
        return user_id in self.chat_ids

    async def _check_auth(self, update: Update) -> bool:
        if not update.effective_user or not self._is_authorized(update.effective_user.id):
            if update.message:
                await update.message.reply_text("Unauthorized.")
            return False
        return True

    async def _cmd_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        running = self.supervisor.running_ids() if self.supervisor else []
        ids = ", ".join(str(i) for i in sorted(running)) or "none"
        await update.message.reply_text(f"Running bots: {len(running)}\nIDs: {ids}")

    async def _cmd_bots(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        bots = self.store.list_bots() if self.store else []
        if not bots:
            await update.message.reply_text("No bots configured.")
            return

        lines = []
        for bot in bots:
            open_count = len(self.store.list_positions(bot_id=bot.id, status="OPEN"))
            lines.append(
                f"#{bot.id} {bot.name or bot.symbol}: {bot.status} | {bot.mode} | "
                f"P&L ${bot.total_profit:.2f} | open {open_count}"
            )
        await update.message.reply_text("\n".join(lines))

    async def _cmd_stop_all(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        keyboard = InlineKeyboardMarkup([
            [
                InlineKeyboardButton("Yes, stop all bots", callback_data="confirm_stop_all"),
                InlineKeyboardButton("Cancel", callback_data="cancel"),
            ]
        ])
        await update.message.reply_text(
            "Stop every running bot? Open positions stay open.",
            reply_markup=keyboard,
        )

    async def _handle_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        query = update.callback_query
        if not query or not query.from_user or not self._is_authorized(query.from_user.id):
            return

        await query.answer()

        if query.data == "cancel":
            await query.edit_message_text("Cancelled.")
            return

        if query.data == "confirm_stop_all" and self.supervisor and self._server_loop:
            count = len(self.supervisor.running_ids())
            await query.edit_message_text("Stopping all bots...")
            future = asyncio.run_coroutine_threadsafe(self.supervisor.stop_all(), self._server_loop)
            await asyncio.wrap_future(future)
            await query.edit_message_text(f"Stopped {count} bots.")

    async def send_notification(self, message: str):
        """Send a message to all whitelisted chat IDs."""
        if not self._app or not self._app.bot:
            return
        for chat_id in self.chat_ids:
            try:
                await self._app.bot.send_message(chat_id=chat_id, text=message)
            except Exception as e:
                logger.warning(f"Failed to send Telegram notification to {chat_id}: {e}")

    def _run_bot(self):
        """Run the bot in a background thread with its own event loop."""
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)

        self._app = (
            Application.builder()
            .token(self.token)
            .build()
        )

        self._app.add_handler(CommandHandler("status", self._cmd_status))
        self._app.add_handler(CommandHandler("bots", self._cmd_bots))
        self._app.add_handler(CommandHandler("stop_all", self._cmd_stop_all))
        self._app.add_handler(CallbackQueryHandler(self._handle_callback))

        logger.info("Telegram bot starting...")
        self._loop.run_until_complete(self._app.initialize())
        self._loop.run_until_complete(self._app.start())
        self._loop.run_until_complete(self._app.updater.start_polling())
        self._loop.run_forever()

    def start(self):
        try:
            self._server_loop = asyncio.get_running_loop()
        except RuntimeError:
            self._server_loop = None
        self._thread = threading.Thread(target=self._run_bot, daemon=True)
        self._thread.start()

    def stop(self):
        if self._loop and self._app:
            async def _shutdown():
                await self._app.updater.stop()
                await self._app.stop()
                await self._app.shutdown()

            asyncio.run_coroutine_threadsafe(_shutdown(), self._loop).result(timeout=10)
            self._loop.call_soon_threadsafe(self._loop.stop)


def init_bot(supervisor=None, store=None) -> TelegramBot:
    """Initialize and return the bot singleton."""
    global _bot_instance
    _bot_instance = TelegramBot(
        token=settings.telegram_bot_token,
        chat_ids=settings.telegram_chat_ids,
        supervisor=supervisor,
        store=store,
    )
    return _bot_instance


def get_bot() -> Optional[TelegramBot]:
    """Get the bot singleton, or None if not initialized."""
    return _bot_instance


def notify(message: str):
    """Send a Telegram notification (fire-and-forget)."""
    bot = get_bot()
    if bot is None or bot._loop is None:
        return
    try:
        asyncio.run_coroutine_threadsafe(bot.send_notification(message), bot._loop)
    except RuntimeError as e:
        logger.warning(f"Telegram notification dropped: {e}")
