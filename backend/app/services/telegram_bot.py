"""Telegram side of the relay.

TelegramTransport — ChatTransport over the Bot API: one outbound call at a
time with a minimum interval, retry on 429 (RetryAfter).

RelayBot — python-telegram-bot Application running next to the FastAPI app:
inline button callbacks, comment dialog replies, /start, /report, /cancel.
"""
import asyncio
import logging
import time

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.error import RetryAfter, TelegramError
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from config import settings
from services.jira import JiraRelayModule
from services.jira.actions import ActionRequest, Actor
from services.jira.report import completed_by_assignee, format_report
from services.jira.transport import Button, ChatTransportError, MessageRef

logger = logging.getLogger("relay.telegram")

ACTION_PATTERN = r"^(take|comment|complete):"
MAX_SEND_ATTEMPTS = 3


def to_markup(buttons: list[list[Button]] | None) -> InlineKeyboardMarkup | None:
    if not buttons:
        return None
    return InlineKeyboardMarkup([
        [
            InlineKeyboardButton(b.text, url=b.url) if b.url
            else InlineKeyboardButton(b.text, callback_data=b.callback_data)
            for b in row
        ]
        for row in buttons
        if row
    ])


class TelegramTransport:

    def __init__(self, bot, min_interval: float = 1.0):
        self.bot = bot
        self._semaphore = asyncio.Semaphore(1)
        self._min_interval = min_interval
        self._last_call: float = 0.0

    async def _call(self, method, **kwargs):
        """Serialized Bot API call with rate limiting and 429 retry."""
        for attempt in range(MAX_SEND_ATTEMPTS):
            async with self._semaphore:
                wait = self._min_interval - (time.monotonic() - self._last_call)
                if wait > 0:
                    await asyncio.sleep(wait)
                try:
                    return await method(**kwargs)
                except RetryAfter as exc:
                    retry_after = exc.retry_after
                    delay = retry_after.total_seconds() if hasattr(retry_after, "total_seconds") else float(retry_after)
                    logger.warning(
                        "Telegram rate limit, retry %d/%d in %.0fs",
                        attempt + 1, MAX_SEND_ATTEMPTS, delay,
                    )
                    await asyncio.sleep(delay)
                except TelegramError as exc:
                    raise ChatTransportError(str(exc)) from exc
                finally:
                    self._last_call = time.monotonic()
        raise ChatTransportError(f"gave up after {MAX_SEND_ATTEMPTS} rate-limited attempts")

    async def send_message(self, chat_id, text, buttons=None) -> MessageRef:
        message = await self._call(
            self.bot.send_message,
            chat_id=chat_id,
            text=text,
            reply_markup=to_markup(buttons),
        )
        return MessageRef(str(message.chat_id), message.message_id)

    async def edit_message(self, ref, text, buttons=None) -> None:
        await self._call(
            self.bot.edit_message_text,
            chat_id=ref.chat_id,
            message_id=ref.message_id,
            text=text,
            reply_markup=to_markup(buttons),
        )


def actor_of(update: Update) -> Actor:
    user = update.effective_user
    return Actor(user_id=user.id, username=user.username)


class RelayBot:

    def __init__(self, application: Application, module: JiraRelayModule):
        self.application = application
        self.module = module
        application.add_handler(CommandHandler("start", self.on_start))
        application.add_handler(CommandHandler("report", self.on_report))
        application.add_handler(CommandHandler("cancel", self.on_cancel))
        application.add_handler(CallbackQueryHandler(self.on_action, pattern=ACTION_PATTERN))
        application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, self.on_text))
        application.add_error_handler(self.on_error)

    @classmethod
    def build_application(cls) -> Application:
        return ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    async def start(self) -> None:
        """Run polling inside the already running event loop."""
        await self.application.initialize()
        await self.application.start()
        await self.application.updater.start_polling()
        logger.info("Telegram polling started")

    async def stop(self) -> None:
        await self.application.updater.stop()
        await self.application.stop()
        await self.application.shutdown()
        logger.info("Telegram polling stopped")

    # ─── Handlers ─────────────────────────────────────────────────────

    async def on_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        logger.info("/start from %s", update.effective_user.username)
        await update.effective_message.reply_text(
            "Jira tasks will be posted here.\nUse /report for the resolved tasks report."
        )
        await self.module.run_cycle()

    async def on_report(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        async with self.module.session_factory() as session:
            stats = await completed_by_assignee(session, settings.SUPPORT_DEPARTMENT)
        await update.effective_message.reply_text(format_report(stats))

    async def on_cancel(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        outcome = await self.module.coordinator.cancel_comment(
            str(update.effective_chat.id), actor_of(update),
        )
        if outcome is None:
            await update.effective_message.reply_text("Nothing to cancel.")

    async def on_action(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        await query.answer()
        try:
            request = ActionRequest.decode(query.data)
        except ValueError:
            logger.warning("Rejected callback payload %r", query.data)
            return
        origin = MessageRef(str(query.message.chat.id), query.message.message_id)
        await self.module.coordinator.handle(request, actor_of(update), origin)

    async def on_text(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        if message is None or update.effective_user is None:
            return
        await self.module.coordinator.submit_comment(
            str(update.effective_chat.id), actor_of(update), message.text,
        )

    async def on_error(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        logger.error("Error while handling update: %s", context.error, exc_info=context.error)
        if isinstance(update, Update) and update.effective_message:
            try:
                await update.effective_message.reply_text("Request failed.")
            except TelegramError as exc:
                logger.error("Error notice not delivered: %s", exc)
