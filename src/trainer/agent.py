"""Telegram handlers running trainer activities for a chat."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from telegram import Bot, Update
from telegram.constants import ParseMode
from telegram.ext import Application, ContextTypes

from src.trainer.drill import TelegramDrill, parse_callback
from src.trainer.lines import ScriptLineSource
from src.trainer.planner import PlannerSettings, SessionPlanner
from src.trainer.scheduler import CardStatistics, Scheduler


LOGGER = logging.getLogger(__name__)

HELP_TEXT = (
    "I help you memorise your lines with spaced repetition.\n\n"
    "/learn - introduce the next new line\n"
    "/ingest - quickly add lines you already know\n"
    "/review - review the lines that are due\n"
    "/scene - run through the whole scene of the next due line\n"
    "/stats - show progress\n"
    "/stop - abandon the current exercise\n"
    "/reset yes - forget everything learnt so far"
)

Activity = Callable[[SessionPlanner], Awaitable[str]]


async def _learn(planner: SessionPlanner) -> str:
    learnt = await planner.learn()
    if not learnt:
        return "Nothing left to learn. 🎉"
    return f"Learnt {len(learnt)} new line{'s' if len(learnt) != 1 else ''}."


async def _ingest(planner: SessionPlanner) -> str:
    ingested = await planner.ingest()
    if not ingested:
        return "Nothing left to ingest."
    return f"Added {len(ingested)} known line{'s' if len(ingested) != 1 else ''}."


async def _review(planner: SessionPlanner) -> str:
    window = await planner.review()
    if window is None:
        return "Nothing is due right now."
    return f"Reviewed {len(window.lines)} line{'s' if len(window.lines) != 1 else ''}."


async def _review_scene(planner: SessionPlanner) -> str:
    span = await planner.review_scene()
    if not span:
        return "Nothing is due right now."
    return f"Ran through a scene of {len(span)} lines."


ACTIVITIES: Dict[str, Activity] = {
    "learn": _learn,
    "ingest": _ingest,
    "review": _review,
    "scene": _review_scene,
}


def format_statistics(stats: CardStatistics) -> str:
    lines = [f"📊 <b>{stats.total} lines learnt</b>"]
    if stats.by_due_day:
        lines.append("")
        lines.append("<b>Due:</b>")
        lines.extend(f"{day}: {count}" for day, count in stats.by_due_day.items())
    if stats.by_display:
        lines.append("")
        lines.append("<b>Hints:</b> " + ", ".join(f"{tier} {count}" for tier, count in stats.by_display.items()))
    if stats.by_state:
        lines.append("<b>State:</b> " + ", ".join(f"{state} {count}" for state, count in stats.by_state.items()))
    return "\n".join(lines)


class TrainerAgent:
    """Runs at most one activity per chat and routes rating buttons to it."""

    def __init__(
        self,
        scheduler: Scheduler,
        lines: ScriptLineSource,
        planner_settings: Optional[PlannerSettings] = None,
        allowed_chat_id: Optional[int] = None,
    ) -> None:
        self._scheduler = scheduler
        self._lines = lines
        self._planner_settings = planner_settings or PlannerSettings()
        self._allowed_chat_id = allowed_chat_id
        self._drills: Dict[int, TelegramDrill] = {}
        self._tasks: Dict[int, asyncio.Task] = {}

    async def on_startup(self, application: Application) -> None:
        """Prune orphaned cards once per process start and log where things stand."""
        pruned = await self._scheduler.prune_orphaned_lines()
        LOGGER.info("Session start: %s lines in script, %s orphaned cards pruned.", len(self._lines), len(pruned))
        await self._scheduler.log_stats()

    def _is_allowed(self, chat_id: int) -> bool:
        return self._allowed_chat_id is None or chat_id == self._allowed_chat_id

    def is_busy(self, chat_id: int) -> bool:
        task = self._tasks.get(chat_id)
        return task is not None and not task.done()

    async def handle_start(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
    ) -> None:
        if not update.message:
            return
        await update.message.reply_text(HELP_TEXT)

    async def handle_learn(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self._start_activity(update, context, "learn")

    async def handle_ingest(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self._start_activity(update, context, "ingest")

    async def handle_review(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self._start_activity(update, context, "review")

    async def handle_scene(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self._start_activity(update, context, "scene")

    async def handle_stop(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        chat = update.effective_chat
        if not update.message or chat is None or not self._is_allowed(chat.id):
            return
        task = self._tasks.get(chat.id)
        if task is None or task.done():
            await update.message.reply_text("Nothing to stop.")
            return
        task.cancel()

    async def handle_stats(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        chat = update.effective_chat
        if not update.message or chat is None or not self._is_allowed(chat.id):
            return
        try:
            stats = await self._scheduler.log_stats()
        except Exception:
            LOGGER.exception("Failed to load statistics for chat %s.", chat.id)
            await update.message.reply_text("Statistics are unavailable right now.")
            return
        await update.message.reply_text(format_statistics(stats), parse_mode=ParseMode.HTML)

    async def handle_reset(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        chat = update.effective_chat
        if not update.message or chat is None or not self._is_allowed(chat.id):
            return
        args = getattr(context, "args", None) or []
        if [arg.lower() for arg in args] != ["yes"]:
            await update.message.reply_text("This forgets every line. Send /reset yes to confirm.")
            return
        if self.is_busy(chat.id):
            await update.message.reply_text("Finish or /stop the current exercise first.")
            return
        removed = await self._scheduler.reset()
        await update.message.reply_text(f"Forgot {removed} lines.")

    async def handle_rating(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
    ) -> None:
        query = update.callback_query
        if query is None or query.data is None:
            return

        message = query.message
        event = parse_callback(query.data)
        if message is None or message.chat is None or event is None:
            await query.answer()
            return

        drill = self._drills.get(message.chat.id)
        if drill is None or not drill.submit(message.message_id, event):
            await query.answer("This prompt has expired.")
            return
        await query.answer()

    async def _start_activity(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
        name: str,
    ) -> None:
        chat = update.effective_chat
        if not update.message or chat is None:
            return

        if not self._is_allowed(chat.id):
            await update.message.reply_text("This trainer belongs to someone else.")
            return

        if self.is_busy(chat.id):
            await update.message.reply_text("Finish or /stop the current exercise first.")
            return

        drill = TelegramDrill(context.bot, chat.id, self._lines)
        planner = SessionPlanner(self._scheduler, drill, self._planner_settings)
        self._drills[chat.id] = drill
        self._tasks[chat.id] = context.application.create_task(
            self.run_activity(context.bot, chat.id, name, planner)
        )

    async def run_activity(self, bot: Bot, chat_id: int, name: str, planner: SessionPlanner) -> None:
        """Run one activity to completion; failures are logged and reported, never raised."""
        try:
            summary = await ACTIVITIES[name](planner)
        except asyncio.CancelledError:
            LOGGER.info("Activity %s abandoned in chat %s.", name, chat_id)
            await bot.send_message(chat_id, "Stopped. Ratings given so far are saved.")
            raise
        except Exception:
            LOGGER.exception("Activity %s failed in chat %s.", name, chat_id)
            await bot.send_message(chat_id, "Something went wrong, so this exercise was stopped.")
            return
        finally:
            self._drills.pop(chat_id, None)

        await bot.send_message(chat_id, summary)
