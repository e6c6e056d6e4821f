"""Telegram implementation of the drill front end."""

from __future__ import annotations

import asyncio
import logging
import re
from html import escape
from typing import Optional, Sequence, Union

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup, Message
from telegram.constants import ParseMode

from src.trainer.cards import DisplayTier, Rating
from src.trainer.errors import ContractViolation
from src.trainer.lines import ScriptLineSource


LOGGER = logging.getLogger(__name__)

PEEK = "peek"
RATE_PREFIX = "tr_rate"
PEEK_DATA = "tr_peek"

_WORD_TAIL_RE = re.compile(r"(?<=\w)\w")

DrillEvent = Union[Rating, str]


def render_hint(text: str, tier: DisplayTier) -> str:
    """Return the part of ``text`` revealed at ``tier``."""
    if tier >= DisplayTier.ALL:
        return text
    if tier == DisplayTier.WORD_INITIALS:
        return _WORD_TAIL_RE.sub("_", text)
    if tier == DisplayTier.LINE_INITIALS:
        stripped = text.strip()
        return f"{stripped[:1]}…" if stripped else "…"
    return "…"


def build_rating_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        [
            [
                InlineKeyboardButton("Again", callback_data=f"{RATE_PREFIX}:{int(Rating.AGAIN)}"),
                InlineKeyboardButton("Hard", callback_data=f"{RATE_PREFIX}:{int(Rating.HARD)}"),
                InlineKeyboardButton("Good", callback_data=f"{RATE_PREFIX}:{int(Rating.GOOD)}"),
                InlineKeyboardButton("Easy", callback_data=f"{RATE_PREFIX}:{int(Rating.EASY)}"),
            ],
            [InlineKeyboardButton("👀 Peek", callback_data=PEEK_DATA)],
        ]
    )


def parse_callback(data: str) -> Optional[DrillEvent]:
    """Turn button callback data into a drill event; None for foreign data."""
    if data == PEEK_DATA:
        return PEEK
    parts = data.split(":")
    if len(parts) != 2 or parts[0] != RATE_PREFIX:
        return None
    try:
        return Rating.parse(int(parts[1]))
    except (ValueError, ContractViolation):
        return None


class TelegramDrill:
    """Sends one prompt per drilled line and waits for the matching button press."""

    def __init__(self, bot: Bot, chat_id: int, lines: ScriptLineSource) -> None:
        self._bot = bot
        self._chat_id = chat_id
        self._lines = lines
        self._events: asyncio.Queue[DrillEvent] = asyncio.Queue()
        self._prompt_message_id: Optional[int] = None

    def submit(self, message_id: int, event: DrillEvent) -> bool:
        """Queue a button press; presses on stale or already rated prompts are rejected."""
        if self._prompt_message_id is None or message_id != self._prompt_message_id:
            return False
        if event != PEEK:
            # One rating per prompt; later presses on the same message are stale.
            self._prompt_message_id = None
        self._events.put_nowait(event)
        return True

    async def show(self, line_ids: Sequence[str], tier: DisplayTier) -> None:
        if not line_ids:
            return
        body = "\n".join(escape(render_hint(self._lines.text(line_id), tier)) for line_id in line_ids)
        await self._bot.send_message(self._chat_id, f"<i>{body}</i>", parse_mode=ParseMode.HTML)

    async def rate(self, line_id: str, tier: DisplayTier) -> Rating:
        text = self._lines.text(line_id)
        shown = tier
        await self.clear()
        message = await self._bot.send_message(
            self._chat_id,
            self._format_prompt(text, shown),
            parse_mode=ParseMode.HTML,
            reply_markup=build_rating_keyboard(),
        )
        self._prompt_message_id = message.message_id

        try:
            while True:
                event = await self._events.get()
                if event == PEEK:
                    revealed = shown.revealed()
                    if revealed != shown:
                        shown = revealed
                        await self._edit(message, self._format_prompt(text, shown), build_rating_keyboard())
                    continue
                rating = Rating.parse(event)
                await self._edit(message, f"{escape(text)}\n<i>{rating.name.title()}</i>", None)
                return rating
        finally:
            self._prompt_message_id = None

    async def clear(self) -> None:
        while not self._events.empty():
            self._events.get_nowait()

    @staticmethod
    def _format_prompt(text: str, tier: DisplayTier) -> str:
        return f"<b>{escape(render_hint(text, tier))}</b>"

    @staticmethod
    async def _edit(message: Message, text: str, markup: Optional[InlineKeyboardMarkup]) -> None:
        try:
            await message.edit_text(text, parse_mode=ParseMode.HTML, reply_markup=markup)
        except Exception:  # pragma: no cover - best effort update
            LOGGER.debug("Could not update drill prompt.", exc_info=True)
